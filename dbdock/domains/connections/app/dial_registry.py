"""Named dial paths backed by SSH sessions.

Database drivers resolve a network name to a dial function without knowing
anything about SSH. Each tunnel gets its own name so that two connections to
the same host never share or clobber each other's path.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from dbdock.domains.connections.providers.exceptions import DialPathClosedError

logger = logging.getLogger(__name__)

DialFunction = Callable[..., Any]

_NAME_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class SupportsDial(Protocol):
    """What a dial path needs from a tunnel: a dialer and a way to shut it down."""

    def dial(self, address: str, timeout: float | None = None) -> Any: ...

    def close(self) -> None: ...


class NetworkRegistry(Protocol):
    """Driver-side registry of network names.

    Registering a name twice is an error; callers must mint unique names.
    """

    def register(self, name: str, dial: DialFunction) -> None: ...

    def unregister(self, name: str) -> None: ...

    def lookup(self, name: str) -> DialFunction | None: ...

    def names(self) -> list[str]: ...


class InMemoryNetworkRegistry:
    """Process-local ``NetworkRegistry`` implementation."""

    def __init__(self) -> None:
        self._dialers: dict[str, DialFunction] = {}
        self._lock = threading.Lock()

    def register(self, name: str, dial: DialFunction) -> None:
        with self._lock:
            if name in self._dialers:
                raise ValueError(f"Network name already registered: {name}")
            self._dialers[name] = dial

    def unregister(self, name: str) -> None:
        with self._lock:
            self._dialers.pop(name, None)

    def lookup(self, name: str) -> DialFunction | None:
        with self._lock:
            return self._dialers.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._dialers)

    def dial(self, name: str, address: str, timeout: float | None = None) -> Any:
        """Resolve ``name`` and dial ``address`` through it, as a driver would."""
        dialer = self.lookup(name)
        if dialer is None:
            raise DialPathClosedError(name)
        return dialer(address, timeout=timeout)


_default_registry = InMemoryNetworkRegistry()


def get_default_network_registry() -> InMemoryNetworkRegistry:
    return _default_registry


@dataclass
class TunnelHandle:
    """Runtime binding of one SSH session to one dial-path name. Never persisted."""

    name: str
    host: str
    provider: SupportsDial
    ref_count: int = 0
    retiring: bool = False
    closed: bool = False
    created_ns: int = field(default_factory=time.monotonic_ns)


class DialPathRegistry:
    """Mints dial-path names and owns the handles registered under them.

    Handles are reference counted: every driver connection using a path
    ``acquire``s it and ``release``s it when done. ``retire`` (used when a
    connection is deleted) closes the handle at once if nobody is using it,
    otherwise on the last release.
    """

    def __init__(
        self,
        network_registry: NetworkRegistry | None = None,
        clock: Callable[[], int] = time.monotonic_ns,
    ) -> None:
        self._network = network_registry if network_registry is not None else get_default_network_registry()
        self._clock = clock
        self._handles: dict[str, TunnelHandle] = {}
        self._last_stamp = 0
        self._lock = threading.Lock()

    @property
    def network_registry(self) -> NetworkRegistry:
        return self._network

    def _mint_name(self, host: str) -> str:
        # Caller holds self._lock. A clock that has not advanced since the
        # previous mint is bumped so two names never share a stamp.
        stamp = self._clock()
        if stamp <= self._last_stamp:
            stamp = self._last_stamp + 1
        self._last_stamp = stamp
        safe_host = _NAME_UNSAFE_CHARS.sub("_", host) or "host"
        return f"ssh_{safe_host}_{stamp}"

    def register(self, provider: SupportsDial, host: str) -> TunnelHandle:
        """Register ``provider`` under a freshly minted name and return its handle."""
        with self._lock:
            name = self._mint_name(host)
            while name in self._handles or self._network.lookup(name) is not None:
                name = self._mint_name(host)
            handle = TunnelHandle(name=name, host=host, provider=provider)

            def dial(address: str, timeout: float | None = None) -> Any:
                if handle.closed:
                    raise DialPathClosedError(name)
                return provider.dial(address, timeout=timeout)

            self._network.register(name, dial)
            self._handles[name] = handle

        logger.info("Registered SSH dial path: %s (host=%s)", name, host)
        return handle

    def get(self, name: str) -> TunnelHandle | None:
        with self._lock:
            return self._handles.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._handles)

    def acquire(self, name: str) -> TunnelHandle:
        with self._lock:
            handle = self._handles.get(name)
            if handle is None or handle.closed or handle.retiring:
                raise DialPathClosedError(name)
            handle.ref_count += 1
            return handle

    def release(self, name: str) -> None:
        with self._lock:
            handle = self._handles.get(name)
            if handle is None:
                return
            handle.ref_count = max(0, handle.ref_count - 1)
            should_close = handle.retiring and handle.ref_count == 0
        if should_close:
            self.close(name)

    def retire(self, name: str) -> bool:
        """Close the path now if unused, else once the last user releases it.

        Returns True if the path was closed immediately.
        """
        with self._lock:
            handle = self._handles.get(name)
            if handle is None:
                return False
            handle.retiring = True
            in_use = handle.ref_count > 0
        if in_use:
            logger.info("SSH dial path %s still in use (%d), closing on last release", name, handle.ref_count)
            return False
        self.close(name)
        return True

    def close(self, name: str) -> None:
        """Unregister the name and close its SSH session regardless of users."""
        with self._lock:
            handle = self._handles.pop(name, None)
            if handle is None:
                return
            handle.closed = True
            self._network.unregister(name)
        try:
            handle.provider.close()
        finally:
            logger.info("Closed SSH dial path: %s", name)

    def close_all(self) -> None:
        for name in self.names():
            self.close(name)
