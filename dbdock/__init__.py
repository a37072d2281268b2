"""dbdock - connection management for a multi-database client."""

from importlib.metadata import PackageNotFoundError, version
from typing import TYPE_CHECKING, Any

__all__ = [
    "__version__",
    "main",
    "ConnectionConfig",
    "SavedConnection",
    "SSHConfig",
]

try:
    __version__ = version("dbdock")
except PackageNotFoundError:
    __version__ = "0.0.0.dev"

if TYPE_CHECKING:
    from .cli import main
    from dbdock.domains.connections.domain.config import ConnectionConfig, SavedConnection, SSHConfig


def __getattr__(name: str) -> Any:
    """Lazy import for heavy modules to keep package import side-effect free."""
    if name == "main":
        from .cli import main

        return main
    if name in {"ConnectionConfig", "SavedConnection", "SSHConfig"}:
        from dbdock.domains.connections.domain import config

        return getattr(config, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
