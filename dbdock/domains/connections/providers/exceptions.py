"""Custom exceptions for the connection layer."""


class DbdockError(Exception):
    """Base class for errors raised by dbdock."""


class MissingDriverError(DbdockError, ConnectionError):
    """Exception raised when a required driver package is not installed."""

    def __init__(
        self,
        driver_name: str,
        extra_name: str,
        package_name: str,
        *,
        module_name: str | None = None,
        import_error: str | None = None,
    ):
        self.driver_name = driver_name
        self.extra_name = extra_name
        self.package_name = package_name
        self.module_name = module_name
        self.import_error = import_error
        super().__init__(f"Missing driver for {driver_name}")


class TunnelError(DbdockError, ConnectionError):
    """An SSH session could not be established or used.

    ``reason`` carries the underlying error text for display to the user.
    """

    def __init__(self, message: str, *, reason: str | None = None):
        self.reason = reason
        super().__init__(f"{message}: {reason}" if reason else message)


class DialPathClosedError(TunnelError):
    """A dial path was used after its tunnel was closed or retired."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Dial path '{name}' is closed")


class ImportFormatError(DbdockError, ValueError):
    """An import payload is not a JSON array of connections."""
