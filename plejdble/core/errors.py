"""Domain-specific errors for plejdble."""


class PlejdError(Exception):
    """Base error for plejdble."""


class ConfigValidationError(PlejdError):
    """Raised when a config file does not conform to schema or semantics."""


class ConfigLoadError(PlejdError):
    """Raised when reading the config file fails."""


class DeviceLookupError(PlejdError):
    """Raised when a device id is not present in the device registry."""


class SessionNotReadyError(PlejdError):
    """Raised when no authenticated session came up in time."""


class TransportError(PlejdError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when the system bus or a peripheral cannot be reached."""


class TransportBusyError(TransportError):
    """Raised when BlueZ rejects an operation because another one is in progress."""
