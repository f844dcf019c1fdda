"""Exception types raised by lunabench."""


class LunabenchError(Exception):
    """Base class for all lunabench errors."""


class ParseError(LunabenchError, ValueError):
    """A vendor file is structurally unusable (missing column or section)."""

    def __init__(self, message: str, device_type: str | None = None) -> None:
        super().__init__(message)
        self.device_type = device_type


class UnsupportedDeviceError(LunabenchError, LookupError):
    """No parser is registered for a device/metric pair."""


class SessionNotFoundError(LunabenchError, LookupError):
    """A session id does not exist in the store."""
