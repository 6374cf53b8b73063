"""Domain-specific errors for doorctl."""


class DoorctlError(Exception):
    """Base error for doorctl."""


class SettingsValidationError(DoorctlError):
    """Raised when the settings file does not conform to schema or semantics."""


class SettingsLoadError(DoorctlError):
    """Raised when reading or writing the settings file fails."""


class SessionTimeoutError(DoorctlError):
    """Raised when waiting for a session condition runs out of time."""


class AdapterError(DoorctlError):
    """Base adapter error."""


class AdapterUnavailableError(AdapterError):
    """Raised when the Bluetooth backend cannot be used at all."""
