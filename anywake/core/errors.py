"""Domain-specific errors for anywake."""


class AnywakeError(Exception):
    """Base error for anywake."""


class NotFoundError(AnywakeError):
    """Raised when an operation targets a device or request that does not exist."""


class DeviceSelectionError(AnywakeError):
    """Raised when a device hint cannot resolve a single target."""


class DeltaValidationError(AnywakeError):
    """Raised when a field change is malformed or targets a non-writable field."""


class ConfigError(AnywakeError):
    """Raised when the settings file cannot be read or fails validation."""


class StorageError(AnywakeError):
    """Raised when the device store cannot be read or written."""


class TransportError(AnywakeError):
    """Base transport error."""


class UnreachableError(TransportError):
    """Raised when no peer session is active for a send."""


class TransportConnectError(TransportError):
    """Raised on peer link connect failures."""


class TransportSendError(TransportError):
    """Raised when writing to a peer link fails."""


class WakeTimeoutError(TransportError):
    """Raised when no correlated wake result arrived within the window."""


class CapabilityFailedError(TransportError):
    """Raised when the wake capability itself failed."""


class MessageFormatError(AnywakeError):
    """Raised when an inbound peer message cannot be decoded or validated."""
