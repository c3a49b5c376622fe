class AnalyticsError(RuntimeError):
    """Base class for failures raised inside the pipeline components."""


class ConfigurationError(ValueError):
    """Raised when the analytics configuration is missing or malformed."""


class EventValidationError(ValueError):
    """Raised when an event name or its parameters cannot be accepted."""


class StorageError(AnalyticsError):
    """Raised when the persistence collaborator cannot be read or written."""


class TransportError(AnalyticsError):
    """Raised when a batch cannot be serialised for delivery."""
