"""Error taxonomy shared by the resource allocator, intent handlers and engine."""
from typing import Optional


class IntentError(Exception):
    """Base class for all netintent errors."""
    pass


class ValidationError(IntentError):
    """Malformed target or config.

    Carries a field -> message mapping that is surfaced to the operator
    as contextual errors. Never retried automatically.
    """

    def __init__(self, message: str, fields: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.fields = dict(fields) if fields else {"Invalid input": message}


class ResourceError(IntentError):
    """Base class for resource pool errors."""
    pass


class ResourceExhaustedError(ResourceError):
    """Pool has no free block that fits the request."""
    pass


class ResourceConflictError(ResourceError):
    """Pool redeclared with an incompatible definition."""
    pass


class NotFoundError(ResourceError, LookupError):
    """Lookup of an unknown pool, allocation or device path."""
    pass


class DeviceUnavailableError(IntentError):
    """Device could not be reached for discovery, audit or deployment."""

    def __init__(self, element_id: str, reason: str = ""):
        message = f"Device {element_id} unavailable"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.element_id = element_id


class DeploymentError(IntentError):
    """Device rejected a configuration patch."""

    def __init__(self, element_id: str, reason: str = ""):
        super().__init__(reason or f"Deployment on {element_id} failed")
        self.element_id = element_id


class TemplateError(IntentError):
    """Deployment template missing, failed to render or produced invalid output."""
    pass
