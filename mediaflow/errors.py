"""
Error taxonomy for job and execution failures.

Each class carries a `kind` that is stored on the failed job record
(`errorKind`) so callers can tell a bad parameter from a provider outage.
"""


class MediaflowError(Exception):
    kind = "internal"


class ConfigurationError(MediaflowError):
    """Missing or invalid credential/configuration. Raised at adapter construction."""
    kind = "configuration"


class ParameterValidationError(MediaflowError, ValueError):
    """Job parameters do not match the model schema. Never retried."""
    kind = "validation"

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []


class PlanValidationError(MediaflowError, ValueError):
    """Submitted execution plan is malformed (duplicate ids, forward references)."""
    kind = "validation"


class ProviderError(MediaflowError):
    """The remote provider reported a failure or cancellation."""
    kind = "provider"


class ExtractionError(MediaflowError):
    """A dependency's output could not be turned into an input value."""
    kind = "extraction"


class JobTimeoutError(MediaflowError, TimeoutError):
    """Polling budget exhausted before the provider reached a terminal status."""
    kind = "timeout"


class UploadError(MediaflowError):
    """Inline provider output could not be persisted to object storage."""
    kind = "upload"


class ExecutionFailedError(MediaflowError):
    """Raised client-side when a waited-on execution ends `failed`."""
    kind = "execution"

    def __init__(self, message: str, execution_id: str | None = None):
        super().__init__(message)
        self.execution_id = execution_id
