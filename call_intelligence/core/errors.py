"""Pipeline exception types.

Routes translate these into HTTP status codes; workers use them to decide
between retrying a job with backoff and failing it terminally.
"""


class PipelineError(Exception):
    """Base class for call pipeline errors."""


class AuthenticationError(PipelineError):
    """Inbound request could not be authenticated (401)."""


class PayloadValidationError(PipelineError):
    """Inbound payload is missing required fields (400)."""


class DownstreamError(PipelineError):
    """An external service failed or returned nothing usable. Retried with backoff."""


class ConfigurationError(PipelineError):
    """Required configuration is missing or unsafe. Never retried."""


def is_retryable(error: Exception) -> bool:
    """Whether a failed job should be rescheduled after this error."""
    return not isinstance(error, ConfigurationError)
