"""
Custom exceptions for the meeting pipeline.
"""
from typing import Any, Optional


class PipelineError(Exception):
    """Base exception for pipeline errors."""
    pass


class NotFoundError(PipelineError):
    """Referenced entity does not exist."""
    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class IntegrationError(PipelineError):
    """Base class for external collaborator errors."""
    def __init__(self, message: str, integration: str = None, status_code: int = None):
        self.integration = integration
        self.status_code = status_code
        super().__init__(message)


class TransientIntegrationError(IntegrationError):
    """Network, timeout or rate-limit failure expected to succeed on retry."""
    pass


class RateLimitError(TransientIntegrationError):
    """API rate limit exceeded."""
    def __init__(self, message: str, retry_after: Optional[float] = None, integration: str = None):
        self.retry_after = retry_after
        super().__init__(message, integration=integration, status_code=429)


class MalformedOutputError(TransientIntegrationError):
    """Model response did not have the requested shape."""
    pass


class PermanentIntegrationError(IntegrationError):
    """Failure that will not go away on retry (bad input, unsupported audio)."""
    pass


class AuthError(PermanentIntegrationError):
    """Missing, revoked or unusable credential for a collaborator."""
    pass


class ParseError(PipelineError):
    """A single action item returned by the model failed validation."""
    def __init__(self, message: str, raw: Any = None):
        self.raw = raw
        super().__init__(message)


class StateConflictError(PipelineError):
    """Transition attempted from a terminal or out-of-order state."""
    def __init__(self, meeting_id: str, current: Optional[str], expected: Optional[str] = None):
        self.meeting_id = meeting_id
        self.current = current
        self.expected = expected
        super().__init__(
            f"Meeting {meeting_id} is '{current}'"
            + (f", expected '{expected}'" if expected else "")
        )


class UnusableTranscriptError(PipelineError):
    """Transcript is missing or empty and cannot be used for extraction."""
    pass


class QueueClosedError(PipelineError):
    """Job queue no longer accepts jobs."""
    pass


class ConfigurationError(PipelineError):
    """Configuration or environment variable errors."""
    pass
