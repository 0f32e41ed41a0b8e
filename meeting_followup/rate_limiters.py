"""
Rate limiting configuration for collaborator API calls.
"""
from aiolimiter import AsyncLimiter

from meeting_followup.config import Settings


class RateLimiters:
    """Rate limiters for each external collaborator, built from settings."""

    def __init__(self, settings: Settings):
        """Initialize rate limiters for the collaborator APIs."""
        # Transcription and extraction share the OpenAI account quota
        self.openai_limiter = AsyncLimiter(max_rate=settings.openai_rate_limit, time_period=60)

        # Slack chat.postMessage: roughly one message per second per channel
        self.slack_limiter = AsyncLimiter(max_rate=settings.slack_rate_limit, time_period=60)

        self.calendar_limiter = AsyncLimiter(max_rate=settings.calendar_rate_limit, time_period=60)

    def for_integration(self, integration: str) -> AsyncLimiter:
        """Return the limiter guarding an integration kind."""
        if integration in ("transcription", "extraction"):
            return self.openai_limiter
        if integration == "chat":
            return self.slack_limiter
        if integration == "calendar":
            return self.calendar_limiter
        raise KeyError(f"No rate limiter for integration '{integration}'")
