"""
Service for delivering action items to assignees over Slack direct messages.
"""
from typing import Optional

import httpx
from aiolimiter import AsyncLimiter

from meeting_followup.exceptions import (
    AuthError,
    MalformedOutputError,
    PermanentIntegrationError,
    RateLimitError,
    TransientIntegrationError,
)
from meeting_followup.logging_config import get_logger
from meeting_followup.monitoring import record_error
from meeting_followup.services.base import BaseHTTPService, _parse_retry_after
from meeting_followup.services.contracts import ChatCredential, ChatMessage

logger = get_logger(__name__)

# Slack answers HTTP 200 with ok=false; these codes are worth retrying
TRANSIENT_SLACK_ERRORS = {"ratelimited", "internal_error", "fatal_error", "service_unavailable", "request_timeout"}
AUTH_SLACK_ERRORS = {
    "not_authed",
    "invalid_auth",
    "account_inactive",
    "token_revoked",
    "token_expired",
    "no_permission",
    "missing_scope",
}


class SlackChatService(BaseHTTPService):
    """Posts structured direct messages with ``chat.postMessage``."""

    integration = "chat"

    def __init__(
        self,
        api_base: str = "https://slack.com/api",
        timeout: float = 15.0,
        limiter: Optional[AsyncLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout, limiter=limiter, transport=transport)
        self.api_base = api_base.rstrip("/")

    async def send_direct_message(self, credential: ChatCredential, message: ChatMessage) -> str:
        """
        Send a message to the recipient's DM channel.

        Returns:
            The message timestamp Slack assigned (delivery receipt)
        """
        response = await self._request(
            "POST",
            f"{self.api_base}/chat.postMessage",
            "post_message",
            headers={"Authorization": f"Bearer {credential.token}"},
            json={"channel": credential.channel, "text": message.text, "blocks": message.blocks},
        )
        data = self._json(response, "post_message")
        if not isinstance(data, dict):
            raise MalformedOutputError("Slack response is not an object", integration=self.integration)

        if not data.get("ok"):
            error = data.get("error", "unknown_error")
            record_error(error, "slack_service")
            if error == "ratelimited":
                retry_after = _parse_retry_after(response.headers.get("Retry-After"))
                raise RateLimitError(
                    "Slack rate limit exceeded",
                    retry_after=30.0 if retry_after is None else retry_after,
                    integration=self.integration,
                )
            if error in TRANSIENT_SLACK_ERRORS:
                raise TransientIntegrationError(f"Slack error: {error}", integration=self.integration)
            if error in AUTH_SLACK_ERRORS:
                raise AuthError(f"Slack rejected credential: {error}", integration=self.integration)
            raise PermanentIntegrationError(f"Slack error: {error}", integration=self.integration)

        receipt = data.get("ts", "")
        logger.info("slack_message_sent", channel=credential.channel, ts=receipt)
        return receipt
