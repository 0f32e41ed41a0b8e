"""
Shared HTTP plumbing for collaborator clients: lifecycle, timeouts, rate
limiting, metrics and classification of failures into transient/permanent.
"""
import time
from typing import Any, NoReturn, Optional

import httpx
from aiolimiter import AsyncLimiter

from meeting_followup.exceptions import (
    AuthError,
    ConfigurationError,
    MalformedOutputError,
    PermanentIntegrationError,
    RateLimitError,
    TransientIntegrationError,
)
from meeting_followup.logging_config import get_logger
from meeting_followup.monitoring import integration_request_duration, integration_requests_total, record_error

logger = get_logger(__name__)

TRANSIENT_STATUS_CODES = {408, 425, 500, 502, 503, 504}


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class BaseHTTPService:
    """Base class for httpx clients; subclasses set ``integration``."""

    integration = "http"

    def __init__(
        self,
        timeout: float,
        limiter: Optional[AsyncLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._limiter = limiter
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
            logger.debug("service_opened", integration=self.integration)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ConfigurationError(f"{type(self).__name__} used before open()")
        return self._client

    def _handle_http_error(self, error: httpx.HTTPStatusError, operation: str) -> NoReturn:
        """
        Raise the classified exception for an HTTP error response.

        Args:
            error: HTTP status error
            operation: Operation that failed
        """
        status_code = error.response.status_code

        integration_requests_total.labels(
            integration=self.integration,
            operation=operation,
            status=f"error_{status_code}"
        ).inc()

        error_text = error.response.text[:500] if error.response.text else "No details"
        if status_code == 429:
            record_error("RateLimitError", self.integration)
            raise RateLimitError(
                f"Rate limit exceeded for {operation}",
                retry_after=_parse_retry_after(error.response.headers.get("Retry-After")),
                integration=self.integration,
            )
        if status_code in (401, 403):
            record_error("AuthError", self.integration)
            raise AuthError(
                f"Credential rejected for {operation}: {status_code}",
                integration=self.integration,
                status_code=status_code,
            )
        if status_code in TRANSIENT_STATUS_CODES:
            record_error("TransientIntegrationError", self.integration)
            raise TransientIntegrationError(
                f"Server error in {operation}: {status_code} - {error_text}",
                integration=self.integration,
                status_code=status_code,
            )
        record_error("PermanentIntegrationError", self.integration)
        raise PermanentIntegrationError(
            f"API error in {operation}: {status_code} - {error_text}",
            integration=self.integration,
            status_code=status_code,
        )

    async def _request(self, method: str, url: str, operation: str, **kwargs: Any) -> httpx.Response:
        """Send a request and return the successful response or raise a classified error."""
        start_time = time.monotonic()
        if self._limiter is not None:
            await self._limiter.acquire()

        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.TimeoutException as e:
            record_error("TimeoutError", self.integration)
            logger.warning("integration_timeout", integration=self.integration, operation=operation, error=str(e))
            raise TransientIntegrationError(f"Timeout in {operation}", integration=self.integration)
        except httpx.TransportError as e:
            record_error(type(e).__name__, self.integration)
            logger.warning("integration_transport_error", integration=self.integration, operation=operation, error=str(e))
            raise TransientIntegrationError(f"Network error in {operation}: {e}", integration=self.integration)

        integration_requests_total.labels(
            integration=self.integration,
            operation=operation,
            status="success"
        ).inc()
        integration_request_duration.labels(
            integration=self.integration,
            operation=operation
        ).observe(time.monotonic() - start_time)
        return response

    def _json(self, response: httpx.Response, operation: str) -> Any:
        """Decoded JSON body, or ``MalformedOutputError`` when the body is not JSON."""
        try:
            return response.json()
        except ValueError:
            record_error("MalformedOutputError", self.integration)
            raise MalformedOutputError(
                f"Non-JSON response body from {operation}",
                integration=self.integration,
                status_code=response.status_code,
            )
