"""
Retry policy shared by every pipeline stage and by the worker pool.
"""
import logging
from typing import Any, Awaitable, Callable, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from meeting_followup.config import Settings
from meeting_followup.exceptions import TransientIntegrationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Maximum attempts, backoff function and error classification in one object.

    ``run`` retries a coroutine in place; ``backoff`` exposes the same wait
    function so callers that reschedule work (the job queue) pace themselves
    identically.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_base: float = 2.0,
        min_wait: float = 1.0,
        max_wait: float = 60.0,
        retry_on: Tuple[Type[BaseException], ...] = (TransientIntegrationError,),
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.retry_on = retry_on
        self.wait = wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait, exp_base=backoff_base)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "RetryPolicy":
        params = dict(
            max_attempts=settings.max_retries,
            backoff_base=settings.retry_backoff_base,
            min_wait=settings.retry_min_wait,
            max_wait=settings.retry_max_wait,
        )
        params.update(overrides)
        return cls(**params)

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)

    def backoff(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        state.attempt_number = attempt
        return self.wait(state)

    def _wait_for(self, retry_state: RetryCallState) -> float:
        # Rate limits tell us how long to back off
        error = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(error, "retry_after", None)
        computed = self.wait(retry_state)
        if retry_after:
            return max(computed, float(retry_after))
        return computed

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Await ``fn`` until it succeeds, a non-retryable error is raised, or
        the attempt budget is spent. The last error is re-raised unchanged.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait_for,
            retry=retry_if_exception(self.is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return await retrying(fn, *args, **kwargs)
