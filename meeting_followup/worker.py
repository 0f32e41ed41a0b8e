"""
Job queue and bounded worker pool.

``JobQueue.enqueue`` is fire-and-forget with at-least-once delivery: a
meeting id may be processed more than once, which the coordinator turns into
a no-op. Workers drive a meeting to a terminal status. When infrastructure
errors escape the coordinator the job is re-enqueued after a backoff delay
(without holding a worker slot) until its attempt budget is spent, then the
meeting is marked failed and never re-queued automatically.
"""
import asyncio
from dataclasses import dataclass, replace
from typing import List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from meeting_followup.coordinator import PipelineCoordinator
from meeting_followup.exceptions import NotFoundError, QueueClosedError, TransientIntegrationError
from meeting_followup.logging_config import get_logger, meeting_context
from meeting_followup.monitoring import job_duration, jobs_processed_total, queue_depth, record_error, track_time
from meeting_followup.retry import RetryPolicy

logger = get_logger(__name__)

JOB_RETRYABLE_ERRORS = (SQLAlchemyError, OSError, TransientIntegrationError)


@dataclass(frozen=True)
class Job:
    meeting_id: str
    attempt: int = 1

    def next_attempt(self) -> "Job":
        return replace(self, attempt=self.attempt + 1)


class JobQueue:
    """Typed job channel with delayed re-delivery and a closed state."""

    def __init__(self, maxsize: int = 0):
        self._queue: "asyncio.Queue[Job]" = asyncio.Queue(maxsize)
        self._delayed: Set[asyncio.Task] = set()
        self._closed = False

    def enqueue(self, meeting_id: str) -> None:
        """Submit a meeting for processing."""
        self._put(Job(meeting_id))
        logger.debug("job_enqueued", meeting_id=meeting_id)

    def enqueue_later(self, job: Job, delay: float) -> None:
        """Re-deliver ``job`` after ``delay`` seconds. Allowed on a closed queue."""
        task = asyncio.create_task(self._put_after(job, delay))
        self._delayed.add(task)
        task.add_done_callback(self._delayed.discard)

    async def _put_after(self, job: Job, delay: float) -> None:
        await asyncio.sleep(delay)
        self._queue.put_nowait(job)
        queue_depth.set(self._queue.qsize())

    def _put(self, job: Job) -> None:
        if self._closed:
            raise QueueClosedError("Job queue is closed")
        self._queue.put_nowait(job)
        queue_depth.set(self._queue.qsize())

    async def get(self) -> Job:
        job = await self._queue.get()
        queue_depth.set(self._queue.qsize())
        return job

    def task_done(self) -> None:
        self._queue.task_done()

    def close(self) -> None:
        """Stop accepting new jobs; retries already scheduled still land."""
        self._closed = True

    async def join(self) -> None:
        """Wait until queued, delayed and in-flight jobs are all finished."""
        while True:
            await self._queue.join()
            if not self._delayed:
                return
            await asyncio.gather(*list(self._delayed), return_exceptions=True)

    def cancel_delayed(self) -> int:
        pending = list(self._delayed)
        for task in pending:
            task.cancel()
        return len(pending)

    def qsize(self) -> int:
        return self._queue.qsize()


class WorkerPool:
    """A fixed number of worker tasks pulling jobs from a ``JobQueue``."""

    def __init__(
        self,
        coordinator: PipelineCoordinator,
        queue: JobQueue,
        concurrency: int = 4,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._coordinator = coordinator
        self._queue = queue
        self._concurrency = concurrency
        self._retry_policy = retry_policy or RetryPolicy(max_attempts=5, retry_on=JOB_RETRYABLE_ERRORS)
        self._workers: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"pipeline-worker-{index}")
            for index in range(self._concurrency)
        ]
        logger.info("worker_pool_started", concurrency=self._concurrency)

    async def shutdown(self, drain: bool = True) -> None:
        """
        Stop the pool. With ``drain`` the queue stops accepting jobs and the
        pool finishes everything already accepted (including scheduled
        retries); without it pending retries and workers are cancelled.
        """
        self._queue.close()
        if drain:
            await self._queue.join()
        else:
            dropped = self._queue.cancel_delayed()
            if dropped:
                logger.warning("scheduled_retries_dropped", count=dropped)

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("worker_pool_stopped", drained=drain)

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._process(job)
            except Exception as e:
                # The worker must outlive any single job
                record_error(type(e).__name__, "worker")
                logger.error(
                    "worker_job_crashed",
                    worker=index,
                    meeting_id=job.meeting_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=e,
                )
            finally:
                self._queue.task_done()

    @track_time(job_duration)
    async def _process(self, job: Job) -> None:
        with meeting_context(job.meeting_id, job_attempt=job.attempt):
            try:
                result = await self._coordinator.run_to_completion(job.meeting_id)
                jobs_processed_total.labels(outcome=result.status.value).inc()
                logger.info("job_finished", status=result.status.value, noop=result.noop)
            except NotFoundError as e:
                jobs_processed_total.labels(outcome="discarded").inc()
                logger.warning("job_discarded_not_found", error=str(e))
            except Exception as e:
                record_error(type(e).__name__, "worker")
                await self._handle_failure(job, e)

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        policy = self._retry_policy
        if policy.is_retryable(error) and job.attempt < policy.max_attempts:
            delay = policy.backoff(job.attempt)
            logger.warning("job_retry_scheduled", error=str(error), error_type=type(error).__name__, delay=delay)
            jobs_processed_total.labels(outcome="retry").inc()
            self._queue.enqueue_later(job.next_attempt(), delay)
            return

        logger.error("job_failed", error=str(error), error_type=type(error).__name__, exc_info=error)
        jobs_processed_total.labels(outcome="failed").inc()
        try:
            await self._coordinator.fail(job.meeting_id, error)
        except NotFoundError:
            logger.warning("job_failed_meeting_gone")
        except SQLAlchemyError as e:
            # Meeting stays in its current status; an operator can re-enqueue it
            logger.error("job_fail_write_failed", error=str(e))
