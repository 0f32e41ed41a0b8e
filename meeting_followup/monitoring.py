"""
Pipeline metrics exported through Prometheus.
"""
from prometheus_client import Counter, Histogram, Gauge
from typing import Callable
import inspect
import functools
import time


stage_runs_total = Counter(
    'pipeline_stage_runs_total',
    'Stage executions by outcome',
    ['stage', 'outcome']
)

stage_duration = Histogram(
    'pipeline_stage_duration_seconds',
    'Time spent running a pipeline stage',
    ['stage']
)

status_transitions_total = Counter(
    'meeting_status_transitions_total',
    'Meeting status transitions',
    ['from_status', 'to_status']
)

integration_requests_total = Counter(
    'integration_requests_total',
    'Requests made to external collaborators',
    ['integration', 'operation', 'status']
)

integration_request_duration = Histogram(
    'integration_request_duration_seconds',
    'Duration of requests to external collaborators',
    ['integration', 'operation']
)

jobs_processed_total = Counter(
    'pipeline_jobs_processed_total',
    'Jobs handled by the worker pool',
    ['outcome']
)

job_duration = Histogram(
    'pipeline_job_duration_seconds',
    'Duration of a single job delivery'
)

queue_depth = Gauge(
    'pipeline_queue_depth',
    'Jobs waiting in the queue'
)

notifications_total = Counter(
    'action_item_notifications_total',
    'Action item notification attempts',
    ['channel', 'outcome']
)

errors_total = Counter(
    'pipeline_errors_total',
    'Total number of errors by type',
    ['error_type', 'component']
)


def track_time(metric: Histogram, labels: dict = None):
    """
    Decorator to track execution time of a coroutine function.

    Args:
        metric: Prometheus Histogram metric
        labels: Optional labels for the metric
    """
    def decorator(func: Callable):
        if not inspect.iscoroutinefunction(func):
            raise TypeError("track_time only wraps coroutine functions")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.monotonic()
            try:
                return await func(*args, **kwargs)
            finally:
                duration = time.monotonic() - start_time
                if labels:
                    metric.labels(**labels).observe(duration)
                else:
                    metric.observe(duration)

        return wrapper

    return decorator


def record_error(error_type: str, component: str):
    """
    Record an error occurrence.

    Args:
        error_type: Type of error (e.g., 'TransientIntegrationError')
        component: Component where error occurred (e.g., 'slack_service')
    """
    errors_total.labels(error_type=error_type, component=component).inc()
