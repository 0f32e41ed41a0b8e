"""
Logging for the pipeline: structlog on top of the standard library.

In ``json`` mode every structlog event is handed to the stdlib logger as
``extra`` fields and written as one flat JSON object per line by
python-json-logger, so library loggers (httpx, SQLAlchemy) share the same
output. ``console`` mode renders coloured key=value lines for local runs.

Job-scoped fields are bound with ``meeting_context`` and picked up by every
logger inside the block.
"""
import logging
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator, List

import structlog
from pythonjsonlogger import jsonlogger

if TYPE_CHECKING:
    from meeting_followup.config import Settings

# Library loggers that are chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def _processors(log_format: str) -> List[Any]:
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]
    if log_format == "console":
        processors += [
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ]
    else:
        # timestamp, level and logger come from the JSON formatter
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.render_to_log_kwargs,
        ]
    return processors


def _formatter(log_format: str) -> logging.Formatter:
    if log_format == "console":
        return logging.Formatter("%(message)s")
    return jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger", "message": "event"},
    )


def setup_logging(settings: "Settings") -> None:
    """
    Configure stdlib and structlog from settings.

    ``debug`` forces DEBUG, otherwise ``log_level`` applies. ``log_format``
    picks JSON lines or console output.
    """
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_formatter(settings.log_format))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=_processors(settings.log_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)


@contextmanager
def meeting_context(meeting_id: str, **fields: Any) -> Iterator[None]:
    """
    Tag every log line in the current task with ``meeting_id`` and ``fields``.

    Values bound by an enclosing block are restored on exit, and concurrent
    workers never see each other's fields since each asyncio task has its own
    context.
    """
    with structlog.contextvars.bound_contextvars(meeting_id=meeting_id, **fields):
        yield
