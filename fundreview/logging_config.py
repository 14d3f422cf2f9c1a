"""Loguru sinks and logging decorators for the review pipeline.

Every record can carry a ``session_id`` and a ``stage_name`` in its extras;
stage records also go to their own file so a single review can be followed
end to end. Document text and raw model output are only ever logged as
lengths, and ``redact_text_fields`` enforces that for the file sinks.
"""

import sys
import time
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from loguru import logger


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[session_id]}</cyan> | <cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time} | {level} | {extra[session_id]} | {name}:{function}:{line} | {message}"
STAGE_FORMAT = "{time} | {level} | {extra[session_id]} | {extra[stage_name]} | {message}"

# Extras that could hold document or model text
TEXT_FIELDS = ("document_text", "target_text", "reference_text", "prompt", "response", "reply")

logger.remove()
logger.configure(extra={"session_id": "-"})

_handler_ids: List[int] = []


def redact_text_fields(record: Dict[str, Any]) -> bool:
    """Loguru filter that replaces text-bearing extras with their length."""
    extra = record["extra"]
    for field in TEXT_FIELDS:
        value = extra.get(field)
        if isinstance(value, str):
            extra[field] = f"<{len(value)} chars>"
    return True


def setup_logging(
    log_dir: str = "logs",
    level: str = "DEBUG",
    rotation: str = "100 MB",
    retention: str = "30 days",
    compression: str = "zip",
    console: bool = True
) -> None:
    """Install the console and file sinks, replacing any installed earlier.

    Files written under ``log_dir``:
        fund_review_{time}.log       human-readable, all records at ``level``
        fund_review_json_{time}.log  one JSON object per record
        stages_{time}.log            records bound to a pipeline stage
        errors_{time}.log            ERROR and above

    Args:
        log_dir: Directory for log files
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        rotation: When to rotate log files
        retention: How long to keep old logs
        compression: Compression format for rotated logs
        console: Whether to also log to stderr
    """
    while _handler_ids:
        logger.remove(_handler_ids.pop())

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    file_options = dict(rotation=rotation, retention=retention, compression=compression)

    if console:
        _handler_ids.append(logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True))

    _handler_ids.extend([
        logger.add(
            log_path / "fund_review_{time}.log",
            format=FILE_FORMAT,
            level=level,
            filter=redact_text_fields,
            **file_options
        ),
        logger.add(
            log_path / "fund_review_json_{time}.log",
            level=level,
            filter=redact_text_fields,
            serialize=True,
            **file_options
        ),
        logger.add(
            log_path / "stages_{time}.log",
            format=STAGE_FORMAT,
            level="INFO",
            filter=lambda record: "stage_name" in record["extra"],
            **file_options
        ),
        logger.add(
            log_path / "errors_{time}.log",
            format=FILE_FORMAT,
            level="ERROR",
            **file_options
        ),
    ])

    logger.info("Logging system initialized", log_dir=log_dir, level=level)


def get_session_logger(session_id: str, stage_name: Optional[str] = None):
    """Logger bound to a review session and, optionally, a pipeline stage."""
    if stage_name:
        return logger.bind(session_id=session_id, stage_name=stage_name)
    return logger.bind(session_id=session_id)


def log_stage_execution(stage_name: str) -> Callable:
    """Decorator that logs a pipeline stage's start, duration and failure.

    The session is taken from the ``session_id`` keyword argument of the
    decorated call.

    Args:
        stage_name: Stage name recorded on every entry

    Returns:
        Decorated function with logging
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            stage_logger = get_session_logger(kwargs.get("session_id") or "-", stage_name)
            stage_logger.info(f"{stage_name} started")
            started = time.perf_counter()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                stage_logger.error(
                    f"{stage_name} failed after {time.perf_counter() - started:.3f}s",
                    error_type=type(e).__name__,
                    error=str(e)
                )
                raise

            stage_logger.info(
                f"{stage_name} finished",
                duration_seconds=round(time.perf_counter() - started, 3)
            )
            return result

        return wrapper
    return decorator


def log_tool_execution(tool_name: str) -> Callable:
    """Decorator that logs a tool call at DEBUG and its failure at ERROR."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            logger.debug(f"{tool_name}.{func.__name__} called")
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{tool_name}.{func.__name__} raised {type(e).__name__}",
                    error=str(e)
                )
                raise

        return wrapper
    return decorator
