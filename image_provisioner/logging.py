from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "IMAGE_PROVISIONER_LOG_DIR",
        Path.home() / ".local" / "state" / "image-provisioner" / "logs",
    )
)


def _should_log_command_output(record) -> bool:
    """Filter raw tool output lines - only show in TRACE mode."""
    tags = record["extra"].get("tags", [])

    if "command-output" in tags:
        return record["level"].no <= logger.level("TRACE").no

    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
    file_sinks: bool = True,
) -> Logger:
    """
    Setup logging with separate sinks for console, operations and diagnostics.

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug or --trace is enabled (3 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/image-provisioner/logs)
        file_sinks: Set to False to log to stderr only
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr)
    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        filter=_should_log_command_output,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <12}</cyan> | "
            "<blue>{extra[job_id]: <18}</blue> | "
            "{message}"
        ),
    )

    if not file_sinks:
        return logger

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Operations Log (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <12} | "
            "{extra[job_id]: <18} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log (DEBUG+ when debug=True)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <12} | "
                "{extra[job_id]: <18} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Structured JSON Log (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking operations
        tags: Tags for filtering (e.g., ["pipeline", "codec"])
        source: Source component (e.g., "pipeline", "workspace")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


def new_job_id(operation: str) -> str:
    return f"{operation}-{uuid.uuid4().hex[:8]}"


@contextmanager
def operation_context(operation: str, job_id: str | None = None, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Logs operation start, completion, and failure with duration tracking.
    Failures are re-raised unchanged.

    Args:
        operation: Operation name (e.g., "provision", "copy-to-image")
        job_id: Job identifier; generated from the operation name if omitted
        **details: Operation-specific details to log

    Yields:
        Logger bound with job_id and operation context

    Example:
        with operation_context("provision", image="/images/a.wic") as log:
            log.debug("Staging image")
    """
    job_id = job_id or new_job_id(operation)

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started")

        try:
            yield log
            duration = time.time() - start_time
            log.bind(duration_seconds=round(duration, 2)).success(
                f"{operation.capitalize()} completed"
            )
        except Exception as e:
            duration = time.time() - start_time
            # no format kwargs: the message may contain braces
            log.bind(
                error_type=type(e).__name__, duration_seconds=round(duration, 2)
            ).error(f"{operation.capitalize()} failed: {e}")
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_workspace() -> Logger:
        """Logger for staging directory lifecycle."""
        return logger.bind(source="workspace", tags=["workspace", "storage"])

    @staticmethod
    def for_compression() -> Logger:
        """Logger for codec invocations."""
        return logger.bind(source="codec", tags=["codec", "storage"])

    @staticmethod
    def for_partition() -> Logger:
        """Logger for partition table and partition file operations."""
        return logger.bind(source="partition", tags=["partition", "storage"])

    @staticmethod
    def for_cli() -> Logger:
        """Logger for command line handling."""
        return logger.bind(source="cli", tags=["cli"])
