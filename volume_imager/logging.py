from __future__ import annotations

import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger


def setup_logging(
    *,
    debug: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup console and optional file logging.

    Logging Tiers:
    - ERROR: Failed builds, failing command and exit code
    - WARNING: Degraded copies (rsync exit 23, retry without xattrs)
    - SUCCESS/INFO: Stage progress, exclusion list, written fstab
    - DEBUG: Command execution and captured command output

    Log Files (only when log_dir is given):
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)

    Args:
        debug: Enable DEBUG level logging
        log_dir: Directory for log files; console only when omitted
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    console_level = "DEBUG" if debug else "INFO"

    # SINK 1: Console (stderr) - operator-facing diagnostics
    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <8}</cyan> | "
            "{message}"
        ),
    )

    if log_dir is None:
        return logger

    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Operations Log - Important events only (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <8} | "
            "{extra[job_id]: <15} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log - Detailed diagnostics (DEBUG+ when debug=True)
    if debug:
        logger.add(
            log_dir / "debug.log",
            level="DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <8} | "
                "{extra[job_id]: <15} | "
                "{extra[tags]} | "
                "{message}"
            ),
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
        tags: Tags for filtering (e.g., ["bundle", "storage"])
        source: Source component (e.g., "bundle", "system")

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


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Automatically logs operation start, completion, and failure with duration tracking.

    Args:
        operation: Operation name (e.g., "bundle")
        **details: Operation-specific details to log

    Yields:
        Logger bound with job_id and operation context

    Example:
        with operation_context("bundle", volume="/", image="/tmp/image") as log:
            log.debug("Formatting image")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed", duration_seconds=round(duration, 2)
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.

    Each factory method returns a logger pre-configured with appropriate
    source and tags for the domain.
    """

    @staticmethod
    def for_bundle(job_id: str | None = None, **details) -> Logger:
        """Logger for image construction stages."""
        if job_id is None:
            job_id = f"bundle-{uuid.uuid4().hex[:8]}"
        return logger.bind(
            job_id=job_id, source="bundle", tags=["bundle", "storage"], **details
        )

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, preflight, config)."""
        return logger.bind(source="system", tags=["system"])
