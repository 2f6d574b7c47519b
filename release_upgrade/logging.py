"""Loguru configuration for upgrade runs.

Levels as used across the package:

    ERROR    a step failed and the run stops
    WARNING  the run continues but the operator should look (overwritten
             backups, skipped install paths, replaced merge files)
    SUCCESS  a step finished
    INFO     progress, and every file removed or installed in bulk
    DEBUG    command lines and per-file decisions
    TRACE    raw output of external commands

Every record carries ``job_id``, ``tags`` and ``source`` extras so the
structured log can be filtered per step or component.
"""

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

DEFAULT_LOG_DIR = Path(os.environ.get("RELEASE_UPGRADE_LOG_DIR", "/var/log/release-upgrade"))

COMMAND_OUTPUT_TAG = "command-output"

_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[source]: <10} | {extra[job_id]: <24} | {message}"
)
_DEBUG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[source]: <10} | {extra[job_id]: <24} | {extra[tags]} | {message}"
)
_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[source]: <10}</cyan> | {message}"
)


def _console_filter(record) -> bool:
    """Hide raw command output from the console unless tracing."""
    if record["level"].no >= logger.level("WARNING").no:
        return True
    if COMMAND_OUTPUT_TAG in record["extra"].get("tags", []):
        return record["level"].no <= logger.level("TRACE").no
    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """Replace all sinks with the console and file sinks of an upgrade run.

    Files written to ``log_dir`` (default ``/var/log/release-upgrade``):

    - operations.log: INFO and above, kept 30 days
    - debug.log: only with ``debug`` or ``trace``, kept 7 days
    - structured.jsonl: INFO and above as JSON lines, kept 30 days

    Raises:
        OSError: If the log directory cannot be created
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "upgrade"})

    verbose_level = "TRACE" if trace else "DEBUG" if debug else None

    logger.add(
        sys.stderr,
        level=verbose_level or "INFO",
        format=_CONSOLE_FORMAT,
        filter=_console_filter,
        colorize=True,
        backtrace=False,
        diagnose=False,
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_dir / "operations.log",
        level="INFO",
        format=_FILE_FORMAT,
        rotation="5 MB",
        retention="30 days",
        compression="zip",
        backtrace=False,
        diagnose=False,
    )
    if verbose_level:
        logger.add(
            log_dir / "debug.log",
            level=verbose_level,
            format=_DEBUG_FORMAT,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            backtrace=True,
            diagnose=True,
        )
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        format="{message}",
        serialize=True,
        rotation="10 MB",
        retention="30 days",
        compression="zip",
    )
    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """Logger bound to whichever of ``job_id``, ``tags`` and ``source`` are given."""
    context = {
        "job_id": job_id,
        "tags": list(tags) if tags is not None else None,
        "source": source,
    }
    return logger.bind(**{key: value for key, value in context.items() if value is not None})


@contextmanager
def operation_context(operation: str, **details):
    """Time one pipeline step and log its start, completion or failure.

    Records logged inside the block share a ``job_id`` of the form
    ``<operation>-<8 hex digits>``. Exceptions are logged and re-raised.

    Example:
        with operation_context("install_world", step=3) as log:
            log.info("Installing /bin")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"
    started = time.monotonic()

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        log = logger.bind(source="pipeline", job_id=job_id, tags=[operation])
        log.debug(f"{operation} started", **details)
        try:
            yield log
        except Exception as e:
            log.error(
                f"{operation} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(time.monotonic() - started, 2),
            )
            raise
        log.success(
            f"{operation} completed",
            duration_seconds=round(time.monotonic() - started, 2),
        )


class LoggerFactory:
    """Per-component loggers with ``source`` and ``tags`` already bound."""

    @staticmethod
    def for_pipeline() -> Logger:
        return logger.bind(source="pipeline", tags=["pipeline"])

    @staticmethod
    def for_mount() -> Logger:
        """Image attach, mount, unmount and detach."""
        return logger.bind(source="mount", tags=["mount", "storage"])

    @staticmethod
    def for_install() -> Logger:
        """Bulk installs and backups."""
        return logger.bind(source="install", tags=["install", "storage"])

    @staticmethod
    def for_config() -> Logger:
        """Configuration reconciliation."""
        return logger.bind(source="config", tags=["config", "merge"])

    @staticmethod
    def for_sweep() -> Logger:
        """Obsolete file removal."""
        return logger.bind(source="sweep", tags=["obsolete", "storage"])

    @staticmethod
    def for_accounts() -> Logger:
        return logger.bind(source="accounts", tags=["accounts"])

    @staticmethod
    def for_system() -> Logger:
        """Startup, database rebuilds and anything not tied to one component."""
        return logger.bind(source="system", tags=["system"])
