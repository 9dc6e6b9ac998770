import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar, Token
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Generator, Optional, Union

# Context-local trace id, e.g. "trigger:<id>" while a trigger is being mutated
trace_id: ContextVar[Optional[str]] = ContextVar("flash_pm_trace_id", default=None)


class TraceFormatter(logging.Formatter):
    """
    Formatter that prefixes the active trace id and renders timestamps in UTC.
    """

    def __init__(self, fmt: str | None = None, datefmt: str | None = None):
        super().__init__(fmt, datefmt)
        self.converter = time.gmtime

    def formatTime(self, record, datefmt=None):
        ct = self.converter(record.created)
        if datefmt:
            return time.strftime(datefmt, ct)
        t = time.strftime("%Y-%m-%dT%H:%M:%S", ct)
        return "%s.%03dZ" % (t, record.msecs)

    def format(self, record: logging.LogRecord) -> str:
        tid = trace_id.get()
        record.trace_str = f"[{tid}] " if tid else ""
        return super().format(record)


def setup_logging(
    level: Union[int, str, None] = None,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = 10_485_760,  # 10MB
    backup_count: int = 10,
    namespace: str = "flash_pm",
) -> logging.Logger:
    """
    Configures the ``flash_pm`` logger tree.

    Args:
        level: Logging level. Defaults to ``pm_settings.LOG_LEVEL``.
        log_file: Optional path of a rotating log file.
        namespace: Logger to configure. Handlers are reset on every call so
            tests can reconfigure freely.

    Returns:
        The configured logger.
    """
    if level is None:
        from flash_pm.config import pm_settings

        level = pm_settings.LOG_LEVEL
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    target_logger = logging.getLogger(namespace)
    target_logger.handlers.clear()
    target_logger.setLevel(level)

    formatter = TraceFormatter(
        "%(asctime)s %(levelname)-8s %(trace_str)s%(name)s: %(message)s"
    )

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    target_logger.addHandler(console)

    if log_file:
        file_path = Path(log_file).resolve()
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                file_path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            target_logger.addHandler(file_handler)
        except OSError as e:
            # Read-only containers: keep stdout logging only
            sys.stderr.write(f"Failed to setup log file: {e}\n")

    target_logger.propagate = False
    return target_logger


def set_trace_id(value: str) -> Token:
    return trace_id.set(value)


def reset_trace_id(token: Token) -> None:
    trace_id.reset(token)


@contextmanager
def scoped_trace_id(value: str) -> Generator[None, None, None]:
    """
    Tags every log line emitted inside the block with ``value``.

    >>> with scoped_trace_id("trigger:abc"):
    ...     logger.info("rescheduled")
    """
    token = set_trace_id(value)
    try:
        yield
    finally:
        reset_trace_id(token)
