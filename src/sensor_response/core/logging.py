"""
Logging for the sensor response engine.

Every module logs through a child of the ``sensor_response`` logger. Records
can carry estimation fields (rounds, error value, mapping count) as
``extra`` attributes, and :class:`LogContext` tags everything logged inside
an estimation run with its run id and channel.

Usage:
    from sensor_response.core.logging import get_logger, setup_logging

    setup_logging(level="DEBUG", json_format=True)

    logger = get_logger(__name__)
    logger.info("Fit finished", extra={"rounds": 300, "error_value": 0.004})
"""

import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from sensor_response.config import get_settings

PACKAGE_LOGGER = "sensor_response"

CONSOLE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_run_context: ContextVar[dict[str, Any]] = ContextVar("sensor_response_run", default={})

# Record attributes that structured output picks up when present
STRUCTURED_FIELDS = (
    "run_id",
    "channel",
    "operation",
    "rounds",
    "error_value",
    "mapping_count",
    "duration_seconds",
)

_configured = False


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with run context and estimation fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.lineno}",
        }

        context = _run_context.get()
        if context:
            entry["context"] = dict(context)

        entry.update(
            {name: getattr(record, name) for name in STRUCTURED_FIELDS if hasattr(record, name)}
        )

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception_type"] = record.exc_info[0].__name__
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name on a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Copy so file handlers keep the plain level name
        colored = logging.makeLogRecord(record.__dict__)
        color = self.LEVEL_COLORS.get(record.levelno, "")
        colored.levelname = f"{color}{record.levelname:<8}{self.RESET}"
        return super().format(colored)


def _console_handler(json_format: bool, colored: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    if json_format:
        handler.setFormatter(JSONFormatter())
    elif colored and sys.stderr.isatty():
        handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    else:
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _file_handler(log_file: Path) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
    json_format: Optional[bool] = None,
    colored: bool = True,
) -> logging.Logger:
    """Configure the package logger.

    Replaces any handlers installed by a previous call. Arguments left as
    None are taken from the settings (``SENSOR_LOG_LEVEL``,
    ``SENSOR_LOG_FILE``, ``SENSOR_LOG_JSON``). Files always get JSON lines.

    Returns:
        The package logger.
    """
    global _configured

    settings = get_settings()
    level = (level or settings.log_level).upper()
    log_file = log_file or settings.log_file
    json_format = settings.log_json if json_format is None else json_format

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    package_logger.addHandler(_console_handler(json_format, colored))
    if log_file:
        package_logger.addHandler(_file_handler(Path(log_file)))

    _configured = True
    package_logger.debug(f"Logging configured: level={level} file={log_file} json={json_format}")
    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the package namespace, configuring logging on first use."""
    if not _configured:
        setup_logging()
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


class LogContext:
    """Attach run fields to every record formatted inside the block.

    Contexts nest; inner values override outer ones until the inner block
    exits.

    Example:
        with LogContext(run_id=new_run_id(), channel=0):
            estimator.advance(100)
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._tokens: list = []

    def __enter__(self) -> "LogContext":
        self._tokens.append(_run_context.set({**_run_context.get(), **self.fields}))
        return self

    def __exit__(self, *exc_info: Any) -> None:
        _run_context.reset(self._tokens.pop())


def new_run_id() -> str:
    """Short random id for tagging one estimation run."""
    return uuid.uuid4().hex[:8]


@contextmanager
def log_operation(
    logger: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    **fields: Any,
) -> Iterator[None]:
    """Log the start, end and duration of an operation.

    Extra keyword fields are attached to the start record. Failures are
    logged with the traceback and re-raised.
    """
    logger.log(level, f"Starting: {operation}", extra={"operation": operation, **fields})
    started = time.perf_counter()
    try:
        yield
    except Exception as e:
        logger.error(
            f"Failed: {operation}: {type(e).__name__}: {e}",
            extra={"operation": operation, "duration_seconds": round(time.perf_counter() - started, 4)},
            exc_info=True,
        )
        raise
    logger.log(
        level,
        f"Completed: {operation}",
        extra={"operation": operation, "duration_seconds": round(time.perf_counter() - started, 4)},
    )


class LoggingMixin:
    """Gives a class a ``logger`` named after its module."""

    @property
    def logger(self) -> logging.Logger:
        return get_logger(type(self).__module__)

    def log_method_call(self, method_name: str, **params: Any) -> None:
        """Debug-log a call and its arguments."""
        if self.logger.isEnabledFor(logging.DEBUG):
            args = ", ".join(f"{k}={v!r}" for k, v in params.items())
            self.logger.debug(f"{type(self).__name__}.{method_name}({args})")
