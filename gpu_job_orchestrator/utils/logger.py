"""
Logging utilities for GPU Job Orchestrator

JSON log lines for the orchestrator, recovery, event bus and providers.
Job identity (job_id, instance_id, state) is lifted to the top level of each
line so a job's history can be grepped out of a mixed stream; every other
field passed through `extra=` lands under "context".
"""

import logging
import sys
import json
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from pathlib import Path

PACKAGE_LOGGER = "gpu_job_orchestrator"

JOB_FIELDS = ("job_id", "instance_id", "state")

# Present on every LogRecord; anything else came in through `extra` or a filter
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def _context_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per record.

        {"ts": ..., "level": "INFO", "logger": ..., "msg": ...,
         "job_id": ..., "context": {...}, "error": {...}}
    """

    def __init__(self, include_context: bool = True):
        super().__init__()
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage()
        }

        context = _context_fields(record)
        for key in JOB_FIELDS:
            if key in context:
                entry[key] = context.pop(key)

        if self.include_context and context:
            entry["context"] = context

        if record.exc_info and record.exc_info[0] is not None:
            entry["error"] = {
                "type": record.exc_info[0].__name__,
                "detail": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Human-readable lines with job fields appended, e.g. `... [job_id=ab12 state=running]`."""

    def __init__(self):
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context_fields(record)
        tags = " ".join(f"{key}={context[key]}" for key in JOB_FIELDS if context.get(key) is not None)
        return f"{line} [{tags}]" if tags else line


class JobContextFilter(logging.Filter):
    """
    Stamps fixed context (component name, for instance) onto every record of
    the logger it is attached to. Values passed with `extra=` take precedence.
    """

    def __init__(self):
        super().__init__()
        self.context: Dict[str, Any] = {}

    def set_context(self, **kwargs):
        self.context.update(kwargs)

    def clear_context(self):
        self.context = {}

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.context.items():
            record.__dict__.setdefault(key, value)
        return True


def setup_logger(
    name: str = PACKAGE_LOGGER,
    level: str = "INFO",
    structured: bool = True,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Attach console (stderr) and optional file handlers to the package logger.

    Safe to call repeatedly: the level is updated, handlers are added once.

    Args:
        name: Logger name, normally the package logger
        level: Logging level name
        structured: JSON lines when True, text lines otherwise
        log_file: Optional log file path

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO
    logger.setLevel(log_level)

    if any(getattr(h, "_gjo_handler", False) for h in logger.handlers):
        for handler in logger.handlers:
            handler.setLevel(log_level)
        return logger

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(StructuredFormatter() if structured else TextFormatter())
        handler._gjo_handler = True
        logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Module logger with a JobContextFilter attached."""
    logger = logging.getLogger(name)
    if not hasattr(logger, "context_filter"):
        logger.context_filter = JobContextFilter()
        logger.addFilter(logger.context_filter)
    return logger


def set_log_context(logger: logging.Logger, **kwargs):
    """Add fixed context fields to every record of `logger`."""
    if hasattr(logger, "context_filter"):
        logger.context_filter.set_context(**kwargs)


def clear_log_context(logger: logging.Logger):
    if hasattr(logger, "context_filter"):
        logger.context_filter.clear_context()


class LoggerContext:
    """
    Temporarily adds context fields, restoring the previous ones on exit.

        with LoggerContext(logger, job_id=job.job_id):
            ...

    The context is shared by every task using the logger, so only use it
    around code that does not interleave with other jobs.
    """

    def __init__(self, logger: logging.Logger, **kwargs):
        self.logger = get_logger(logger.name)
        self.fields = kwargs
        self._saved: Dict[str, Any] = {}

    def __enter__(self):
        context_filter = self.logger.context_filter
        self._saved = dict(context_filter.context)
        context_filter.set_context(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logger.context_filter.context = self._saved
