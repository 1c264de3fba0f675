"""Logging setup for Storyloom.

Every module logs through structlog. Records end up in the stdlib root
logger, which fans them out to a Rich console handler and, when enabled,
a JSONL file at ``{log_dir}/storyloom.jsonl``.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from structlog.typing import Processor

LOG_FILENAME = "storyloom.jsonl"

_configured = False
_file_handler: logging.FileHandler | None = None
_logs_dir: Path | None = None

_VERBOSITY_LEVELS = {0: logging.WARNING, 1: logging.INFO}

# Provider SDKs and transports log every request at DEBUG
_QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "openai",
    "anthropic",
    "google_genai",
    "langchain",
    "langchain_core",
    "asyncio",
)

# Keys structlog adds that the record already carries
_RESERVED_KEYS = frozenset({"level", "timestamp"})


class JSONLFormatter(logging.Formatter):
    """Render a record as a single JSON line.

    structlog's ``wrap_for_formatter`` leaves the event dict in
    ``record.msg``; its keys are flattened into the line next to the
    standard fields. Plain stdlib records only contribute their message.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }

        if isinstance(record.msg, dict):
            fields = {k: v for k, v in record.msg.items() if k not in _RESERVED_KEYS}
            payload["message"] = fields.pop("event", "")
            payload.update(fields)
        else:
            payload["message"] = record.getMessage()

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def _console_handler(verbosity: int) -> logging.Handler:
    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity >= 2,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
    )
    handler.setLevel(_VERBOSITY_LEVELS.get(verbosity, logging.DEBUG))
    return handler


def _jsonl_handler(log_dir: Path) -> logging.FileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / LOG_FILENAME, mode="a", encoding="utf-8")
    handler.setFormatter(JSONLFormatter())
    handler.setLevel(logging.DEBUG)
    return handler


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    log_dir: Path | None = None,
) -> None:
    """Install the console and file handlers and configure structlog.

    Safe to call repeatedly; a previously opened JSONL file is closed
    before the new handlers are installed.

    Args:
        verbosity: Console threshold. 0 is WARNING, 1 is INFO, 2+ is DEBUG.
        log_to_file: Also append every record to ``log_dir/storyloom.jsonl``.
        log_dir: Directory for the JSONL log.

    Raises:
        ValueError: If ``log_to_file`` is set without a ``log_dir``.
    """
    global _configured, _file_handler, _logs_dir

    if log_to_file and log_dir is None:
        raise ValueError("log_dir is required when log_to_file=True")

    close_file_logging()

    handlers = [_console_handler(verbosity)]
    if log_to_file and log_dir is not None:
        _file_handler = _jsonl_handler(log_dir)
        _logs_dir = log_dir
        handlers.append(_file_handler)

    # Handlers do the filtering once anything below WARNING is wanted
    threshold = logging.DEBUG if verbosity or log_to_file else logging.WARNING
    logging.basicConfig(level=threshold, format="%(message)s", handlers=handlers, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Return a bound structlog logger, installing default handlers if needed."""
    if not _configured:
        configure_logging()
    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def get_logs_dir() -> Path | None:
    """Directory of the active JSONL log, or None if file logging was never enabled."""
    return _logs_dir


def close_file_logging() -> None:
    """Flush and close the JSONL handler, if one is open."""
    global _file_handler
    if _file_handler is None:
        return
    logging.getLogger().removeHandler(_file_handler)
    _file_handler.close()
    _file_handler = None
