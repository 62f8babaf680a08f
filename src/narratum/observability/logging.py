"""structlog setup for Narratum.

Console output goes through rich on stderr and is gated by the CLI ``-v``
count. When a log directory is given, every event is also appended to
``narratum.jsonl`` there, one JSON object per line.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - runtime use in configure_logging
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from structlog.typing import Processor

LOG_FILE_NAME = "narratum.jsonl"

# verbosity -> console level; anything higher is DEBUG
CONSOLE_LEVELS = {0: logging.WARNING, 1: logging.INFO}

# Clamped to WARNING below -vvv
_NOISY_LOGGERS = ("langchain", "langchain_core", "asyncio")

_configured = False
_file_handler: logging.FileHandler | None = None
_log_path: Path | None = None


def _json_entry(record: logging.LogRecord) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "level": record.levelname,
        "logger": record.name,
    }
    payload = record.msg
    if not isinstance(payload, dict):
        entry["event"] = record.getMessage()
        return entry
    # structlog's event dict; its own level/timestamp duplicate the ones above
    fields = {k: v for k, v in payload.items() if k not in ("level", "timestamp")}
    entry["event"] = fields.pop("event", "")
    entry.update(fields)
    return entry


class JSONLFileHandler(logging.FileHandler):
    """Appends each record to the file as a single JSON line."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(_json_entry(record), default=str)
            if self.stream:
                self.stream.write(line + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


def _close_file_handler() -> None:
    global _file_handler, _log_path
    if _file_handler is not None:
        _file_handler.close()
    _file_handler = None
    _log_path = None


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    log_dir: Path | None = None,
) -> None:
    """(Re)configure structlog and the stdlib handlers behind it.

    Args:
        verbosity: Console detail; 0 warnings only, 1 info, 2 or more debug.
        log_to_file: Also append JSON lines to ``log_dir / narratum.jsonl``.
        log_dir: Where the JSONL file lives; created when missing.

    Raises:
        ValueError: If ``log_to_file`` is set without a ``log_dir``.
    """
    global _configured, _file_handler, _log_path

    if log_to_file and log_dir is None:
        raise ValueError("log_dir is required when log_to_file=True")

    _close_file_handler()

    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            level=CONSOLE_LEVELS.get(verbosity, logging.DEBUG),
            markup=False,
            rich_tracebacks=True,
            tracebacks_show_locals=verbosity >= 2,
            show_time=verbosity >= 1,
            show_path=verbosity >= 2,
        )
    ]
    if log_to_file and log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        _log_path = log_dir / LOG_FILE_NAME
        _file_handler = JSONLFileHandler(str(_log_path), mode="a")
        _file_handler.setLevel(logging.DEBUG)
        handlers.append(_file_handler)

    # The file records everything; the console handler filters on its own.
    threshold = logging.DEBUG if verbosity > 0 or log_to_file else logging.WARNING
    logging.basicConfig(level=threshold, format="%(message)s", handlers=handlers, force=True)

    third_party_level = logging.DEBUG if verbosity >= 3 else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

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
    """structlog logger for ``name``; applies the default setup if none ran yet."""
    if not _configured:
        configure_logging()
    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def get_log_path() -> Path | None:
    """Path of the JSONL file while file logging is on."""
    return _log_path


def close_file_logging() -> None:
    """Flush and detach the JSONL file, if one is open."""
    _close_file_handler()
