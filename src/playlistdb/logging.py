"""Structured logging for playlistdb.

structlog events are handed to stdlib logging and rendered per handler:

- stderr: human-readable, every event (optional, the CLI turns it on)
- ``playlistdb.log``: human-readable, every event
- ``ingest.log``: one JSON object per line, ``playlistdb.ingest.*`` only

The two files rotate at 10 MB and keep 5 backups.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

MAIN_LOG = "playlistdb.log"
INGEST_LOG = "ingest.log"

_ROTATE_BYTES = 10 * 1024 * 1024
_ROTATE_KEEP = 5
_QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "httpx", "httpcore", "aiosqlite")

# Applied to structlog events and to records from plain stdlib loggers alike.
_PRE_CHAIN: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _formatter(renderer: structlog.types.Processor, *, json_tracebacks: bool = False) -> logging.Formatter:
    processors: list[structlog.types.Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if json_tracebacks:
        processors.append(structlog.processors.format_exc_info)
    processors.append(renderer)
    return structlog.stdlib.ProcessorFormatter(processors=processors, foreign_pre_chain=_PRE_CHAIN)


def _rotating(path: Path, formatter: logging.Formatter, *, only: str | None = None) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=_ROTATE_BYTES, backupCount=_ROTATE_KEEP, encoding="utf-8")
    handler.setFormatter(formatter)
    if only is not None:
        handler.addFilter(logging.Filter(only))
    return handler


def setup_logging(
    log_level: str = "info",
    log_dir: Path | None = None,
    *,
    console: bool = False,
) -> None:
    """Route structlog through stdlib logging and install the handlers.

    Parameters
    ----------
    log_level:
        Level name such as ``debug`` or ``warning``; unknown names mean ``info``.
    log_dir:
        Where ``playlistdb.log`` and ``ingest.log`` go. *None* writes no files.
    console:
        Also render events to stderr.
    """
    level = logging.getLevelNamesMapping().get(log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []
    if console:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(_formatter(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())))
        handlers.append(stderr_handler)
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(_rotating(log_dir / MAIN_LOG, _formatter(structlog.dev.ConsoleRenderer(colors=False))))
        handlers.append(
            _rotating(
                log_dir / INGEST_LOG,
                _formatter(structlog.processors.JSONRenderer(), json_tracebacks=True),
                only="playlistdb.ingest",
            )
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    for handler in handlers:
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
