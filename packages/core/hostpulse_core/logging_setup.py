"""Structured local logging and crash hook setup."""

from __future__ import annotations

import faulthandler
import json
import logging
import logging.handlers
import os
import socket
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import LoggingConfig, config_path


_LOGGER_NAME = "hostpulse"
# uvicorn runs with log_config=None, so its records are routed into our handlers
_SERVER_LOGGER = "uvicorn"
_EXTRA_FIELDS = ("event", "field", "source", "subscriber", "sequence", "crash_id")
_LOG_FILE = "hostpulse.log"


def log_dir(directory: str | Path | None = None) -> Path:
    path = Path(directory).expanduser() if directory else config_path().parent / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


class _HostContext(logging.Filter):
    """Stamps every record with the host and process it came from."""

    def __init__(self) -> None:
        super().__init__()
        self.host = socket.gethostname() or "unknown"
        self.pid = os.getpid()

    def filter(self, record: logging.LogRecord) -> bool:
        record.host = self.host
        record.pid = self.pid
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts_utc": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "thread": record.threadName,
        }
        for key in ("host", "pid"):
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        return json.dumps(payload, ensure_ascii=True, default=str)


def _file_handler(path: Path, settings: LoggingConfig) -> logging.Handler:
    keep = max(2, settings.keep_files)
    if settings.max_bytes > 0:
        return logging.handlers.RotatingFileHandler(
            filename=str(path), maxBytes=settings.max_bytes, backupCount=keep, encoding="utf-8"
        )
    return logging.handlers.TimedRotatingFileHandler(
        filename=str(path), when=settings.rotate_when, backupCount=keep, encoding="utf-8"
    )


def configure_logging(settings: LoggingConfig | None = None, directory: str | Path | None = None) -> logging.Logger:
    """Attach the JSON file handler (and optionally a console handler) once.

    The same handlers serve the ``hostpulse`` tree and uvicorn's loggers.
    """
    settings = settings or LoggingConfig()
    level = getattr(logging, str(settings.level).upper(), logging.WARNING)
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        logger.setLevel(level)
        return logger

    path = log_dir(directory or settings.directory) / _LOG_FILE
    context = _HostContext()
    handlers: list[logging.Handler] = []

    file_handler = _file_handler(path, settings)
    file_handler.setFormatter(JsonFormatter())
    handlers.append(file_handler)

    if settings.console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))
        handlers.append(stream_handler)

    for name in (_LOGGER_NAME, _SERVER_LOGGER):
        target = logging.getLogger(name)
        target.setLevel(level)
        target.propagate = False
        for handler in handlers:
            handler.addFilter(context)
            target.addHandler(handler)

    logger.info(
        f"logging configured path={path} rotation={'size' if settings.max_bytes else settings.rotate_when}",
        extra={"event": "logging_configured"},
    )
    return logger


def shutdown_logging() -> None:
    """Flush and detach every handler added by ``configure_logging``."""
    seen: set[int] = set()
    for name in (_LOGGER_NAME, _SERVER_LOGGER):
        target = logging.getLogger(name)
        for handler in list(target.handlers):
            target.removeHandler(handler)
            if id(handler) not in seen:
                seen.add(id(handler))
                handler.close()
        target.propagate = True


def get_logger(name: str | None = None) -> logging.Logger:
    if not name:
        return logging.getLogger(_LOGGER_NAME)
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


def install_crash_hooks(directory: str | Path | None = None) -> None:
    logger = get_logger()

    def _log_uncaught(exc_type, exc_value, exc_tb) -> None:
        crash_id = str(uuid.uuid4())
        logger.critical(
            f"uncaught exception crash_id={crash_id}",
            exc_info=(exc_type, exc_value, exc_tb),
            extra={"event": "uncaught_exception", "crash_id": crash_id},
        )

    def _thread_hook(args: threading.ExceptHookArgs) -> None:
        crash_id = str(uuid.uuid4())
        logger.critical(
            f"thread {args.thread.name if args.thread else '?'} died crash_id={crash_id}",
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
            extra={"event": "thread_exception", "crash_id": crash_id},
        )

    sys.excepthook = _log_uncaught
    threading.excepthook = _thread_hook

    fault_path = log_dir(directory) / "fault.log"
    faulthandler.enable(file=fault_path.open("a", encoding="utf-8"), all_threads=True)
    logger.info(f"fault handler writing to {fault_path}", extra={"event": "fault_handler_enabled"})
