"""Logging helpers shared across ogr-batch commands."""

from __future__ import annotations

import json
import logging
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

__all__ = [
    "JsonLogFormatter",
    "RunLogFormatter",
    "close_logger",
    "configure_logger",
    "run_log_filename",
]

LOG_FORMATS = ("text", "json")


class RunLogFormatter(logging.Formatter):
    """Emit one human-readable line per record."""

    def __init__(self) -> None:
        super().__init__(
            fmt="[%(asctime)s] %(levelname)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        # Converter stderr can span lines; keep one line per event.
        line = super().format(record)
        return line.replace("\r", " ").replace("\n", " | ")


class JsonLogFormatter(logging.Formatter):
    """Emit log records as structured JSON lines."""

    _RESERVED = frozenset(
        logging.LogRecord(
            "", logging.INFO, "", 0, "", None, None
        ).__dict__.keys()
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        extras = {
            key: _coerce_value(value)
            for key, value in record.__dict__.items()
            if key not in self._RESERVED
        }
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def run_log_filename(prefix: str, started_at: datetime) -> str:
    """Return a per-run log file name stamped with ``started_at``."""

    return f"{prefix}_{started_at.strftime('%Y%m%d_%H%M%S_%f')}.log"


def configure_logger(
    name: str,
    *,
    log_dir: Path,
    filename: str,
    level: str = "INFO",
    verbose: bool = False,
    log_format: str = "text",
) -> tuple[logging.Logger, Path]:
    """Configure ``name`` to append to ``log_dir / filename``.

    Any file handler installed by an earlier call is closed and replaced so
    each run writes to its own file. ``verbose`` mirrors records to stderr.
    Returns the logger and the path actually opened, which falls back to the
    temp directory when ``log_dir`` is not writable.
    """

    if log_format not in LOG_FORMATS:
        raise ValueError(
            f"Unknown log format '{log_format}'. "
            f"Expected one of: {', '.join(LOG_FORMATS)}."
        )

    logger = logging.getLogger(name)
    logger.propagate = False
    logger.setLevel(logging.DEBUG)

    file_level = logging.DEBUG if verbose else _coerce_level(level)

    _remove_managed(logger, "_ogr_batch_file")
    handler, path = _open_file_handler(log_dir, filename)
    handler.setLevel(file_level)
    handler.setFormatter(
        JsonLogFormatter() if log_format == "json" else RunLogFormatter()
    )
    handler._ogr_batch_file = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    if verbose:
        _enable_console_handler(logger)
    else:
        _remove_managed(logger, "_ogr_batch_console")

    return logger, path


def close_logger(logger: logging.Logger) -> None:
    """Flush and detach the handlers installed by :func:`configure_logger`."""

    _remove_managed(logger, "_ogr_batch_file")
    _remove_managed(logger, "_ogr_batch_console")


def _coerce_level(level: str) -> int:
    numeric = logging.getLevelName(level.upper())
    if isinstance(numeric, int):
        return numeric
    return logging.INFO


def _open_file_handler(
    log_dir: Path, filename: str
) -> tuple[logging.FileHandler, Path]:
    path = log_dir / filename
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    except PermissionError:
        fallback = _fallback_log_dir()
        fallback.mkdir(parents=True, exist_ok=True)
        path = fallback / filename
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    return handler, path


def _enable_console_handler(logger: logging.Logger) -> None:
    for handler in logger.handlers:
        if getattr(handler, "_ogr_batch_console", False):
            handler.setLevel(logging.DEBUG)
            return
    console = logging.StreamHandler(stream=sys.stderr)
    console.setLevel(logging.DEBUG)
    console.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    console._ogr_batch_console = True  # type: ignore[attr-defined]
    logger.addHandler(console)


def _remove_managed(logger: logging.Logger, marker: str) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, marker, False):
            logger.removeHandler(handler)
            handler.close()


def _coerce_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {str(key): _coerce_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_coerce_value(item) for item in value]
    return repr(value)


def _fallback_log_dir() -> Path:
    return Path(tempfile.gettempdir()) / "ogr-batch-logs"
