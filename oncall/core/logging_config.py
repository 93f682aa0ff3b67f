# oncall/core/logging_config.py
"""
Logging setup for the on-call scheduler.

Production writes JSON lines (one object per record, domain fields such as
layer_key and occurrence included) to rotating files and WARNING+ to stdout.
Development logs everything in colour to the console plus a small plain-text
file.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

IS_PRODUCTION = os.getenv("PRODUCTION", "false").lower() == "true"

LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
APP_LOG_FILE = LOG_DIR / "app.log"
ERROR_LOG_FILE = LOG_DIR / "error.log"

# LogRecord attribute -> JSON key, for values passed as plain `extra=`
_RECORD_FIELDS = {
    "request_id": "request_id",
    "layer_key": "layer_key",
    "occurrence": "occurrence",
    "duration": "duration_ms",
}

# Third-party loggers and the level they are held at
_LIBRARY_LEVELS = {
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.INFO,
    "uvicorn.error": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "watchfiles": logging.WARNING,
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(getattr(record, "extra_fields", None) or {})
        for attr, key in _RECORD_FIELDS.items():
            value = getattr(record, attr, None)
            if value is not None:
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the level name."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        plain = record.levelname
        color = self.LEVEL_COLORS.get(record.levelno)
        if color:
            record.levelname = f"{color}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def _rotating_handler(
    path: Path,
    level: int,
    formatter: logging.Formatter,
    max_mb: int,
    backups: int,
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_mb * 1_000_000, backupCount=backups, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _console_handler(level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(production: bool | None = None, log_to_file: bool = True) -> None:
    """
    Replace the root logger's handlers.

    Args:
        production: JSON output when true; defaults to the PRODUCTION env var
        log_to_file: Also write rotating files under LOG_DIR
    """
    production = IS_PRODUCTION if production is None else production

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.INFO if production else logging.DEBUG)

    if log_to_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)

    if production:
        root.addHandler(_console_handler(logging.WARNING, JSONFormatter()))
        if log_to_file:
            root.addHandler(_rotating_handler(APP_LOG_FILE, logging.INFO, JSONFormatter(), max_mb=10, backups=5))
            root.addHandler(_rotating_handler(ERROR_LOG_FILE, logging.ERROR, JSONFormatter(), max_mb=10, backups=10))
    else:
        console = ColoredFormatter("%(levelname)-8s %(asctime)s [%(name)s] %(message)s", "%Y-%m-%d %H:%M:%S")
        root.addHandler(_console_handler(logging.DEBUG, console))
        if log_to_file:
            plain = logging.Formatter("%(levelname)s %(asctime)s [%(name)s:%(lineno)d] %(message)s")
            root.addHandler(_rotating_handler(APP_LOG_FILE, logging.DEBUG, plain, max_mb=5, backups=2))

    for name, level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"extra_fields": {"production": production, "log_dir": str(LOG_DIR.absolute()) if log_to_file else None}},
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
