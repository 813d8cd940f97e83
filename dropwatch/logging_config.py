"""Structured logging configuration."""

import logging
import logging.handlers
import sys
from pathlib import Path

from pythonjsonlogger import jsonlogger

from dropwatch.config import settings
from dropwatch.utils.timeutil import utcnow

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that are chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "apscheduler.executors.default", "playwright")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with a UTC timestamp, level and call site on every line."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['timestamp'] = utcnow().isoformat() + 'Z'
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"
        if record.funcName:
            log_record['function'] = record.funcName


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=settings.log_file_max_bytes,
        backupCount=settings.log_file_backups,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(base_dir: str | Path | None = None) -> logging.Logger:
    """Configure root logging.

    The console gets plain text (or JSON when ``log_json_console`` is set);
    ``app.log`` and ``error.log`` under ``settings.log_dir`` get JSON lines
    and rotate by size.

    Args:
        base_dir: Directory that ``settings.log_dir`` is relative to.
                  Defaults to the current working directory.
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / settings.log_dir
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    json_formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        json_formatter if settings.log_json_console else logging.Formatter(CONSOLE_FORMAT)
    )
    root_logger.addHandler(console_handler)
    root_logger.addHandler(_rotating_handler(logs_dir / "app.log", logging.DEBUG, json_formatter))
    root_logger.addHandler(_rotating_handler(logs_dir / "error.log", logging.ERROR, json_formatter))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger carrying context fields.

    The fields land in the record's extras (so JSON lines get them as keys)
    and prefix the message as ``[retailer=target]`` for the plain console.
    """

    def process(self, msg, kwargs):
        extra = kwargs.get('extra', {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        if self.extra:
            prefix = " ".join(f"{key}={value}" for key, value in self.extra.items())
            msg = f"[{prefix}] {msg}"
        return msg, kwargs


def get_logger(name: str, **context) -> LoggerAdapter:
    """
    Get a logger with context fields attached.

    Args:
        name: Logger name (usually __name__)
        **context: Context fields (e.g., retailer='target', product_id=12)
    """
    return LoggerAdapter(logging.getLogger(name), context)
