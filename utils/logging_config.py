"""Logging configuration for MeepleVault."""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from pathlib import Path

from flask import Flask

_RESERVED_ATTRS = set(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for better log parsing."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""

        # Base log data
        log_data = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        # Add exception info if present
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        # Add extra fields from record
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in log_data or key.startswith('_'):
                continue
            if isinstance(value, (str, int, float, bool, list, dict, type(None))):
                log_data[key] = value

        return json.dumps(log_data, ensure_ascii=False, default=str)


def configure_logging(app: Flask) -> None:
    """Configure console and rotating-file logging for the app and the stats worker."""

    log_level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(console_handler)

    try:
        logs_dir = Path(app.instance_path) / 'logs'
        logs_dir.mkdir(parents=True, exist_ok=True)

        app_handler = logging.handlers.RotatingFileHandler(
            logs_dir / 'application.log',
            maxBytes=50 * 1024 * 1024,  # 50MB
            backupCount=10,
            encoding='utf-8'
        )
        app_handler.setLevel(log_level)
        app_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(app_handler)

        # Errors and above only
        error_handler = logging.handlers.RotatingFileHandler(
            logs_dir / 'errors.log',
            maxBytes=20 * 1024 * 1024,  # 20MB
            backupCount=5,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(error_handler)
    except OSError as exc:
        app.logger.warning("Falling back to stream-only logging (file handler unavailable): %s", exc)

    configure_specific_loggers()

    app.logger.info('Logging configuration completed', extra={
        'log_level': logging.getLevelName(log_level),
    })


def configure_specific_loggers() -> None:
    """Configure specific loggers for different components."""

    # Database query logger
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    # RQ is chatty at INFO for every job
    logging.getLogger('rq.worker').setLevel(logging.WARNING)
