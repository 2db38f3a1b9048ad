"""
Logging Configuration Module
Provides consistent logging across the application.
"""

import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

from cdc_sync.config_manager import ConfigManager

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Password literals in connector properties and secret definitions
_PASSWORD_PATTERNS = (
    re.compile(r"((?:\w+\.)?password\s*=\s*)'(?:[^']|'')*'", re.IGNORECASE),
    re.compile(r"(CREATE\s+SECRET\b.*?\bAS\s*)'(?:[^']|'')*'", re.IGNORECASE | re.DOTALL),
)


class RedactPasswordsFilter(logging.Filter):
    """Masks password literals that reach a handler inside SQL text."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = message
        for pattern in _PASSWORD_PATTERNS:
            redacted = pattern.sub(r"\1'***'", redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _level(name, default: int = logging.INFO) -> int:
    return getattr(logging, str(name or '').upper(), default)


def setup_logging(log_config: Optional[Dict] = None) -> None:
    """
    Setup application-wide logging configuration.
    Call this once at application startup.

    Args:
        log_config: Overrides the ``logging`` config section
    """
    if log_config is None:
        log_config = ConfigManager().get_logging_config()

    # Get configuration values
    log_level = _level(log_config.get('level', 'INFO'))
    log_format = log_config.get('format') or DEFAULT_FORMAT
    log_file = log_config.get('file', './logs/cdc_sync.log')
    max_bytes = int(log_config.get('max_bytes', 10485760))  # 10MB
    backup_count = int(log_config.get('backup_count', 5))

    # Create formatter and the shared redaction filter
    formatter = logging.Formatter(log_format)
    redact = RedactPasswordsFilter()

    # Setup root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    handlers = []

    # Console handler
    if log_config.get('console', True):
        handlers.append(logging.StreamHandler(sys.stdout))

    # File handler with rotation; an empty path disables it
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count
        ))

    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        handler.addFilter(redact)
        root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
    logging.getLogger('werkzeug').setLevel(logging.WARNING)

    # Per-logger overrides, e.g. {'cdc_sync.sync.sync_engine': 'DEBUG'}
    for name, level in (log_config.get('loggers') or {}).items():
        logging.getLogger(name).setLevel(_level(level))


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the specified module.

    Args:
        name: Module name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
