"""
Logging Configuration Module

Provides logging setup with file rotation, JSON file records and a privacy
filter that keeps user names and temp directories out of the log files.
Save operations log the full paths of the files they write, so every
handler installed here is filtered.
"""

import json
import logging
import logging.handlers
import re
import sys
import tempfile
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

from .. import APP_NAME, get_app_data_dir

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class PrivacyFilter(logging.Filter):
    """Filter to sanitize user-identifying paths from log messages."""

    def __init__(self, temp_dir: Optional[str] = None):
        super().__init__()
        temp_dir = temp_dir or tempfile.gettempdir()
        self.sensitive_patterns = [
            # Temp files are named after window titles and user names
            (re.compile(re.escape(temp_dir) + r'[\\/][^\s]+'), '[TEMP]'),
            # Windows user profiles
            (re.compile(r'Users\\[^\\]+'), r'Users\\[USER]'),
            # POSIX home directories
            (re.compile(r'/home/[^/\s]+'), '/home/[USER]'),
            (re.compile(r'/Users/[^/\s]+'), '/Users/[USER]'),
        ]

    def filter(self, record):
        """Filter log record to remove sensitive information."""
        if record.args:
            record.msg = record.getMessage()
            record.args = None

        if record.msg:
            message = str(record.msg)
            for pattern, replacement in self.sensitive_patterns:
                message = pattern.sub(replacement, message)
            record.msg = message

        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, used for the log file."""

    _RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {'message'}

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info and record.exc_info[0]:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key not in self._RESERVED:
                    log_data[f'extra_{key}'] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ApplicationLogger:
    """
    Configures the root logger with a rotating file handler and an optional
    stderr handler. Existing root handlers are replaced.
    """

    def __init__(
        self,
        app_name: str = APP_NAME.lower(),
        log_dir: Optional[Path] = None,
        log_level: str = "INFO",
        max_file_size: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5,
        enable_console: bool = True,
        enable_json: bool = True,
        enable_privacy_filter: bool = True
    ):
        """
        Initialize application logger.

        Args:
            app_name: Application name for log file naming
            log_dir: Directory for log files (default: <app data>/logs)
            log_level: Minimum log level to capture
            max_file_size: Maximum size of each log file in bytes
            backup_count: Number of backup log files to keep
            enable_console: Whether to log to stderr
            enable_json: Whether to use JSON formatting for file logs
            enable_privacy_filter: Whether to apply privacy filtering
        """
        self.app_name = app_name
        self.log_dir = Path(log_dir) if log_dir else Path(get_app_data_dir()) / "logs"
        self.log_level = getattr(logging, log_level.upper())
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.enable_console = enable_console
        self.enable_json = enable_json
        self.enable_privacy_filter = enable_privacy_filter

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._configure_root_logger()

    @property
    def log_file(self) -> Path:
        return self.log_dir / f"{self.app_name}.log"

    def _configure_root_logger(self) -> None:
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)

        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        file_handler = logging.handlers.RotatingFileHandler(
            self.log_file,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(JSONFormatter() if self.enable_json else logging.Formatter(TEXT_FORMAT))
        root_logger.addHandler(file_handler)

        if self.enable_console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(logging.Formatter(TEXT_FORMAT))
            root_logger.addHandler(console_handler)

        if self.enable_privacy_filter:
            privacy_filter = PrivacyFilter()
            for handler in root_logger.handlers:
                handler.addFilter(privacy_filter)


def setup_logging(
    log_dir: Optional[Path] = None,
    log_level: str = "INFO",
    enable_console: bool = True,
    enable_json: bool = True
) -> ApplicationLogger:
    """
    Set up application logging.

    Args:
        log_dir: Directory for log files
        log_level: Minimum log level
        enable_console: Whether to log to stderr
        enable_json: Whether to use JSON formatting

    Returns:
        Configured ApplicationLogger instance
    """
    return ApplicationLogger(
        log_dir=log_dir,
        log_level=log_level,
        enable_console=enable_console,
        enable_json=enable_json
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module."""
    return logging.getLogger(name)
