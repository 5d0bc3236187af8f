import logging
import os
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


class SensitiveDataFilter(logging.Filter):
    """Filter to mask sensitive data in log records."""

    PATTERNS = [
        (re.compile(r'(password["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(token["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(secret["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Mask sensitive data in the log message."""
        if isinstance(record.msg, str):
            for pattern, replacement in self.PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)

        if hasattr(record, 'args') and record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask_value(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._mask_value(arg) for arg in record.args)

        return True

    def _mask_value(self, value):
        """Mask sensitive values in arguments."""
        if isinstance(value, str):
            for pattern, replacement in self.PATTERNS:
                value = pattern.sub(replacement, value)
        return value


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(
    component_name: str,
    log_level: Optional[str] = None,
    debug_log_path: Optional[Path] = None
) -> logging.Logger:
    """
    Set up logging configuration for a component.

    Handlers are attached to the root logger so that every module logger
    obtained through get_logger() shares them.

    Args:
        component_name: Name of the component (e.g., 'sender', 'receiver', 'cli')
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var or WARNING
        debug_log_path: Optional file that additionally receives every record

    Returns:
        Configured logger instance for the component
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'WARNING').upper()

    level = getattr(logging, log_level.upper(), logging.WARNING)

    root = logging.getLogger()
    root.setLevel(level)

    if not any(getattr(h, '_zapshare', False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        handler.addFilter(SensitiveDataFilter())
        handler._zapshare = True
        root.addHandler(handler)

    for handler in root.handlers:
        if getattr(handler, '_zapshare', False):
            handler.setLevel(level)

    if debug_log_path is not None:
        _attach_debug_file(root, debug_log_path)

    return logging.getLogger(component_name)


def _attach_debug_file(root: logging.Logger, debug_log_path: Path) -> None:
    """
    Append all records to the debug log file, starting with a session marker.

    Args:
        root: Root logger
        debug_log_path: Target log file (parent directories are created)
    """
    if any(
        isinstance(h, logging.FileHandler) and Path(h.baseFilename) == debug_log_path.resolve()
        for h in root.handlers
    ):
        return

    try:
        debug_log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(debug_log_path, 'a') as f:
            f.write(f"\n\nSession started: {datetime.now().isoformat()}\n{'=' * 50}\n")
        file_handler = logging.FileHandler(debug_log_path)
    except OSError as e:
        root.warning(f"Debug log file unavailable at {debug_log_path}: {e}")
        return

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    file_handler.addFilter(SensitiveDataFilter())
    root.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
