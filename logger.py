"""Logging setup for the docfetch CLI, plus sync progress tracking and config redaction."""

import copy
import logging
import logging.handlers
import time
from collections import Counter
from typing import Any, Dict, Optional

import colorlog

ROOT_LOGGER_NAME = 'docfetch'

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

# 10MB per file, 5 rotated backups
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

SENSITIVE_KEYS = ('password', 'secret', 'api_key', 'api_token', 'access_token', 'auth_header')
REDACTED = '***REDACTED***'


def resolve_level(verbosity: int = 0, level: Optional[str] = None) -> int:
    """Map -v counts (0=WARNING, 1=INFO, 2+=DEBUG) or an explicit level name to a logging level."""
    if level:
        name = level.upper()
        if name not in LOG_LEVELS:
            raise ValueError(f"Invalid log level '{level}'. Must be one of: {list(LOG_LEVELS)}")
        return getattr(logging, name)
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


def setup_logging(
    verbosity: int = 0,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    level: Optional[str] = None
) -> logging.Logger:
    """
    Configure the 'docfetch' logger; module loggers ('docfetch.<area>') inherit it.

    Calling it again replaces the handlers, so the CLI can reconfigure once the
    config file has been read.

    Args:
        verbosity: Number of -v flags
        log_file: Optional path of a rotating log file
        log_format: Optional record format
        date_format: Optional date format
        level: Optional explicit level name (overrides verbosity)

    Returns:
        The configured 'docfetch' logger
    """
    log_level = resolve_level(verbosity, level)
    log_format = log_format or DEFAULT_LOG_FORMAT
    date_format = date_format or DEFAULT_DATE_FORMAT

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)
    logger.propagate = False
    logger.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(log_level)
    console.setFormatter(colorlog.ColoredFormatter(
        fmt='%(log_color)s' + log_format,
        datefmt=date_format,
        log_colors=LOG_COLORS,
    ))
    logger.addHandler(console)

    if log_file:
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
                encoding='utf-8'
            )
        except OSError as e:
            logger.warning(f"Could not open log file {log_file}: {e}")
        else:
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(fmt=log_format, datefmt=date_format))
            logger.addHandler(file_handler)
            logger.info(f"Logging to file: {log_file}")

    logger.debug(f"Log level: {logging.getLevelName(log_level)}")
    return logger


class ProgressTracker:
    """
    Counts synced, skipped and failed documents during a bulk run.

    Used as a context manager: entering logs the start, leaving logs a summary
    at INFO, WARNING (some failures) or ERROR (everything failed).
    """

    def __init__(self, total_items: int, item_type: str = "documents"):
        self.total_items = total_items
        self.item_type = item_type
        self.counts: Counter = Counter()
        self.start_time: Optional[float] = None
        self.logger = logging.getLogger(f'{ROOT_LOGGER_NAME}.progress')

    @property
    def processed_items(self) -> int:
        return sum(self.counts.values())

    def __enter__(self) -> 'ProgressTracker':
        self.start_time = time.monotonic()
        self.logger.info(f"Syncing {self.total_items} {self.item_type}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is None:
            return

        failed = self.counts['failed']
        if failed and failed == self.processed_items:
            log_method = self.logger.error
        elif failed:
            log_method = self.logger.warning
        else:
            log_method = self.logger.info

        log_method(
            f"{self.item_type.capitalize()}: {self.processed_items}/{self.total_items} processed, "
            f"{self.counts['synced']} synced, {self.counts['skipped']} skipped, {failed} failed "
            f"in {format_elapsed(time.monotonic() - self.start_time)}"
        )

    def increment(self, success: bool = True, skipped: bool = False) -> None:
        """
        Record one processed item.

        Args:
            success: False when the item failed
            skipped: True when the item was left untouched (ignored for failures)
        """
        if not success:
            status = 'failed'
        elif skipped:
            status = 'skipped'
        else:
            status = 'synced'
        self.counts[status] += 1

        if self.processed_items % 10 == 0 or status == 'failed':
            self.logger.info(
                f"{self.processed_items}/{self.total_items} {self.item_type} processed "
                f"({self.total_items - self.processed_items} remaining), last: {status}"
            )

    def get_stats(self) -> Dict[str, Any]:
        elapsed = 0.0 if self.start_time is None else time.monotonic() - self.start_time
        return {
            'total': self.total_items,
            'processed': self.processed_items,
            'synced': self.counts['synced'],
            'skipped': self.counts['skipped'],
            'failed': self.counts['failed'],
            'elapsed_time': elapsed,
            'elapsed_time_formatted': format_elapsed(elapsed),
        }


def format_elapsed(seconds: float) -> str:
    """'12.3s', '4m 5s' or '1h 2m 3s'."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    return f"{minutes}m {secs}s"


def log_section(title: str) -> None:
    """Log a banner line around a section title."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    banner = "=" * 60
    logger.info(banner)
    logger.info(f"  {title.upper()}")
    logger.info(banner)


def log_config(config: Dict[str, Any]) -> None:
    """Log the effective configuration with credentials redacted."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    sanitized = sanitize_config(config)

    log_section("Configuration")

    for connection_id, connection in (sanitized.get('connections') or {}).items():
        logger.info(
            f"Connection '{connection_id}': {connection.get('base_url', 'Not Set')} "
            f"as {connection.get('username', 'Not Set')}"
        )

    docs = sanitized.get('docs') or {}
    categories = docs.get('categories') or {}
    logger.info(f"Docs root: {docs.get('root', 'Not Set')}")
    logger.info(f"Categories: {', '.join(categories) or 'Not Set'} (default: {docs.get('default_category')})")
    logger.info(f"Collision policy: {(sanitized.get('export') or {}).get('collision_policy', 'suffix')}")
    logger.debug(f"Full configuration: {sanitized}")


def sanitize_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy of config with every string value under a credential-like key replaced by a marker."""

    def mask(data: Any) -> Any:
        if isinstance(data, dict):
            return {
                key: REDACTED
                if isinstance(value, str) and any(word in str(key).lower() for word in SENSITIVE_KEYS)
                else mask(value)
                for key, value in data.items()
            }
        if isinstance(data, list):
            return [mask(item) for item in data]
        return data

    return mask(copy.deepcopy(config))


__all__ = [
    'setup_logging',
    'resolve_level',
    'ProgressTracker',
    'format_elapsed',
    'log_section',
    'log_config',
    'sanitize_config',
]
