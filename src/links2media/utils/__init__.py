"""Utility modules for links2media."""

from .file_utils import ensure_directory, read_url_list, unique_file_path, unique_name
from .logging_setup import get_logger, setup_logging
from .retry import NonRetryableError, RetryableError, backoff_delay, with_retry

__all__ = [
    "setup_logging",
    "get_logger",
    "ensure_directory",
    "read_url_list",
    "unique_name",
    "unique_file_path",
    "with_retry",
    "backoff_delay",
    "RetryableError",
    "NonRetryableError",
]
