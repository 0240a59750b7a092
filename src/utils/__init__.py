"""Shared utilities for configuration, logging, and error handling"""

from src.utils.config_loader import ConfigLoader, ConfigurationError
from src.utils.retry import exponential_backoff_retry

__all__ = ["ConfigLoader", "ConfigurationError", "exponential_backoff_retry"]
