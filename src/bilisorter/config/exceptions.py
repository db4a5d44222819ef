"""Custom exceptions for configuration management."""

from bilisorter.errors import BiliSorterError


class ConfigError(BiliSorterError):
    """Raised when configuration data cannot be loaded, parsed or validated."""
