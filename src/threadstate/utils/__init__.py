"""Configuration and logging helpers."""

from .config import StoreConfig, load_config
from .logging import get_logger, safe_log, set_log_level

__all__ = [
    "StoreConfig",
    "load_config",
    "get_logger",
    "safe_log",
    "set_log_level",
]
