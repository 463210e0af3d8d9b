"""
Configuration module for the billing service.

Provides settings, constants and logging configuration.
"""

from config.settings import get_settings, reload_settings, Settings
from config.logging_config import setup_structured_logging
from config.constants import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    CANCELED_STATUS,
    USER_ID_METADATA_KEY,
    DEFAULT_CURRENCY,
    DATA_DIR,
)

__all__ = [
    # Settings
    'get_settings',
    'reload_settings',
    'Settings',
    # Logging
    'setup_structured_logging',
    # Constants
    'ACTIVE_SUBSCRIPTION_STATUSES',
    'CANCELED_STATUS',
    'USER_ID_METADATA_KEY',
    'DEFAULT_CURRENCY',
    'DATA_DIR',
]
