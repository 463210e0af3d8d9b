"""
Utility functions for the billing service.
"""

from utils.email import EmailService, format_amount
from utils.validators import safe_redirect_path, validate_password

__all__ = [
    'EmailService',
    'format_amount',
    'safe_redirect_path',
    'validate_password',
]
