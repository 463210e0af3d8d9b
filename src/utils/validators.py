"""Input validators for the billing service."""

from typing import Tuple

# NIST-aligned: length over complexity
MIN_PASSWORD_LENGTH = 8

# Common password blocklist
COMMON_PASSWORDS = {
    'password', 'password123', '12345678', 'qwerty',
    'admin', 'letmein', 'welcome', 'password1', '123456789'
}


def validate_password(password: str) -> Tuple[bool, str]:
    """
    Validate password against NIST-aligned policy.

    Returns:
        (is_valid, error_message)
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"

    if password.lower() in COMMON_PASSWORDS:
        return False, "This password is too common"

    return True, ""


def safe_redirect_path(path: str | None, default: str = "/") -> str:
    """
    Accept only local absolute paths as post-login redirect targets.

    Rejects scheme-relative (//host) and absolute URLs to prevent open redirects.
    """
    if not path or not path.startswith("/") or path.startswith("//") or "\\" in path:
        return default
    return path
