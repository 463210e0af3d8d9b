"""
Centralized logging configuration for the billing service.

Provides structured JSON logging with correlation ID support for production observability.
"""

import sys
from pathlib import Path
from typing import Optional
from loguru import logger


def setup_structured_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    include_modules: Optional[list[str]] = None
) -> None:
    """
    Configure structured JSON logging with Loguru.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file (for local development)
        include_modules: List of module names to enable logging for even
            when they are disabled as noisy below
    """
    # Remove default handler
    logger.remove()

    # serialize=True puts correlation_id and other contextualized fields in record.extra
    logger.add(
        sys.stdout,
        serialize=True,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {name} | {message}",
        level=level,
        enqueue=True,
        backtrace=True,
        diagnose=False  # locals can contain API keys
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path,
            serialize=True,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            compression="zip"
        )

    # Suppress noisy third-party loggers
    for noisy in ("stripe", "urllib3", "httpx", "httpcore"):
        logger.disable(noisy)

    if include_modules:
        for module in include_modules:
            logger.enable(module)
