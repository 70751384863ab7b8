"""
Service Logger Setup

Configures stdlib logging for a microservice from LoggingConfig.

Usage:
    from core.logger import setup_service_logger

    logger = setup_service_logger("dues_service", level="INFO")
"""

import logging
import sys
from typing import Optional

from core.config import LoggingConfig

_configured_services = set()


def setup_service_logger(
    service_name: str,
    level: Optional[str] = None,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure root handlers once per service and return the service logger.

    Args:
        service_name: Logger name, usually the service package name
        level: Log level override (defaults to LoggingConfig.log_level)
        config: Optional logging config (defaults to environment)

    Returns:
        Configured logger for the service
    """
    if config is None:
        config = LoggingConfig.from_env()

    log_level = (level or config.log_level or "INFO").upper()
    logger = logging.getLogger(service_name)

    if service_name in _configured_services:
        logger.setLevel(log_level)
        return logger

    formatter = logging.Formatter(config.log_format)
    root = logging.getLogger()
    root.setLevel(log_level)

    if config.enable_console and not any(
        isinstance(h, logging.StreamHandler) and getattr(h, "_service_handler", False)
        for h in root.handlers
    ):
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        console._service_handler = True
        root.addHandler(console)

    if config.log_file:
        try:
            file_handler = logging.FileHandler(config.log_file)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Could not open log file {config.log_file}: {e}")

    # Quiet noisy third-party loggers
    for noisy in ("httpx", "httpcore", "stripe", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.setLevel(log_level)
    _configured_services.add(service_name)
    logger.debug(f"Logger configured for {service_name} at {log_level}")
    return logger
