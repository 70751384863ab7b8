#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure components for the dues platform services.

COMPONENTS:
    - config/: Dataclass configuration loaded from environment (python-dotenv)
    - logger.py: Service logger setup
    - postgres_client.py: asyncpg pool wrapper
    - nats_client.py: NATS JetStream event bus

USAGE:
    from core.config import get_settings
    from core.logger import setup_service_logger

    settings = get_settings()
    logger = setup_service_logger("dues_service")
"""

__version__ = "1.0.0"
