#!/usr/bin/env python3
"""Configuration for the dues platform

- infra_config: PostgreSQL and NATS endpoints
- service_config: dues service settings and default billing policy
- logging_config: logging setup

Values come from the process environment. A dotenv file named by
DUES_ENV_FILE (default ``.env``) is loaded first without overriding
variables that are already set.
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig
from .infra_config import InfraConfig
from .service_config import ServiceConfig
from .dues_config import DuesConfig

load_dotenv(os.getenv("DUES_ENV_FILE", ".env"), override=False)

settings = DuesConfig.from_env()


def get_settings() -> DuesConfig:
    return settings


def reload_settings() -> DuesConfig:
    """Re-read the environment, e.g. after a test changes variables"""
    global settings
    settings = DuesConfig.from_env()
    return settings


__all__ = [
    'DuesConfig',
    'get_settings',
    'reload_settings',
    'settings',
    'InfraConfig',
    'LoggingConfig',
    'ServiceConfig',
]
