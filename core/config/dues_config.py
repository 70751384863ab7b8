#!/usr/bin/env python3
"""Dues platform main configuration

Combines the infrastructure, logging and service sub-configs.
"""
from dataclasses import dataclass, field

from .infra_config import InfraConfig
from .logging_config import LoggingConfig
from .service_config import ServiceConfig


@dataclass
class DuesConfig:
    """Top-level configuration for the dues platform"""
    environment: str = "development"
    infra: InfraConfig = field(default_factory=InfraConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)

    @classmethod
    def from_env(cls) -> 'DuesConfig':
        """Load all configuration from environment"""
        logging_config = LoggingConfig.from_env()
        return cls(
            environment=logging_config.environment,
            infra=InfraConfig.from_env(),
            logging=logging_config,
            service=ServiceConfig.from_env(),
        )
