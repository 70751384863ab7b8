"""
Dues Service Factory

Factory for creating the dues services with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from core.config import DuesConfig, get_settings
from core.postgres_client import PostgresClientWrapper

from .clients import NotificationClient, StripePaymentProcessor
from .dues_repository import DuesRepository
from .dues_service import DuesService
from .onboarding_service import OnboardingService
from .overdue_sweep import OverdueSweepService
from .payer_service import PayerService

logger = logging.getLogger(__name__)


@dataclass
class DuesServices:
    """The dues services sharing one repository and set of collaborators"""
    repository: DuesRepository
    dues: DuesService
    payer: PayerService
    sweep: OverdueSweepService
    onboarding: OnboardingService
    notification_client: Optional[NotificationClient] = None

    async def close(self):
        if self.notification_client:
            await self.notification_client.close()
        await self.repository.close()


def create_dues_services(
    config: Optional[DuesConfig] = None,
    event_bus=None,
) -> DuesServices:
    """
    Create the dues services with all real dependencies

    Args:
        config: Optional dues config (uses global settings if not provided)
        event_bus: Optional event bus for event publishing

    Returns:
        DuesServices bundle; call repository.initialize() before use
    """
    if config is None:
        config = get_settings()
    service_config = config.service

    repository = DuesRepository(
        db=PostgresClientWrapper(service_name=service_config.service_name, config=config.infra)
    )

    processor = None
    if service_config.stripe_secret_key:
        processor = StripePaymentProcessor(
            api_key=service_config.stripe_secret_key,
            currency=service_config.stripe_currency,
            return_url=service_config.payment_return_url,
        )
    else:
        logger.warning("STRIPE_SECRET_KEY not set; payer assignment and card setup are disabled")

    notification_client = NotificationClient(
        base_url=service_config.notification_service_url,
        timeout=service_config.notification_timeout,
    )

    shared = dict(
        event_bus=event_bus,
        email_client=notification_client,
        billing_defaults=service_config.billing_defaults(),
    )
    dues = DuesService(repository, **shared)

    logger.info("Dues services created with real dependencies")

    return DuesServices(
        repository=repository,
        dues=dues,
        payer=PayerService(repository, processor=processor, **shared),
        sweep=OverdueSweepService(repository, **shared),
        onboarding=OnboardingService(repository, dues_service=dues, processor=processor, **shared),
        notification_client=notification_client,
    )


__all__ = ["DuesServices", "create_dues_services"]
