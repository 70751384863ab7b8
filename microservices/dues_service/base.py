"""
Dues Service Base

Shared plumbing for the dues business classes: clock, billing policy
resolution, best-effort events and emails.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel

from .models import BillingConfig, Organization
from .protocols import DuesRepositoryProtocol, EmailClientProtocol, EventBusProtocol

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseDuesService:
    """Dependencies and best-effort helpers shared by dues services"""

    def __init__(
        self,
        repository: DuesRepositoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        email_client: Optional[EmailClientProtocol] = None,
        billing_defaults: Optional[Dict[str, Any]] = None,
        clock: Optional[Clock] = None,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.email_client = email_client
        self.billing_defaults = billing_defaults or {}
        self.clock = clock or utc_now

    def _now(self) -> datetime:
        return self.clock()

    def _today(self) -> date:
        return self.clock().date()

    def _billing_config(self, organization: Optional[Organization]) -> BillingConfig:
        overrides = organization.billing_config if organization else None
        return BillingConfig.merged(overrides, self.billing_defaults)

    async def _publish_event(self, subject: str, data: Union[BaseModel, Dict[str, Any]]) -> None:
        """Publish event to event bus; failures are logged, never raised"""
        if not self.event_bus:
            return

        try:
            payload = data.model_dump(mode="json") if isinstance(data, BaseModel) else data
            event_data = {
                "event_type": subject.upper().replace(".", "_"),
                "source": "dues_service",
                "data": {
                    **payload,
                    "timestamp": self._now().isoformat()
                }
            }
            await self.event_bus.publish(subject, event_data)
        except Exception as e:
            logger.warning(f"Failed to publish event {subject}: {e}")

    async def _send_email(
        self,
        template: str,
        recipient: Optional[str],
        variables: Dict[str, Any],
    ) -> bool:
        """Send an email; failures are logged and reported as False"""
        if not self.email_client or not recipient:
            logger.info(f"Skipping {template} email: {'no recipient' if self.email_client else 'no email client'}")
            return False

        try:
            sent = await self.email_client.send_email(template, recipient, variables)
            if not sent:
                logger.warning(f"Email {template} to {recipient} was not accepted")
            return bool(sent)
        except Exception as e:
            logger.warning(f"Failed to send {template} email to {recipient}: {e}")
            return False
