"""
Notification Service Client

Client for calling notification_service to deliver templated dues emails
(receipts, reminders, payment setup links, onboarding).
"""

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class NotificationClient:
    """Email delivery through notification_service"""

    def __init__(
        self,
        base_url: str = "http://localhost:8270",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def send_email(
        self,
        template: str,
        recipient: str,
        variables: Dict[str, Any],
    ) -> bool:
        """
        Send a templated email.

        Args:
            template: Template key (e.g. payment_reminder, payment_setup)
            recipient: Email address
            variables: Template variables

        Returns:
            True when the notification service accepted the message
        """
        try:
            response = await self._client.post(
                "/api/v1/notifications",
                json={
                    "channel_type": "email",
                    "recipient": recipient,
                    "template": template,
                    "variables": variables,
                },
            )
            response.raise_for_status()
            body = response.json() if response.content else {}
            accepted = body.get("success", True)
            if not accepted:
                logger.warning(f"Notification service rejected {template} email to {recipient}: {body}")
            return bool(accepted)

        except httpx.HTTPStatusError as e:
            logger.error(f"Error sending {template} email: {e.response.text}")
            return False

        except httpx.HTTPError as e:
            logger.error(f"Error sending {template} email: {e}")
            return False

    async def close(self):
        await self._client.aclose()
