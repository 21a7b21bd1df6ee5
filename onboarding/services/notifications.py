"""
Notification hand-off.

Outbound email is an external collaborator; the core only posts an event
to its webhook. Delivery is fire-and-forget: failures are logged, never
raised, so they cannot fail the request that triggered them.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from onboarding.config import get_settings

logger = logging.getLogger(__name__)


class NotificationChannel:
    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.timeout = timeout if timeout is not None else settings.notification_timeout_seconds

    async def send(self, event: str, payload: Dict[str, Any]) -> bool:
        if not self.webhook_url:
            logger.info("No notification webhook configured; dropping %s event", event)
            return False

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    self.webhook_url,
                    json={"event": event, "data": payload},
                    timeout=self.timeout,
                )
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Notification %s delivery failed: %s", event, e)
            return False

        logger.info("Notification %s delivered", event)
        return True

    async def invitation_sent(self, email: str, full_name: Optional[str], role: str, accept_url: str, reminder: bool = False) -> bool:
        return await self.send(
            "invitation_reminder" if reminder else "invitation_sent",
            {"email": email, "full_name": full_name, "role": role, "accept_url": accept_url},
        )

    async def account_created(self, user_id: str, email: str, full_name: Optional[str]) -> bool:
        return await self.send(
            "account_created", {"user_id": user_id, "email": email, "full_name": full_name}
        )


def get_notification_channel() -> NotificationChannel:
    return NotificationChannel()
