"""
Client notifier - delivers WhatsApp messages (with an optional document
link) through the external messaging gateway.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import NOTIFICATIONS_ENABLED, NOTIFIER_TOKEN, NOTIFIER_URL
from ..errors import ExternalServiceError
from ..models import MessageChannel
from .documents import raise_for_service_status

logger = logging.getLogger(__name__)


class NotifierClient:
    """Template messaging service."""

    service = "notifier"

    def __init__(
        self,
        base_url: str = NOTIFIER_URL,
        token: Optional[str] = NOTIFIER_TOKEN,
        enabled: bool = NOTIFICATIONS_ENABLED,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.enabled = enabled
        self.timeout = timeout
        self.transport = transport

        if self.enabled and not self.token:
            logger.warning("⚠️ Notifications enabled but NOTIFIER_TOKEN not configured")

    async def send(
        self,
        to: str,
        template: str,
        message: str,
        idempotency_key: str,
        media_url: Optional[str] = None,
        channel: MessageChannel = MessageChannel.WHATSAPP,
    ) -> Dict[str, Any]:
        """
        Send one message.

        Args:
            to: Phone number in international format (or email for EMAIL)
            template: Template name (quote_approved, flight_confirmed, etc.)
            message: Rendered message body
            idempotency_key: Forwarded so the gateway drops duplicate sends
            media_url: Document link to attach
        """
        if not self.enabled:
            logger.info(f"📱 Notifications disabled - would send {template} to {to}")
            return {"status": "disabled", "external_id": None, "template": template, "to": to}

        headers = {"Content-Type": "application/json", "Idempotency-Key": idempotency_key}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        body = {
            "channel": channel.value,
            "to": to,
            "template": template,
            "message": message,
        }
        if media_url:
            body["mediaUrl"] = media_url

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/messages", headers=headers, json=body)
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Notifier unreachable: {e}", service=self.service) from e

        raise_for_service_status(self.service, response)

        data = response.json() if response.content else {}
        result = {
            "status": "sent",
            "external_id": data.get("id") or data.get("messageId"),
            "template": template,
            "to": to,
        }
        logger.info(f"📱 {channel.value} {template} → {to}: sent")
        return result
