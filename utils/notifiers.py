"""
Notification channel adapters.

``WhatsAppNotifier`` sends plain-text messages through the WhatsApp Cloud
API and satisfies the ``Notifier`` contract. ``parse_whatsapp_webhook``
normalizes an inbound webhook payload into the fields the engagement
session needs.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from models.errors import DeliveryError, sanitize_collaborator_error
from utils.collaborators import NotificationPayload

logger = logging.getLogger(__name__)

DEFAULT_WHATSAPP_API_URL = "https://graph.facebook.com/v21.0"


class WhatsAppNotifier:
    """
    Text sender for the WhatsApp Cloud API.

    Usage:
        notifier = WhatsAppNotifier(token="...", phone_number_id="1234")
        delivery_id = notifier.send("+15550100", NotificationPayload(body="Hi!"))
    """

    def __init__(
        self,
        token: str,
        phone_number_id: str,
        api_url: str = DEFAULT_WHATSAPP_API_URL,
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not token or not phone_number_id:
            raise ValueError("WhatsApp token and phone_number_id are required")
        self.phone_number_id = phone_number_id
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self) -> None:
        self._client.close()

    def send(self, recipient: str, payload: NotificationPayload) -> str:
        """
        Send a text message and return the WhatsApp message id.

        The subject, when present, is rendered as a bold first line.

        Raises:
            DeliveryError: On transport failure, non-2xx status, or a response
                without a message id
        """
        body = payload.body if not payload.subject else f"*{payload.subject}*\n{payload.body}"
        request_body = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": "text",
            "text": {"preview_url": False, "body": body},
        }

        try:
            response = self._client.post(f"/{self.phone_number_id}/messages", json=request_body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "WhatsApp send failed: status=%s response=%s",
                e.response.status_code,
                e.response.text[:500],
            )
            raise DeliveryError(
                f"WhatsApp send failed: {e.response.status_code}", original_error=e
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("WhatsApp send error: %s", e)
            raise DeliveryError(
                f"WhatsApp send error: {sanitize_collaborator_error(e)}", original_error=e
            ) from e

        messages = data.get("messages") if isinstance(data, dict) else None
        message_id = messages[0].get("id") if messages else None
        if not message_id:
            raise DeliveryError("WhatsApp response did not include a message id")

        logger.info("WhatsApp text sent (message_id=%s)", message_id)
        return message_id


def parse_whatsapp_webhook(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Extract the first inbound text message from a WhatsApp webhook payload.

    Returns:
        ``{"from", "message_id", "text", "timestamp"}`` or None when the
        payload carries no text message (status callbacks, media, etc.)
    """
    try:
        value = body["entry"][0]["changes"][0]["value"]
        message = value["messages"][0]
    except (KeyError, IndexError, TypeError):
        return None

    if message.get("type") != "text":
        return None

    try:
        timestamp = int(message.get("timestamp", 0))
    except (TypeError, ValueError):
        timestamp = 0

    return {
        "from": message.get("from"),
        "message_id": message.get("id"),
        "text": (message.get("text") or {}).get("body", ""),
        "timestamp": timestamp,
    }
