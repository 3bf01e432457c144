"""
WhatsApp Cloud API Service
Sends text, button and list messages and marks inbound messages as read
"""

import logging
from typing import Optional

import httpx

from ..config import (
    REMOTE_TIMEOUT_SECONDS,
    WHATSAPP_ACCESS_TOKEN,
    WHATSAPP_API_URL,
    WHATSAPP_PHONE_NUMBER_ID,
)
from ..exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

MAX_BUTTONS = 3
MAX_BUTTON_TITLE = 20
MAX_ROW_TITLE = 24
MAX_ROW_DESCRIPTION = 72


class WhatsAppService:
    """Messaging Gateway client"""

    def __init__(
        self,
        phone_number_id: Optional[str] = None,
        access_token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: float = REMOTE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.phone_number_id = phone_number_id or WHATSAPP_PHONE_NUMBER_ID
        self.access_token = access_token or WHATSAPP_ACCESS_TOKEN
        self.api_url = (api_url or WHATSAPP_API_URL).rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    async def _post(self, payload: dict) -> dict:
        if not self.is_configured:
            logger.warning("⚠️ WhatsApp not configured - message not sent")
            return {}

        url = f"{self.api_url}/{self.phone_number_id}/messages"
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"❌ WhatsApp request failed: {e}")
            raise ExternalServiceError("whatsapp", str(e)) from e

        if response.status_code not in (200, 201):
            logger.error(f"❌ WhatsApp API error {response.status_code}: {response.text}")
            raise ExternalServiceError("whatsapp", response.text, response.status_code)

        return response.json()

    @staticmethod
    def _message_id(result: dict) -> Optional[str]:
        messages = result.get("messages") or []
        return messages[0].get("id") if messages else None

    async def send_text(self, to: str, body: str) -> Optional[str]:
        """Send a plain text message, returns the WhatsApp message id"""
        result = await self._post(
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": to,
                "type": "text",
                "text": {"preview_url": False, "body": body},
            }
        )
        message_id = self._message_id(result)
        logger.info(f"📤 Text sent to {to} ({message_id})")
        return message_id

    async def send_buttons(self, to: str, body: str, buttons: list[dict]) -> Optional[str]:
        """
        Send up to three reply buttons.

        Args:
            buttons: [{"id": "...", "title": "..."}]
        """
        result = await self._post(
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": to,
                "type": "interactive",
                "interactive": {
                    "type": "button",
                    "body": {"text": body},
                    "action": {
                        "buttons": [
                            {
                                "type": "reply",
                                "reply": {"id": b["id"], "title": b["title"][:MAX_BUTTON_TITLE]},
                            }
                            for b in buttons[:MAX_BUTTONS]
                        ]
                    },
                },
            }
        )
        message_id = self._message_id(result)
        logger.info(f"📤 Buttons sent to {to} ({message_id})")
        return message_id

    async def send_list(
        self, to: str, body: str, sections: list[dict], button_text: str = "Options"
    ) -> Optional[str]:
        """
        Send an interactive list.

        Args:
            sections: [{"title": "...", "rows": [{"id": "...", "title": "...", "description": "..."}]}]
        """
        result = await self._post(
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": to,
                "type": "interactive",
                "interactive": {
                    "type": "list",
                    "body": {"text": body},
                    "action": {
                        "button": button_text[:MAX_BUTTON_TITLE],
                        "sections": [
                            {
                                "title": section.get("title", "")[:MAX_ROW_TITLE],
                                "rows": [
                                    {
                                        "id": row["id"],
                                        "title": row["title"][:MAX_ROW_TITLE],
                                        "description": (row.get("description") or "")[:MAX_ROW_DESCRIPTION],
                                    }
                                    for row in section.get("rows", [])
                                ],
                            }
                            for section in sections
                        ],
                    },
                },
            }
        )
        message_id = self._message_id(result)
        logger.info(f"📤 List sent to {to} ({message_id})")
        return message_id

    async def mark_read(self, message_id: str) -> None:
        await self._post(
            {"messaging_product": "whatsapp", "status": "read", "message_id": message_id}
        )


# Global instance
whatsapp_service = WhatsAppService()
