"""
Payload normalization for the WhatsApp Cloud API and Asaas webhooks
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from ...shared.validators import normalize_phone
from ...utils import dates
from .schemas import NormalizedMessage, PaymentEvent

logger = logging.getLogger(__name__)

WHATSAPP_OBJECT = "whatsapp_business_account"
SUPPORTED_MESSAGE_TYPES = {"text", "interactive", "button"}


def split_whatsapp_payload(payload: dict) -> list[tuple[str, dict, Optional[str]]]:
    """
    Walk entry[].changes[] and return one (message_id, event_payload, type) per
    inbound message. Status updates and other fields are skipped.
    """
    if payload.get("object") != WHATSAPP_OBJECT:
        return []

    events = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            if change.get("field") != "messages":
                continue
            value = change.get("value") or {}
            contacts = {c.get("wa_id"): c for c in value.get("contacts") or []}
            first_contact = (value.get("contacts") or [None])[0]
            for message in value.get("messages") or []:
                if not message.get("id"):
                    continue
                contact = contacts.get(message.get("from")) or first_contact
                events.append(
                    (
                        message["id"],
                        {"message": message, "contact": contact, "metadata": value.get("metadata")},
                        message.get("type"),
                    )
                )
    return events


def normalize_whatsapp_message(event_payload: dict) -> Optional[NormalizedMessage]:
    """Normalized record for a stored message event, None for unsupported types"""
    message = event_payload.get("message") or {}
    message_type = message.get("type")
    if message_type not in SUPPORTED_MESSAGE_TYPES:
        return None

    text = None
    selection_id = None
    if message_type == "text":
        text = (message.get("text") or {}).get("body")
    elif message_type == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        selection_id = reply.get("id")
        text = reply.get("title")
    elif message_type == "button":
        button = message.get("button") or {}
        selection_id = button.get("payload")
        text = button.get("text")

    timestamp = None
    if message.get("timestamp"):
        try:
            timestamp = dates.to_local_naive(datetime.fromtimestamp(int(message["timestamp"]), tz=timezone.utc))
        except (TypeError, ValueError):
            logger.warning(f"⚠️ Invalid WhatsApp timestamp: {message.get('timestamp')}")

    contact = event_payload.get("contact") or {}
    return NormalizedMessage(
        message_id=message["id"],
        customer_phone=normalize_phone(message.get("from")),
        display_name=(contact.get("profile") or {}).get("name"),
        message_type=message_type,
        text=text,
        interactive_selection_id=selection_id,
        timestamp=timestamp,
    )


def parse_asaas_payload(payload: dict) -> Optional[PaymentEvent]:
    """
    Event name, invoice id and a stable event id for an Asaas callback.

    The invoice object arrives under "payment" (Asaas) or "invoice".
    """
    event = payload.get("event")
    if not event:
        return None
    invoice = payload.get("payment") or payload.get("invoice") or {}
    remote_id = invoice.get("id")
    event_id = payload.get("id") or f"{event}_{remote_id}"
    return PaymentEvent(event=event, remote_invoice_id=remote_id, event_id=event_id)
