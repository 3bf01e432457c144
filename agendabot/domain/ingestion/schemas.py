"""Ingestion schemas - normalized inbound records and webhook responses"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class NormalizedMessage(BaseModel):
    """Inbound chat message reduced to what the conversation needs"""

    message_id: str
    customer_phone: str
    display_name: Optional[str] = None
    message_type: str  # text, interactive, image, audio, ...
    text: Optional[str] = None
    interactive_selection_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    @property
    def content(self) -> str:
        """Text the flows interpret: the selected option id, else the typed text"""
        return (self.interactive_selection_id or self.text or "").strip()


class PaymentEvent(BaseModel):
    event: str
    remote_invoice_id: Optional[str] = None
    event_id: str


class IngestResult(BaseModel):
    status: str  # accepted, duplicate, rejected
    event_id: Optional[int] = None
    reason: Optional[str] = None

    @property
    def should_dispatch(self) -> bool:
        return self.status == "accepted"


class InboundEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source: str
    external_id: str
    event_type: Optional[str] = None
    processed: bool
    error_message: Optional[str] = None
    retry_count: int
    received_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
