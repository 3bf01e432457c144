"""Billing domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    appointment_id: int
    customer_id: int
    remote_id: str
    amount: float
    billing_method: str
    status: str
    payment_link: Optional[str] = None
    pix_payload: Optional[str] = None
    boleto_line: Optional[str] = None
    due_date: date
    paid_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class SweepError(BaseModel):
    appointment_id: int
    error: str


class SweepResponse(BaseModel):
    processed: int
    generated: int
    failed: int
    errors: list[SweepError]
