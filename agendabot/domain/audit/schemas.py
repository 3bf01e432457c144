"""Audit schemas"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class AuditRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: str
    customer_id: Optional[int] = None
    appointment_id: Optional[int] = None
    invoice_id: Optional[int] = None
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    details: Optional[dict[str, Any]] = None
    idempotency_key: Optional[str] = None
    created_at: Optional[datetime] = None
