"""Conversation domain schemas - handoff operator API"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class HandoffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_id: int
    reason: str
    status: str
    summary: Optional[str] = None
    operator: Optional[str] = None
    resolution: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class StartHandoffRequest(BaseModel):
    operator: str

    @field_validator("operator")
    @classmethod
    def validate_operator(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("operator is required")
        return v


class FinishHandoffRequest(BaseModel):
    resolution: str = "Finished by operator"
