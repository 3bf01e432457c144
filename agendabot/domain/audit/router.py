"""Audit router - read-only access to the audit trail"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import require_admin
from ...database import get_db
from .repository import AuditRepository
from .schemas import AuditRecordResponse

router = APIRouter(prefix="/audit", tags=["Audit"], dependencies=[Depends(require_admin)])


@router.get("", response_model=list[AuditRecordResponse])
async def list_audit_records(
    kind: Optional[str] = None,
    customer_id: Optional[int] = None,
    appointment_id: Optional[int] = None,
    invoice_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Newest first"""
    return AuditRepository.list_records(
        db,
        kind=kind,
        customer_id=customer_id,
        appointment_id=appointment_id,
        invoice_id=invoice_id,
        limit=limit,
        offset=offset,
    )
