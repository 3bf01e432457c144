"""Audit repository - Append-only writes and filtered reads"""

from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from ...models_events import AuditRecord


def snapshot(obj: Any, fields: list[str]) -> dict:
    """JSON-safe copy of selected attributes"""
    data = {}
    for field in fields:
        value = getattr(obj, field, None)
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        data[field] = value
    return data


class AuditRepository:
    """Repository for audit records. Rows are only ever added."""

    @staticmethod
    def record(
        db: Session,
        kind: str,
        customer_id: Optional[int] = None,
        appointment_id: Optional[int] = None,
        invoice_id: Optional[int] = None,
        before: Optional[dict] = None,
        after: Optional[dict] = None,
        details: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> AuditRecord:
        """Stage an audit record in the caller's transaction (no commit)"""
        record = AuditRecord(
            kind=kind,
            customer_id=customer_id,
            appointment_id=appointment_id,
            invoice_id=invoice_id,
            before=before,
            after=after,
            details=details,
            idempotency_key=idempotency_key,
        )
        db.add(record)
        return record

    @staticmethod
    def list_records(
        db: Session,
        kind: Optional[str] = None,
        customer_id: Optional[int] = None,
        appointment_id: Optional[int] = None,
        invoice_id: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditRecord]:
        query = db.query(AuditRecord)
        if kind:
            query = query.filter(AuditRecord.kind == kind)
        if customer_id is not None:
            query = query.filter(AuditRecord.customer_id == customer_id)
        if appointment_id is not None:
            query = query.filter(AuditRecord.appointment_id == appointment_id)
        if invoice_id is not None:
            query = query.filter(AuditRecord.invoice_id == invoice_id)
        return query.order_by(AuditRecord.id.desc()).offset(offset).limit(limit).all()
