"""Billing repository - Database operations for invoices"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models_invoice import Invoice


class InvoiceRepository:
    """Repository for invoice database operations"""

    @staticmethod
    def get_invoice(db: Session, invoice_id: int) -> Optional[Invoice]:
        return db.query(Invoice).filter(Invoice.id == invoice_id).first()

    @staticmethod
    def get_by_appointment(db: Session, appointment_id: int) -> Optional[Invoice]:
        return db.query(Invoice).filter(Invoice.appointment_id == appointment_id).first()

    @staticmethod
    def get_by_remote_id(db: Session, remote_id: str) -> Optional[Invoice]:
        return db.query(Invoice).filter(Invoice.remote_id == remote_id).first()

    @staticmethod
    def get_by_status(db: Session, statuses: set, limit: int = 100, offset: int = 0) -> list[Invoice]:
        return (
            db.query(Invoice)
            .filter(Invoice.status.in_(statuses))
            .order_by(Invoice.due_date, Invoice.id)
            .offset(offset)
            .limit(limit)
            .all()
        )

    @staticmethod
    def add_invoice(db: Session, **invoice_data) -> Invoice:
        invoice = Invoice(**invoice_data)
        db.add(invoice)
        db.flush()
        return invoice
