"""
Payment event reconciliation.

Applies Asaas payment events to the local invoice mirror and the
appointment payment status. Transitions only move forward through the
invoice lattice, so out-of-order or repeated events never regress a paid
or refunded invoice.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ... import messages
from ...exceptions import ExternalServiceError
from ...models import AppointmentStatus, PaymentStatus
from ...models_events import AuditKind
from ...models_invoice import InvoiceStatus
from ...services.whatsapp_service import whatsapp_service
from ...utils import dates
from ..audit.repository import AuditRepository, snapshot
from .repository import InvoiceRepository

logger = logging.getLogger(__name__)

# Gateway event (without the PAYMENT_ prefix) -> invoice status mirror
EVENT_TO_INVOICE_STATUS = {
    "RECEIVED": InvoiceStatus.RECEIVED,
    "RECEIVED_IN_CASH": InvoiceStatus.RECEIVED,
    "CONFIRMED": InvoiceStatus.CONFIRMED,
    "OVERDUE": InvoiceStatus.OVERDUE,
    "REFUNDED": InvoiceStatus.REFUNDED,
    "DELETED": InvoiceStatus.CANCELLED,
}

# Allowed forward moves of the invoice status mirror
INVOICE_TRANSITIONS = {
    InvoiceStatus.PENDING: {
        InvoiceStatus.RECEIVED,
        InvoiceStatus.CONFIRMED,
        InvoiceStatus.OVERDUE,
        InvoiceStatus.REFUNDED,
        InvoiceStatus.CANCELLED,
    },
    InvoiceStatus.OVERDUE: {
        InvoiceStatus.RECEIVED,
        InvoiceStatus.CONFIRMED,
        InvoiceStatus.REFUNDED,
        InvoiceStatus.CANCELLED,
    },
    InvoiceStatus.RECEIVED: {InvoiceStatus.CONFIRMED, InvoiceStatus.REFUNDED},
    InvoiceStatus.CONFIRMED: {InvoiceStatus.REFUNDED},
    InvoiceStatus.REFUNDED: set(),
    InvoiceStatus.CANCELLED: set(),
}

INVOICE_TO_PAYMENT_STATUS = {
    InvoiceStatus.RECEIVED: PaymentStatus.PAID,
    InvoiceStatus.CONFIRMED: PaymentStatus.PAID,
    InvoiceStatus.OVERDUE: PaymentStatus.OVERDUE,
    InvoiceStatus.REFUNDED: PaymentStatus.REFUNDED,
    InvoiceStatus.CANCELLED: PaymentStatus.REFUNDED,
}

AUDIT_KINDS = {
    InvoiceStatus.RECEIVED: AuditKind.PAYMENT_RECEIVED,
    InvoiceStatus.CONFIRMED: AuditKind.PAYMENT_CONFIRMED,
    InvoiceStatus.OVERDUE: AuditKind.PAYMENT_OVERDUE,
    InvoiceStatus.REFUNDED: AuditKind.PAYMENT_REFUNDED,
    InvoiceStatus.CANCELLED: AuditKind.PAYMENT_REFUNDED,
}

APPLIED = "applied"
IGNORED = "ignored"
NOT_FOUND = "not_found"


def normalize_event_type(event_type: str) -> str:
    event_type = (event_type or "").upper()
    return event_type[len("PAYMENT_"):] if event_type.startswith("PAYMENT_") else event_type


class PaymentReconciler:
    """Applies payment gateway callbacks to invoices and appointments"""

    def __init__(self, db: Session, messenger=None):
        self.db = db
        self.messenger = messenger or whatsapp_service
        self.repo = InvoiceRepository()

    async def handle_payment_event(
        self,
        event_type: str,
        remote_invoice_id: str,
        payload: Optional[dict] = None,
        event_id: Optional[str] = None,
    ) -> str:
        """
        Returns "applied", "ignored" (unknown event or regression) or
        "not_found" (no local invoice; webhooks never create records).
        """
        invoice = self.repo.get_by_remote_id(self.db, remote_invoice_id) if remote_invoice_id else None
        if not invoice:
            logger.info(f"ℹ️ Payment event {event_type} for unknown invoice {remote_invoice_id} ignored")
            return NOT_FOUND

        normalized = normalize_event_type(event_type)
        target = EVENT_TO_INVOICE_STATUS.get(normalized)
        if target is None:
            logger.info(f"ℹ️ Payment event {event_type} has no effect on invoice {invoice.id}")
            return IGNORED

        appointment = invoice.appointment
        if target not in INVOICE_TRANSITIONS.get(invoice.status, set()) or (
            appointment.status != AppointmentStatus.COMPLETED
        ):
            logger.warning(
                f"⚠️ Ignoring {event_type} for invoice {invoice.id}: "
                f"{invoice.status}/{appointment.payment_status} cannot move to {target}"
            )
            AuditRepository.record(
                self.db,
                AuditKind.PAYMENT_EVENT_IGNORED,
                customer_id=invoice.customer_id,
                appointment_id=appointment.id,
                invoice_id=invoice.id,
                details={"event": event_type, "invoice_status": invoice.status},
                idempotency_key=event_id,
            )
            self.db.commit()
            return IGNORED

        before = {**snapshot(invoice, ["status"]), "payment_status": appointment.payment_status}
        was_paid = appointment.payment_status == PaymentStatus.PAID

        now = dates.local_now()
        invoice.status = target
        if target == InvoiceStatus.RECEIVED:
            invoice.paid_at = invoice.paid_at or now
        elif target == InvoiceStatus.CONFIRMED:
            invoice.confirmed_at = now
            invoice.paid_at = invoice.paid_at or now
        elif target == InvoiceStatus.CANCELLED:
            invoice.cancelled_at = now

        appointment.payment_status = INVOICE_TO_PAYMENT_STATUS[target]
        AuditRepository.record(
            self.db,
            AUDIT_KINDS[target],
            customer_id=invoice.customer_id,
            appointment_id=appointment.id,
            invoice_id=invoice.id,
            before=before,
            after={"status": invoice.status, "payment_status": appointment.payment_status},
            details={"event": event_type},
            idempotency_key=event_id,
        )
        self.db.commit()
        logger.info(f"✅ Invoice {invoice.id}: {before['status']} → {invoice.status} ({event_type})")

        if appointment.payment_status == PaymentStatus.PAID and not was_paid:
            await self._notify_paid(appointment.customer.phone, invoice.amount)

        return APPLIED

    async def _notify_paid(self, phone: str, amount: float) -> None:
        try:
            await self.messenger.send_text(phone, messages.payment_received(amount))
        except ExternalServiceError as e:
            logger.error(f"❌ Payment confirmation not delivered to {phone}: {e}")
