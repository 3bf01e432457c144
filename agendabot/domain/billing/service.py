"""
Billing service - invoice generation and the periodic billing sweep
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import messages
from ...config import INVOICE_DUE_DAYS
from ...exceptions import ExternalServiceError, NotCompleted, NotFoundError, ValidationError
from ...models import Appointment, AppointmentStatus, BillingMethod, Customer, PaymentStatus
from ...models_events import AuditKind
from ...models_invoice import Invoice, InvoiceStatus
from ...services.asaas_service import asaas_service
from ...services.whatsapp_service import whatsapp_service
from ...utils import dates
from ...shared.locks import KeyedLocks
from ..audit.repository import AuditRepository, snapshot
from ..scheduling.repository import AppointmentRepository
from .repository import InvoiceRepository

logger = logging.getLogger(__name__)

INVOICE_FIELDS = ["id", "appointment_id", "remote_id", "amount", "billing_method", "status", "due_date"]

_invoice_locks = KeyedLocks()


def invoice_idempotency_key(appointment_id: int) -> str:
    """Stable key so a repeated creation request maps to the same remote invoice"""
    return f"appointment-{appointment_id}-invoice"


class BillingService:
    """Service for invoice generation"""

    def __init__(self, db: Session, payments=None, messenger=None):
        self.db = db
        self.payments = payments or asaas_service
        self.messenger = messenger or whatsapp_service
        self.repo = InvoiceRepository()
        self.appointments = AppointmentRepository()

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.repo.get_invoice(self.db, invoice_id)
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    def list_pending(self, limit: int = 100, offset: int = 0) -> list[Invoice]:
        return self.repo.get_by_status(self.db, {InvoiceStatus.PENDING}, limit=limit, offset=offset)

    def list_overdue(self, limit: int = 100, offset: int = 0) -> list[Invoice]:
        return self.repo.get_by_status(self.db, {InvoiceStatus.OVERDUE}, limit=limit, offset=offset)

    async def _ensure_payment_customer(self, customer: Customer) -> str:
        """Asaas customer reference, created on first invoice"""
        if customer.payment_customer_id:
            return customer.payment_customer_id
        if not customer.tax_id:
            raise ValidationError(f"Customer {customer.id} has no tax id; cannot create payment customer")

        remote = await self.payments.create_customer(
            name=customer.name or customer.phone,
            tax_id=customer.tax_id,
            email=customer.email,
            phone=customer.phone,
        )
        customer.payment_customer_id = remote["id"]
        AuditRepository.record(
            self.db,
            AuditKind.PAYMENT_CUSTOMER_CREATED,
            customer_id=customer.id,
            after={"payment_customer_id": remote["id"]},
        )
        self.db.commit()
        logger.info(f"✅ Customer {customer.id} linked to payment customer {remote['id']}")
        return customer.payment_customer_id

    async def _payment_instructions(self, remote_id: str, billing_method: str) -> tuple[Optional[str], Optional[str]]:
        """PIX payload or boleto line, best effort"""
        try:
            if billing_method == BillingMethod.PIX:
                return await self.payments.get_pix_payload(remote_id), None
            if billing_method == BillingMethod.BOLETO:
                return None, await self.payments.get_boleto_line(remote_id)
        except ExternalServiceError as e:
            logger.warning(f"⚠️ Could not fetch payment instructions for {remote_id}: {e}")
        return None, None

    async def generate_invoice(self, appointment_id: int) -> Invoice:
        """
        Create the invoice for a completed appointment exactly once.

        Returns the existing invoice unchanged when one is already recorded.

        Raises:
            NotCompleted: The appointment is not COMPLETED (nothing is created)
        """
        appointment = self.appointments.get_appointment(self.db, appointment_id)
        if not appointment:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        if appointment.status != AppointmentStatus.COMPLETED:
            raise NotCompleted(f"Appointment {appointment.id} is {appointment.status}, not COMPLETED")

        async with _invoice_locks.hold(appointment.id):
            existing = self.repo.get_by_appointment(self.db, appointment.id)
            if existing:
                logger.info(f"ℹ️ Invoice {existing.id} already exists for appointment {appointment.id}")
                return existing

            customer = appointment.customer
            payment_customer_id = await self._ensure_payment_customer(customer)

            billing_method = customer.billing_method if customer.billing_method in BillingMethod.ALL else BillingMethod.PIX
            due_date = dates.local_today() + timedelta(days=INVOICE_DUE_DAYS)
            idempotency_key = invoice_idempotency_key(appointment.id)

            remote = await self.payments.create_invoice(
                customer_id=payment_customer_id,
                amount=appointment.price,
                due_date=due_date,
                billing_type=billing_method,
                description=f"Appointment on {messages.describe_appointment(appointment.start_at)}",
                external_reference=str(appointment.id),
                idempotency_key=idempotency_key,
            )
            pix_payload, boleto_line = await self._payment_instructions(remote["id"], billing_method)

            try:
                invoice = self._persist_invoice(appointment, remote, billing_method, due_date, pix_payload, boleto_line)
            except IntegrityError:
                self.db.rollback()
                existing = self.repo.get_by_appointment(self.db, appointment.id)
                self._record_orphaned_invoice(appointment, remote["id"])
                if existing:
                    return existing
                raise

        await self._notify_payment_link(customer, appointment, invoice)
        return invoice

    def _persist_invoice(
        self,
        appointment: Appointment,
        remote: dict,
        billing_method: str,
        due_date,
        pix_payload: Optional[str],
        boleto_line: Optional[str],
    ) -> Invoice:
        invoice = self.repo.add_invoice(
            self.db,
            appointment_id=appointment.id,
            customer_id=appointment.customer_id,
            remote_id=remote["id"],
            amount=appointment.price,
            billing_method=billing_method,
            status=InvoiceStatus.PENDING,
            payment_link=remote.get("invoiceUrl") or remote.get("bankSlipUrl"),
            pix_payload=pix_payload,
            boleto_line=boleto_line,
            due_date=due_date,
        )
        before = {"payment_status": appointment.payment_status}
        appointment.payment_status = PaymentStatus.INVOICE_GENERATED
        AuditRepository.record(
            self.db,
            AuditKind.INVOICE_CREATED,
            customer_id=appointment.customer_id,
            appointment_id=appointment.id,
            invoice_id=invoice.id,
            before=before,
            after=snapshot(invoice, INVOICE_FIELDS),
            idempotency_key=invoice_idempotency_key(appointment.id),
        )
        self.db.commit()
        self.db.refresh(invoice)
        logger.info(f"✅ Invoice {invoice.id} ({invoice.remote_id}) created for appointment {appointment.id}")
        return invoice

    def _record_orphaned_invoice(self, appointment: Appointment, remote_id: str) -> None:
        logger.error(
            f"❌ Remote invoice {remote_id} created but not recorded for appointment {appointment.id}; "
            "needs manual reconciliation"
        )
        AuditRepository.record(
            self.db,
            AuditKind.INVOICE_ORPHANED,
            customer_id=appointment.customer_id,
            appointment_id=appointment.id,
            details={"remote_id": remote_id},
        )
        self.db.commit()

    async def _notify_payment_link(self, customer: Customer, appointment: Appointment, invoice: Invoice) -> None:
        try:
            await self.messenger.send_text(
                customer.phone,
                messages.payment_link(
                    appointment.start_at,
                    invoice.amount,
                    invoice.due_date,
                    link=invoice.payment_link,
                    pix=invoice.pix_payload,
                    boleto=invoice.boleto_line,
                ),
            )
        except ExternalServiceError as e:
            logger.error(f"❌ Invoice {invoice.id} created but payment link not delivered: {e}")

    async def cancel_invoice(self, invoice_id: int) -> Invoice:
        """Cancel an open invoice on the gateway; the appointment is no longer owed"""
        invoice = self.get_invoice(invoice_id)
        if invoice.status not in InvoiceStatus.OPEN:
            raise ValidationError(f"Invoice {invoice.id} is {invoice.status} and cannot be cancelled")

        await self.payments.cancel_invoice(invoice.remote_id)

        before = snapshot(invoice, INVOICE_FIELDS)
        invoice.status = InvoiceStatus.CANCELLED
        invoice.cancelled_at = dates.local_now()
        appointment = invoice.appointment
        appointment.payment_status = PaymentStatus.REFUNDED
        AuditRepository.record(
            self.db,
            AuditKind.INVOICE_CANCELLED,
            customer_id=invoice.customer_id,
            appointment_id=invoice.appointment_id,
            invoice_id=invoice.id,
            before=before,
            after=snapshot(invoice, INVOICE_FIELDS),
        )
        self.db.commit()
        self.db.refresh(invoice)
        logger.info(f"✅ Invoice {invoice.id} cancelled")
        return invoice

    async def run_sweep(self) -> dict:
        """
        Generate invoices for every COMPLETED and UNBILLED appointment.
        One failure never stops the rest of the sweep.

        Returns:
            dict: Summary of the sweep
        """
        summary = {"processed": 0, "generated": 0, "failed": 0, "errors": []}

        pending_ids = [a.id for a in self.appointments.get_completed_unbilled(self.db)]
        logger.info(f"🔄 Billing sweep: {len(pending_ids)} completed appointment(s) to bill")

        for appointment_id in pending_ids:
            summary["processed"] += 1
            try:
                await self.generate_invoice(appointment_id)
                summary["generated"] += 1
            except Exception as e:
                self.db.rollback()
                summary["failed"] += 1
                summary["errors"].append({"appointment_id": appointment_id, "error": str(e)[:300]})
                logger.error(f"❌ Billing failed for appointment {appointment_id}: {e}")

        logger.info(
            f"✅ Billing sweep done: {summary['generated']} generated, {summary['failed']} failed"
        )
        return summary
