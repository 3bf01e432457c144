"""Invoice generation, billing sweep and payment event reconciliation tests."""

from datetime import date, datetime

import pytest

from agendabot.domain.audit.repository import AuditRepository
from agendabot.domain.billing.reconciliation import PaymentReconciler
from agendabot.domain.billing.service import BillingService
from agendabot.exceptions import NotCompleted, ValidationError
from agendabot.models import AppointmentStatus, BillingMethod, PaymentStatus
from agendabot.models_events import AuditKind
from agendabot.models_invoice import Invoice, InvoiceStatus

LAST_MONDAY = datetime(2026, 2, 23, 10, 0)


@pytest.fixture
def billing(db, payments, messenger):
    return BillingService(db, payments=payments, messenger=messenger)


@pytest.fixture
def completed(make_customer, make_appointment):
    def _make(phone="5511987654321", start_at=LAST_MONDAY, **customer_fields):
        customer = make_customer(phone=phone, **customer_fields)
        return make_appointment(customer, start_at, status=AppointmentStatus.COMPLETED)

    return _make


class TestGenerateInvoice:
    async def test_invoice_for_completed_appointment(self, db, billing, payments, messenger, completed):
        appointment = completed()

        invoice = await billing.generate_invoice(appointment.id)

        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.remote_id == "pay_1"
        assert invoice.amount == 200.0
        assert invoice.due_date == date(2026, 3, 5)
        assert invoice.pix_payload == "PIX-pay_1"
        db.refresh(appointment)
        assert appointment.payment_status == PaymentStatus.INVOICE_GENERATED
        assert appointment.customer.payment_customer_id == "cus_1"

        call = payments.create_calls[0]
        assert call["idempotency_key"] == f"appointment-{appointment.id}-invoice"
        assert call["externalReference"] == str(appointment.id)
        assert call["billingType"] == BillingMethod.PIX
        assert "PIX-pay_1" in messenger.last
        assert "https://pay.example/pay_1" in messenger.last

    async def test_boleto_customer_gets_digitable_line(self, db, billing, messenger, completed):
        appointment = completed(billing_method=BillingMethod.BOLETO)

        invoice = await billing.generate_invoice(appointment.id)

        assert invoice.boleto_line == "BOLETO-pay_1"
        assert invoice.pix_payload is None
        assert "BOLETO-pay_1" in messenger.last

    async def test_generate_twice_creates_one_invoice(self, db, billing, payments, completed):
        appointment = completed()

        first = await billing.generate_invoice(appointment.id)
        second = await billing.generate_invoice(appointment.id)

        assert first.id == second.id
        assert len(payments.create_calls) == 1
        assert db.query(Invoice).count() == 1

    async def test_payment_customer_reused(self, billing, payments, make_customer, make_appointment):
        customer = make_customer()
        first = make_appointment(customer, LAST_MONDAY, status=AppointmentStatus.COMPLETED)
        second = make_appointment(customer, datetime(2026, 2, 24, 10, 0), status=AppointmentStatus.COMPLETED)

        await billing.generate_invoice(first.id)
        await billing.generate_invoice(second.id)

        assert len(payments.customers) == 1

    @pytest.mark.parametrize(
        "status", [AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED]
    )
    async def test_not_completed_creates_nothing(self, db, billing, payments, make_customer, make_appointment, status):
        appointment = make_appointment(make_customer(), datetime(2026, 3, 9, 10, 0), status=status)

        with pytest.raises(NotCompleted):
            await billing.generate_invoice(appointment.id)

        assert payments.create_calls == []
        assert db.query(Invoice).count() == 0

    async def test_missing_tax_id(self, db, billing, payments, completed):
        appointment = completed(tax_id=None)

        with pytest.raises(ValidationError):
            await billing.generate_invoice(appointment.id)

        assert payments.create_calls == []

    async def test_link_delivery_failure_keeps_invoice(self, db, billing, messenger, completed):
        appointment = completed()
        messenger.fail = True

        invoice = await billing.generate_invoice(appointment.id)

        assert invoice.id is not None
        assert db.query(Invoice).count() == 1


class TestBillingSweep:
    async def test_sweep_continues_past_failure(self, db, billing, payments, completed):
        failing = completed(phone="5511900000001")
        ok = completed(phone="5511900000002", start_at=datetime(2026, 2, 24, 10, 0))
        payments.fail_for_reference.add(str(failing.id))

        summary = await billing.run_sweep()

        assert summary["processed"] == 2
        assert summary["generated"] == 1
        assert summary["failed"] == 1
        assert summary["errors"][0]["appointment_id"] == failing.id
        db.refresh(failing)
        db.refresh(ok)
        assert failing.payment_status == PaymentStatus.UNBILLED
        assert ok.payment_status == PaymentStatus.INVOICE_GENERATED

    async def test_sweep_skips_billed_and_unfinished(self, billing, payments, completed, make_customer, make_appointment):
        appointment = completed()
        await billing.generate_invoice(appointment.id)
        make_appointment(make_customer(phone="5511900000003"), datetime(2026, 3, 9, 10, 0))

        summary = await billing.run_sweep()

        assert summary["processed"] == 0
        assert len(payments.create_calls) == 1


class TestCancelInvoice:
    async def test_cancel_open_invoice(self, db, billing, payments, completed):
        invoice = await billing.generate_invoice(completed().id)

        cancelled = await billing.cancel_invoice(invoice.id)

        assert cancelled.status == InvoiceStatus.CANCELLED
        assert cancelled.appointment.payment_status == PaymentStatus.REFUNDED
        assert payments.cancelled == [invoice.remote_id]

    async def test_paid_invoice_cannot_be_cancelled(self, db, billing, messenger, completed):
        invoice = await billing.generate_invoice(completed().id)
        await PaymentReconciler(db, messenger=messenger).handle_payment_event("PAYMENT_RECEIVED", invoice.remote_id)

        with pytest.raises(ValidationError):
            await billing.cancel_invoice(invoice.id)


class TestPaymentReconciliation:
    @pytest.fixture
    async def invoice(self, db, billing, completed):
        return await billing.generate_invoice(completed().id)

    @pytest.fixture
    def reconciler(self, db, messenger):
        return PaymentReconciler(db, messenger=messenger)

    async def test_unknown_invoice(self, db, reconciler, messenger):
        assert await reconciler.handle_payment_event("PAYMENT_RECEIVED", "pay_unknown") == "not_found"
        assert db.query(Invoice).count() == 0

    async def test_received_marks_paid_and_notifies_once(self, db, reconciler, messenger, invoice):
        sent_before = len(messenger.sent)

        assert await reconciler.handle_payment_event("PAYMENT_RECEIVED", invoice.remote_id) == "applied"
        assert await reconciler.handle_payment_event("PAYMENT_CONFIRMED", invoice.remote_id) == "applied"

        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.CONFIRMED
        assert invoice.paid_at is not None
        assert invoice.appointment.payment_status == PaymentStatus.PAID
        assert len(messenger.sent) == sent_before + 1

    async def test_overdue_after_paid_is_ignored(self, db, reconciler, invoice):
        await reconciler.handle_payment_event("PAYMENT_RECEIVED", invoice.remote_id)

        result = await reconciler.handle_payment_event("PAYMENT_OVERDUE", invoice.remote_id, event_id="evt_late")

        assert result == "ignored"
        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.RECEIVED
        assert invoice.appointment.payment_status == PaymentStatus.PAID
        records = AuditRepository.list_records(db, kind=AuditKind.PAYMENT_EVENT_IGNORED)
        assert [r.idempotency_key for r in records] == ["evt_late"]

    async def test_overdue_then_received(self, db, reconciler, invoice):
        await reconciler.handle_payment_event("PAYMENT_OVERDUE", invoice.remote_id)
        db.refresh(invoice)
        assert invoice.appointment.payment_status == PaymentStatus.OVERDUE

        await reconciler.handle_payment_event("PAYMENT_RECEIVED", invoice.remote_id)
        db.refresh(invoice)
        assert invoice.appointment.payment_status == PaymentStatus.PAID

    async def test_deleted_cancels_invoice(self, db, reconciler, invoice):
        assert await reconciler.handle_payment_event("PAYMENT_DELETED", invoice.remote_id) == "applied"

        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.CANCELLED
        assert invoice.appointment.payment_status == PaymentStatus.REFUNDED

    async def test_refund_after_paid(self, db, reconciler, invoice):
        await reconciler.handle_payment_event("PAYMENT_RECEIVED", invoice.remote_id)
        await reconciler.handle_payment_event("PAYMENT_REFUNDED", invoice.remote_id)

        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.REFUNDED
        assert invoice.appointment.payment_status == PaymentStatus.REFUNDED
        # Nothing moves a refunded invoice
        assert await reconciler.handle_payment_event("PAYMENT_RECEIVED", invoice.remote_id) == "ignored"

    async def test_unmapped_event_ignored(self, reconciler, invoice):
        assert await reconciler.handle_payment_event("PAYMENT_CREATED", invoice.remote_id) == "ignored"
