"""Shared test fixtures and fakes for the remote gateways."""

import asyncio
import itertools
from datetime import date, datetime
from typing import Optional
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agendabot import models, models_events, models_invoice  # noqa: F401
from agendabot.database import Base
from agendabot.domain.ingestion.schemas import NormalizedMessage
from agendabot.exceptions import ExternalServiceError
from agendabot.models import (
    Appointment,
    AppointmentStatus,
    AvailabilityRule,
    BillingMethod,
    ConversationState,
    Customer,
    PaymentStatus,
)
from agendabot.utils import dates

# Monday 2 March 2026, 09:00 business time
NOW = datetime(2026, 3, 2, 9, 0)
NEXT_MONDAY = date(2026, 3, 9)

VALID_CPF = "52998224725"
CUSTOMER_PHONE = "5511987654321"


# ============================================================================
# FAKE GATEWAYS
# ============================================================================


class FakeMessenger:
    """Records everything that would have gone out over WhatsApp"""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.buttons: list[tuple[str, str, list]] = []
        self.read: list[str] = []
        self.fail = False

    async def send_text(self, to: str, body: str) -> Optional[str]:
        if self.fail:
            raise ExternalServiceError("whatsapp", "unavailable", 503)
        self.sent.append((to, body))
        return f"wamid.{len(self.sent)}"

    async def send_buttons(self, to: str, body: str, buttons: list[dict]) -> Optional[str]:
        if self.fail:
            raise ExternalServiceError("whatsapp", "unavailable", 503)
        self.sent.append((to, body))
        self.buttons.append((to, body, buttons))
        return f"wamid.{len(self.sent)}"

    async def send_list(self, to: str, body: str, sections: list[dict], button_text: str = "Options") -> Optional[str]:
        return await self.send_text(to, body)

    async def mark_read(self, message_id: str) -> None:
        self.read.append(message_id)

    def bodies(self, phone: str = CUSTOMER_PHONE) -> list[str]:
        return [body for to, body in self.sent if to == phone]

    @property
    def last(self) -> Optional[str]:
        return self.sent[-1][1] if self.sent else None


class FakeCalendar:
    """In-memory calendar; `busy` holds (start, end) windows outside our own events"""

    def __init__(self):
        self.busy: list[tuple[datetime, datetime]] = []
        self.events: dict[str, tuple[datetime, datetime]] = {}
        self.deleted: list[str] = []
        self.fail_create = False
        self.fail_delete = False
        self._ids = itertools.count(1)

    async def busy_windows(self, day: date) -> list[tuple[datetime, datetime]]:
        await asyncio.sleep(0)
        return [(start, end) for start, end in self.busy if start.date() == day]

    async def create_event(self, summary: str, start: datetime, end: datetime, description: Optional[str] = None) -> str:
        await asyncio.sleep(0)
        if self.fail_create:
            raise ExternalServiceError("google_calendar", "unavailable", 503)
        event_id = f"evt-{next(self._ids)}"
        self.events[event_id] = (start, end)
        return event_id

    async def delete_event(self, event_id: str) -> None:
        if self.fail_delete:
            raise ExternalServiceError("google_calendar", "unavailable", 503)
        self.events.pop(event_id, None)
        self.deleted.append(event_id)


class FakePayments:
    """Asaas stand-in honouring the idempotency key like the real gateway"""

    def __init__(self):
        self.customers: list[dict] = []
        self.invoices: dict[str, dict] = {}
        self.create_calls: list[dict] = []
        self.cancelled: list[str] = []
        self.fail_for_reference: set[str] = set()
        self._ids = itertools.count(1)

    async def create_customer(self, name: str, tax_id: str, email: Optional[str] = None, phone: Optional[str] = None) -> dict:
        customer = {"id": f"cus_{len(self.customers) + 1}", "name": name, "cpfCnpj": tax_id}
        self.customers.append(customer)
        return customer

    async def create_invoice(self, customer_id, amount, due_date, billing_type, description=None,
                             external_reference=None, idempotency_key=None) -> dict:
        self.create_calls.append({"customer": customer_id, "value": amount, "externalReference": external_reference,
                                  "idempotency_key": idempotency_key, "billingType": billing_type})
        if external_reference in self.fail_for_reference:
            raise ExternalServiceError("asaas", "gateway error", 500)
        for invoice in self.invoices.values():
            if idempotency_key and invoice["idempotency_key"] == idempotency_key:
                return invoice
        remote_id = f"pay_{next(self._ids)}"
        invoice = {"id": remote_id, "invoiceUrl": f"https://pay.example/{remote_id}", "idempotency_key": idempotency_key}
        self.invoices[remote_id] = invoice
        return invoice

    async def get_pix_payload(self, remote_id: str) -> Optional[str]:
        return f"PIX-{remote_id}"

    async def get_boleto_line(self, remote_id: str) -> Optional[str]:
        return f"BOLETO-{remote_id}"

    async def cancel_invoice(self, remote_id: str) -> dict:
        self.cancelled.append(remote_id)
        return {"deleted": True, "id": remote_id}


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def frozen_now(monkeypatch):
    monkeypatch.setattr(dates, "local_now", lambda: NOW)
    return NOW


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def make_customer(db):
    def _make(
        phone: str = CUSTOMER_PHONE,
        name: Optional[str] = "Maria Silva",
        tax_id: Optional[str] = VALID_CPF,
        state: str = ConversationState.MAIN_MENU,
        data: Optional[dict] = None,
        **extra,
    ) -> Customer:
        customer = Customer(
            phone=phone,
            name=name,
            tax_id=tax_id,
            conversation_state=state,
            conversation_data=data or {},
            state_version=0,
            registration_complete=bool(name and tax_id),
            billing_method=extra.pop("billing_method", BillingMethod.PIX),
            **extra,
        )
        db.add(customer)
        db.commit()
        db.refresh(customer)
        return customer

    return _make


@pytest.fixture
def make_rule(db):
    def _make(day_of_week: int = 0, start_time: str = "10:00", end_time: str = "12:00",
              slot_duration: int = 50, slot_gap: int = 10, is_active: bool = True) -> AvailabilityRule:
        rule = AvailabilityRule(
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            slot_duration=slot_duration,
            slot_gap=slot_gap,
            is_active=is_active,
        )
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule

    return _make


@pytest.fixture
def make_appointment(db):
    def _make(customer: Customer, start_at: datetime, status: str = AppointmentStatus.SCHEDULED,
              payment_status: str = PaymentStatus.UNBILLED, price: float = 200.0, **extra) -> Appointment:
        appointment = Appointment(
            customer_id=customer.id,
            start_at=start_at,
            end_at=start_at.replace(minute=50),
            duration_minutes=50,
            status=status,
            payment_status=payment_status,
            price=price,
            calendar_event_id=extra.pop("calendar_event_id", f"evt-seed-{uuid4().hex[:8]}"),
            **extra,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make


def make_message(text: str, phone: str = CUSTOMER_PHONE, selection_id: Optional[str] = None,
                 message_type: str = "text") -> NormalizedMessage:
    return NormalizedMessage(
        message_id=f"wamid.{uuid4().hex}",
        customer_phone=phone,
        message_type=message_type,
        text=text,
        interactive_selection_id=selection_id,
    )


def whatsapp_payload(text="Oi", message_id="wamid.ABC123", message_type="text", phone=CUSTOMER_PHONE):
    message = {"from": phone, "id": message_id, "timestamp": "1772452800", "type": message_type}
    if message_type == "text":
        message["text"] = {"body": text}
    elif message_type == "image":
        message["image"] = {"id": "media-1", "mime_type": "image/jpeg"}
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_ID",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"phone_number_id": "PHONE_ID"},
                            "contacts": [{"wa_id": phone, "profile": {"name": "Maria"}}],
                            "messages": [message],
                        },
                    }
                ],
            }
        ],
    }

