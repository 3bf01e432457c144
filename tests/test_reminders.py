"""Reminder sweep tests."""

from datetime import datetime

from agendabot import config, messages
from agendabot.domain.audit.repository import AuditRepository
from agendabot.models import AppointmentStatus
from agendabot.models_events import AuditKind
from agendabot.services.reminder_service import send_2h_reminders, send_24h_reminders


async def test_24h_reminder_window(db, messenger, make_customer, make_appointment):
    customer = make_customer()
    due = make_appointment(customer, datetime(2026, 3, 3, 9, 30))
    make_appointment(customer, datetime(2026, 3, 3, 10, 0))  # just outside the hour
    make_appointment(customer, datetime(2026, 3, 3, 9, 0), status=AppointmentStatus.CANCELLED, calendar_event_id=None)

    summary = await send_24h_reminders(db, messenger=messenger)

    assert summary == {"kind": "24h", "sent": 1, "failed": 0}
    assert messenger.bodies() == [messages.reminder_24h(datetime(2026, 3, 3, 9, 30))]
    db.refresh(due)
    assert due.reminder_24h_sent is True
    assert due.reminder_2h_sent is False
    kinds = [r.kind for r in AuditRepository.list_records(db, appointment_id=due.id)]
    assert kinds == [AuditKind.REMINDER_SENT]


async def test_reminder_sent_once(db, messenger, make_customer, make_appointment):
    make_appointment(make_customer(), datetime(2026, 3, 2, 11, 0))

    await send_2h_reminders(db, messenger=messenger)
    second = await send_2h_reminders(db, messenger=messenger)

    assert second["sent"] == 0
    assert len(messenger.sent) == 1


async def test_failed_send_leaves_flag_unset(db, messenger, make_customer, make_appointment):
    appointment = make_appointment(make_customer(), datetime(2026, 3, 2, 11, 0))
    messenger.fail = True

    summary = await send_2h_reminders(db, messenger=messenger)

    assert summary["failed"] == 1
    db.refresh(appointment)
    assert appointment.reminder_2h_sent is False


async def test_disabled_reminder(db, messenger, monkeypatch, make_customer, make_appointment):
    monkeypatch.setattr(config, "REMINDER_24H_ENABLED", False)
    make_appointment(make_customer(), datetime(2026, 3, 3, 9, 30))

    summary = await send_24h_reminders(db, messenger=messenger)

    assert summary["sent"] == 0
    assert messenger.sent == []
