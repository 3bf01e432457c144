"""Conversation state machine tests: routing, flows and persistence."""

from datetime import datetime

import pytest

from agendabot import messages
from agendabot.domain.audit.repository import AuditRepository
from agendabot.domain.conversation.base import normalize_command, parse_choice
from agendabot.domain.conversation.handoff import HandoffService
from agendabot.domain.conversation.orchestrator import ConversationOrchestrator
from agendabot.domain.customers.repository import CustomerRepository
from agendabot.models import Appointment, AppointmentStatus, ConversationState, Customer, Handoff, HandoffStatus
from agendabot.models_events import AuditKind
from tests.conftest import CUSTOMER_PHONE, VALID_CPF, make_message

ALL_STATES = {
    value
    for name, value in vars(ConversationState).items()
    if name.isupper() and isinstance(value, str)
}


@pytest.fixture
def orchestrator(db, messenger, calendar):
    return ConversationOrchestrator(db, messenger=messenger, calendar=calendar)


def reload(db, customer_id: int) -> Customer:
    db.expire_all()
    return db.query(Customer).filter(Customer.id == customer_id).one()


class TestHelpers:
    @pytest.mark.parametrize("text,expected", [("menu", "MENU"), (" Início ", "INICIO"), ("não", "NAO"), ("Sim", "SIM")])
    def test_normalize_command(self, text, expected):
        assert normalize_command(text) == expected

    def test_parse_choice(self):
        assert parse_choice("1", 3) == 0
        assert parse_choice("3", 3) == 2
        assert parse_choice("4", 3) is None
        assert parse_choice("0", 3) is None
        assert parse_choice("one", 3) is None

    def test_dispatch_table_covers_every_state(self, orchestrator):
        assert set(orchestrator.handlers) == ALL_STATES


class TestBookingFlow:
    async def test_book_through_chat(self, db, orchestrator, messenger, calendar, make_customer, make_rule):
        make_rule(start_time="10:00", end_time="12:00")
        customer = make_customer()

        await orchestrator.handle_message(make_message("1"))
        assert reload(db, customer.id).conversation_state == ConversationState.AWAITING_DATE
        assert messenger.last == messages.ask_date()

        await orchestrator.handle_message(make_message("09/03/2026"))
        customer = reload(db, customer.id)
        assert customer.conversation_state == ConversationState.AWAITING_SLOT_CHOICE
        assert customer.conversation_data["slots"] == ["10:00", "11:00"]
        assert "1️⃣ 10:00" in messenger.last

        await orchestrator.handle_message(make_message("1"))
        customer = reload(db, customer.id)
        assert customer.conversation_state == ConversationState.MAIN_MENU
        assert customer.conversation_data == {}

        appointment = db.query(Appointment).one()
        assert appointment.customer_id == customer.id
        assert appointment.start_at == datetime(2026, 3, 9, 10, 0)
        assert appointment.status == AppointmentStatus.SCHEDULED
        assert len(calendar.events) == 1
        assert "10:00" in messenger.last

    async def test_slot_can_be_picked_by_time(self, db, orchestrator, make_customer, make_rule):
        make_rule(start_time="10:00", end_time="12:00")
        customer = make_customer(
            state=ConversationState.AWAITING_SLOT_CHOICE,
            data={"flow": "booking", "date": "2026-03-09", "slots": ["10:00", "11:00"]},
        )

        await orchestrator.handle_message(make_message("11:00"))

        assert reload(db, customer.id).conversation_state == ConversationState.MAIN_MENU
        assert db.query(Appointment).one().start_at == datetime(2026, 3, 9, 11, 0)

    async def test_invalid_date_reprompts(self, db, orchestrator, messenger, make_customer):
        customer = make_customer(state=ConversationState.AWAITING_DATE, data={"flow": "booking"})

        await orchestrator.handle_message(make_message("2026-03-09"))

        customer = reload(db, customer.id)
        assert customer.conversation_state == ConversationState.AWAITING_DATE
        assert customer.conversation_data == {"flow": "booking"}
        assert messenger.last == messages.invalid_date()

    async def test_past_date_reprompts(self, db, orchestrator, messenger, make_customer):
        make_customer(state=ConversationState.AWAITING_DATE, data={"flow": "booking"})

        await orchestrator.handle_message(make_message("01/03/2026"))

        assert messenger.last == messages.past_date()

    async def test_taken_slot_offers_remaining(self, db, orchestrator, messenger, make_customer, make_rule, make_appointment):
        make_rule(start_time="10:00", end_time="12:00")
        other = make_customer(phone="5511900000009")
        make_appointment(other, datetime(2026, 3, 9, 10, 0))
        customer = make_customer(
            state=ConversationState.AWAITING_SLOT_CHOICE,
            data={"flow": "booking", "date": "2026-03-09", "slots": ["10:00", "11:00"]},
        )

        await orchestrator.handle_message(make_message("1"))

        customer = reload(db, customer.id)
        assert customer.conversation_state == ConversationState.AWAITING_SLOT_CHOICE
        assert customer.conversation_data["slots"] == ["11:00"]
        assert messages.slot_taken() in messenger.bodies()

    async def test_failed_step_keeps_state_and_answers_generic_error(
        self, db, orchestrator, messenger, calendar, make_customer, make_rule
    ):
        make_rule(start_time="10:00", end_time="12:00")
        data = {"flow": "booking", "date": "2026-03-09", "slots": ["10:00", "11:00"]}
        customer = make_customer(state=ConversationState.AWAITING_SLOT_CHOICE, data=data)
        calendar.fail_create = True

        await orchestrator.handle_message(make_message("1"))

        customer = reload(db, customer.id)
        assert customer.conversation_state == ConversationState.AWAITING_SLOT_CHOICE
        assert customer.conversation_data == data
        assert messenger.last == messages.GENERIC_ERROR
        kinds = [r.kind for r in AuditRepository.list_records(db, customer_id=customer.id)]
        assert AuditKind.FLOW_STEP_FAILED in kinds


class TestMenuCommand:
    @pytest.mark.parametrize("command", ["MENU", "menu", "Início", "inicio"])
    async def test_menu_resets_any_state(self, db, orchestrator, messenger, make_customer, command):
        customer = make_customer(
            state=ConversationState.AWAITING_SLOT_CHOICE,
            data={"flow": "booking", "date": "2026-03-09", "slots": ["10:00"]},
        )

        await orchestrator.handle_message(make_message(command))

        customer = reload(db, customer.id)
        assert customer.conversation_state == ConversationState.MAIN_MENU
        assert customer.conversation_data == {}
        assert messenger.last == messages.main_menu()

    async def test_menu_on_first_contact(self, db, orchestrator, messenger):
        await orchestrator.handle_message(make_message("MENU"))

        customer = db.query(Customer).filter(Customer.phone == CUSTOMER_PHONE).one()
        assert customer.conversation_state == ConversationState.MAIN_MENU
        assert messenger.last == messages.ask_name()

        await orchestrator.handle_message(make_message("Maria Silva"))

        customer = reload(db, customer.id)
        assert customer.name == "Maria Silva"
        assert customer.conversation_state == ConversationState.COLLECTING_TAX_ID

    async def test_unknown_option(self, orchestrator, messenger, make_customer):
        make_customer()

        await orchestrator.handle_message(make_message("9"))

        assert messenger.last == messages.invalid_option()

    async def test_state_change_is_audited_and_versioned(self, db, orchestrator, make_customer):
        customer = make_customer()

        await orchestrator.handle_message(make_message("1"))

        customer = reload(db, customer.id)
        assert customer.state_version == 1
        kinds = [r.kind for r in AuditRepository.list_records(db, customer_id=customer.id)]
        assert AuditKind.CONVERSATION_STATE_CHANGED in kinds


class TestRegistration:
    async def test_first_contact_to_main_menu(self, db, orchestrator, messenger):
        await orchestrator.handle_message(make_message("Oi"))
        customer = db.query(Customer).filter(Customer.phone == CUSTOMER_PHONE).one()
        assert customer.conversation_state == ConversationState.COLLECTING_NAME
        assert messenger.last == messages.welcome()

        await orchestrator.handle_message(make_message("Maria Silva"))
        assert reload(db, customer.id).conversation_state == ConversationState.COLLECTING_TAX_ID

        await orchestrator.handle_message(make_message("123.456.789-00"))
        assert reload(db, customer.id).conversation_state == ConversationState.COLLECTING_TAX_ID
        assert messenger.last == messages.invalid_tax_id()

        await orchestrator.handle_message(make_message("529.982.247-25"))
        assert reload(db, customer.id).conversation_state == ConversationState.COLLECTING_EMAIL

        await orchestrator.handle_message(make_message("pular"))
        customer = reload(db, customer.id)
        assert customer.conversation_state == ConversationState.MAIN_MENU
        assert customer.registration_complete is True
        assert customer.name == "Maria Silva"
        assert customer.tax_id == VALID_CPF
        assert customer.email is None

    async def test_name_with_digits_rejected(self, db, orchestrator, messenger, make_customer):
        make_customer(name=None, tax_id=None, state=ConversationState.COLLECTING_NAME)

        await orchestrator.handle_message(make_message("R2D2"))

        assert messenger.last == messages.invalid_name()

    async def test_invalid_email_reprompts(self, db, orchestrator, messenger, make_customer):
        customer = make_customer(tax_id=VALID_CPF, state=ConversationState.COLLECTING_EMAIL)
        customer.registration_complete = False
        db.commit()

        await orchestrator.handle_message(make_message("not-an-email"))

        assert messenger.last == messages.invalid_email()
        assert reload(db, customer.id).conversation_state == ConversationState.COLLECTING_EMAIL

    async def test_menu_during_registration_asks_missing_field(self, db, orchestrator, messenger, make_customer):
        customer = make_customer(name="Maria Silva", tax_id=None, state=ConversationState.COLLECTING_TAX_ID)

        await orchestrator.handle_message(make_message("MENU"))

        assert reload(db, customer.id).conversation_state == ConversationState.MAIN_MENU
        assert messenger.last == messages.ask_tax_id("Maria Silva")

    async def test_deactivated_customer_ignored(self, orchestrator, messenger, make_customer):
        make_customer(is_active=False)

        result = await orchestrator.handle_message(make_message("1"))

        assert result is None
        assert messenger.sent == []


class TestAppointmentsFromMenu:
    async def test_cancel_with_confirmation(self, db, orchestrator, messenger, calendar, make_customer, make_rule):
        make_rule(start_time="10:00", end_time="12:00")
        customer = make_customer()
        await orchestrator.handle_message(make_message("1"))
        await orchestrator.handle_message(make_message("09/03/2026"))
        await orchestrator.handle_message(make_message("1"))

        await orchestrator.handle_message(make_message("4"))
        assert reload(db, customer.id).conversation_state == ConversationState.CHOOSING_APPOINTMENT

        await orchestrator.handle_message(make_message("1"))
        assert reload(db, customer.id).conversation_state == ConversationState.AWAITING_CONFIRMATION
        assert messenger.buttons, "cancel confirmation is sent with buttons"

        await orchestrator.handle_message(make_message("talvez"))
        assert messenger.last == messages.yes_no_reprompt()

        await orchestrator.handle_message(make_message("Yes, cancel", selection_id="YES"))
        assert reload(db, customer.id).conversation_state == ConversationState.MAIN_MENU
        appointment = db.query(Appointment).one()
        assert appointment.status == AppointmentStatus.CANCELLED
        assert appointment.calendar_event_id in calendar.deleted

    async def test_answering_no_keeps_appointment(self, db, orchestrator, messenger, make_customer, make_appointment):
        customer = make_customer()
        appointment = make_appointment(customer, datetime(2026, 3, 9, 10, 0))
        customer.conversation_state = ConversationState.AWAITING_CONFIRMATION
        customer.conversation_data = {"flow": "cancel", "appointment_id": appointment.id}
        db.commit()

        await orchestrator.handle_message(make_message("não"))

        db.refresh(appointment)
        assert appointment.status == AppointmentStatus.SCHEDULED
        assert messenger.last == messages.cancel_aborted()

    async def test_reschedule_through_chat(self, db, orchestrator, messenger, calendar, make_customer, make_rule, make_appointment):
        make_rule(start_time="10:00", end_time="12:00")
        customer = make_customer()
        old = make_appointment(customer, datetime(2026, 3, 9, 10, 0))

        await orchestrator.handle_message(make_message("3"))
        await orchestrator.handle_message(make_message("1"))
        data = reload(db, customer.id).conversation_data
        assert data == {"flow": "reschedule", "appointment_id": old.id}

        await orchestrator.handle_message(make_message("09/03/2026"))
        await orchestrator.handle_message(make_message("1"))

        db.refresh(old)
        assert old.status == AppointmentStatus.RESCHEDULED
        new = db.query(Appointment).filter(Appointment.id == old.rescheduled_to_id).one()
        assert new.start_at == datetime(2026, 3, 9, 11, 0)
        assert reload(db, customer.id).conversation_state == ConversationState.MAIN_MENU

    async def test_my_appointments_without_any(self, orchestrator, messenger, make_customer):
        make_customer()

        await orchestrator.handle_message(make_message("2"))

        assert messenger.last == messages.no_appointments()

    async def test_ok_confirms_reminded_appointment(self, db, orchestrator, messenger, make_customer, make_appointment):
        customer = make_customer()
        appointment = make_appointment(customer, datetime(2026, 3, 3, 10, 0), reminder_24h_sent=True)

        await orchestrator.handle_message(make_message("ok"))

        db.refresh(appointment)
        assert appointment.status == AppointmentStatus.CONFIRMED
        assert messenger.last == messages.appointment_confirmed(appointment.start_at)


class TestHandoff:
    async def test_handoff_round_trip(self, db, orchestrator, messenger, make_customer):
        customer = make_customer()

        await orchestrator.handle_message(make_message("5"))
        assert reload(db, customer.id).conversation_state == ConversationState.IN_HUMAN_HANDOFF
        handoff = db.query(Handoff).one()
        assert handoff.status == HandoffStatus.WAITING

        # Option numbers mean nothing while an operator owns the conversation
        await orchestrator.handle_message(make_message("1"))
        assert reload(db, customer.id).conversation_state == ConversationState.IN_HUMAN_HANDOFF
        assert messenger.last == messages.handoff_holding()

        await orchestrator.handle_message(make_message("menu"))
        assert reload(db, customer.id).conversation_state == ConversationState.MAIN_MENU
        db.refresh(handoff)
        assert handoff.status == HandoffStatus.FINISHED

    async def test_operator_in_progress_is_silent(self, db, orchestrator, messenger, make_customer):
        make_customer()
        await orchestrator.handle_message(make_message("5"))
        handoff = db.query(Handoff).one()
        HandoffService(db, messenger=messenger).start(handoff.id, "ana")
        sent_before = len(messenger.sent)

        await orchestrator.handle_message(make_message("preciso de ajuda"))

        assert len(messenger.sent) == sent_before

    async def test_operator_finish_returns_customer_to_menu(self, db, orchestrator, messenger, make_customer):
        customer = make_customer()
        await orchestrator.handle_message(make_message("5"))
        handoff = db.query(Handoff).one()
        service = HandoffService(db, messenger=messenger)
        service.start(handoff.id, "ana")

        finished = await service.finish(handoff.id, "Resolved by phone")

        assert finished.status == HandoffStatus.FINISHED
        assert reload(db, customer.id).conversation_state == ConversationState.MAIN_MENU
        assert messenger.last == messages.handoff_finished()


class TestCompareAndSet:
    def test_stale_version_rejected(self, db, make_customer):
        customer = make_customer()

        assert CustomerRepository.compare_and_set_state(db, customer.id, 0, ConversationState.AWAITING_DATE, {})
        db.commit()
        assert not CustomerRepository.compare_and_set_state(db, customer.id, 0, ConversationState.MAIN_MENU, {})
        db.rollback()

        assert reload(db, customer.id).conversation_state == ConversationState.AWAITING_DATE
