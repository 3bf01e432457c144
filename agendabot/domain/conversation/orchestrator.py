"""
Conversation orchestrator.

Each inbound message runs one flow step for its customer:

    load customer -> route (dispatch table keyed by state) -> persist the next
    state with a compare-and-set on state_version -> deliver replies

Messages from the same phone are serialized in-process, and the
compare-and-set rejects a step computed from a state another worker already
moved on from.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ... import messages
from ...exceptions import ExternalServiceError, StaleConversationState
from ...models import ConversationState, Customer
from ...models_events import AuditKind
from ...services.whatsapp_service import whatsapp_service
from ...shared.locks import KeyedLocks
from ...utils import dates
from ..audit.repository import AuditRepository
from ..customers.repository import CustomerRepository
from ..customers.service import CustomerService
from ..ingestion.schemas import NormalizedMessage
from ..scheduling.service import SchedulingService
from .appointments import AppointmentChoiceFlow
from .base import MENU_COMMANDS, FlowContext, FlowResult, Reply
from .booking import SlotSelectionFlow
from .handoff import HandoffFlow, HandoffService
from .menu import MainMenuFlow
from .registration import RegistrationFlow

logger = logging.getLogger(__name__)

_customer_locks = KeyedLocks()


class ConversationOrchestrator:
    def __init__(self, db: Session, messenger=None, calendar=None):
        self.db = db
        self.messenger = messenger or whatsapp_service
        self.customers = CustomerService(db)
        self.scheduling = SchedulingService(db, calendar=calendar)
        self.handoffs = HandoffService(db, messenger=self.messenger)

        self.registration = RegistrationFlow(db)
        menu = MainMenuFlow(self.scheduling, self.handoffs)
        slots = SlotSelectionFlow(self.scheduling)
        choices = AppointmentChoiceFlow(self.scheduling)
        handoff = HandoffFlow(self.handoffs)

        # Every ConversationState has exactly one handler
        self.handlers = {
            ConversationState.NEW: self.registration.start,
            ConversationState.COLLECTING_NAME: self.registration.handle_name,
            ConversationState.COLLECTING_TAX_ID: self.registration.handle_tax_id,
            ConversationState.COLLECTING_EMAIL: self.registration.handle_email,
            ConversationState.MAIN_MENU: menu.handle,
            ConversationState.AWAITING_DATE: slots.handle_date,
            ConversationState.AWAITING_SLOT_CHOICE: slots.handle_slot_choice,
            ConversationState.CHOOSING_APPOINTMENT: choices.handle_choice,
            ConversationState.AWAITING_CONFIRMATION: choices.handle_cancel_confirmation,
            ConversationState.IN_HUMAN_HANDOFF: handoff.handle_message,
        }

    async def handle_message(self, message: NormalizedMessage) -> Optional[FlowResult]:
        """
        Run one flow step for an inbound message.

        A failing flow step leaves the customer's state untouched and answers
        with a generic error. Only delivery of that error message, or losing
        the compare-and-set, propagates to the caller.
        """
        async with _customer_locks.hold(message.customer_phone):
            customer, _created = self.customers.get_or_create_by_phone(message.customer_phone)
            if not customer.is_active:
                logger.info(f"ℹ️ Ignoring message from deactivated customer {customer.id}")
                return None

            customer_id = customer.id
            version = customer.state_version
            ctx = FlowContext(
                customer=customer,
                message=message,
                state=customer.conversation_state,
                data=dict(customer.conversation_data or {}),
            )
            logger.info(f"📨 Customer {customer_id} [{ctx.state}]: {message.message_type}")

            try:
                result = await self.route(ctx)
            except Exception as e:
                self.db.rollback()
                logger.error(f"❌ Flow step {ctx.state} failed for customer {customer_id}: {e}")
                self._record_failure(customer_id, ctx.state, e)
                await self.messenger.send_text(message.customer_phone, messages.GENERIC_ERROR)
                return None

            self._persist(customer, version, ctx.state, result)

            for reply in result.replies:
                await self._deliver(message.customer_phone, reply)
        return result

    async def route(self, ctx: FlowContext) -> FlowResult:
        """Pick the handler for the message; global commands first"""
        customer: Customer = ctx.customer

        # An operator owns the conversation; only the literal MENU leaves it
        if ctx.state == ConversationState.IN_HUMAN_HANDOFF:
            return await self.handlers[ConversationState.IN_HUMAN_HANDOFF](ctx)

        if ctx.command in MENU_COMMANDS:
            if not customer.registration_complete:
                return FlowResult.to(
                    ConversationState.MAIN_MENU, {}, self.registration.prompt_for_missing(customer)
                )
            return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.main_menu())

        if ctx.state == ConversationState.NEW:
            return await self.handlers[ConversationState.NEW](ctx)

        if not customer.registration_complete:
            if ctx.state in ConversationState.REGISTRATION:
                return await self.handlers[ctx.state](ctx)
            return await self.registration.answer_missing(ctx)

        if ctx.state in ConversationState.REGISTRATION:
            return await self.handlers[ConversationState.MAIN_MENU](ctx)

        handler = self.handlers.get(ctx.state, self.handlers[ConversationState.MAIN_MENU])
        return await handler(ctx)

    def _persist(self, customer: Customer, version: int, previous_state: str, result: FlowResult) -> None:
        if not CustomerRepository.compare_and_set_state(
            self.db, customer.id, version, result.state, result.data
        ):
            self.db.rollback()
            raise StaleConversationState(
                f"Customer {customer.id} conversation advanced past version {version}"
            )

        if result.state != previous_state:
            AuditRepository.record(
                self.db,
                AuditKind.CONVERSATION_STATE_CHANGED,
                customer_id=customer.id,
                before={"state": previous_state},
                after={"state": result.state},
            )
        customer.last_message_at = dates.local_now()
        self.db.commit()

    def _record_failure(self, customer_id: int, state: str, error: Exception) -> None:
        AuditRepository.record(
            self.db,
            AuditKind.FLOW_STEP_FAILED,
            customer_id=customer_id,
            details={"state": state, "error": f"{type(error).__name__}: {error}"[:500]},
        )
        self.db.commit()

    async def _deliver(self, phone: str, reply: Reply) -> None:
        """State is already committed; a failed send is logged, not retried"""
        try:
            if reply.buttons:
                await self.messenger.send_buttons(phone, reply.body, reply.buttons)
            else:
                await self.messenger.send_text(phone, reply.body)
        except ExternalServiceError as e:
            logger.error(f"❌ Reply to {phone} not delivered: {e}")
