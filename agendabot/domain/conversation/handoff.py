"""
Human handoff - suspends automated routing while an operator attends the customer
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ... import messages
from ...exceptions import ExternalServiceError, InvalidTransition, NotFoundError, StaleConversationState
from ...models import ConversationState, Customer, Handoff, HandoffReason, HandoffStatus
from ...models_events import AuditKind
from ...services.whatsapp_service import whatsapp_service
from ...utils import dates
from ..audit.repository import AuditRepository, snapshot
from ..customers.repository import CustomerRepository
from .base import FlowContext, FlowResult

logger = logging.getLogger(__name__)

HANDOFF_FIELDS = ["id", "customer_id", "reason", "status", "operator", "resolution"]
EXIT_COMMAND = "MENU"


class HandoffService:
    """Handoff records and the operator side of the handoff lifecycle"""

    def __init__(self, db: Session, messenger=None):
        self.db = db
        self.messenger = messenger or whatsapp_service

    def get_handoff(self, handoff_id: int) -> Handoff:
        handoff = self.db.query(Handoff).filter(Handoff.id == handoff_id).first()
        if not handoff:
            raise NotFoundError(f"Handoff {handoff_id} not found")
        return handoff

    def get_active(self, customer_id: int) -> Optional[Handoff]:
        return (
            self.db.query(Handoff)
            .filter(
                Handoff.customer_id == customer_id,
                Handoff.status.in_([HandoffStatus.WAITING, HandoffStatus.IN_PROGRESS]),
            )
            .order_by(Handoff.id.desc())
            .first()
        )

    def list_by_status(self, status: str) -> list[Handoff]:
        return self.db.query(Handoff).filter(Handoff.status == status).order_by(Handoff.created_at, Handoff.id).all()

    def open(
        self, customer: Customer, reason: str = HandoffReason.CUSTOMER_REQUEST, summary: Optional[str] = None
    ) -> Handoff:
        """Open (or reuse) the customer's waiting handoff; committed with the conversation state"""
        existing = self.get_active(customer.id)
        if existing:
            return existing

        handoff = Handoff(
            customer_id=customer.id,
            reason=reason if reason in HandoffReason.ALL else HandoffReason.OTHER,
            status=HandoffStatus.WAITING,
            summary=summary,
        )
        self.db.add(handoff)
        self.db.flush()
        AuditRepository.record(
            self.db,
            AuditKind.HANDOFF_STARTED,
            customer_id=customer.id,
            after=snapshot(handoff, HANDOFF_FIELDS),
        )
        logger.info(f"👤 Handoff {handoff.id} opened for customer {customer.id}")
        return handoff

    def start(self, handoff_id: int, operator: str) -> Handoff:
        """Operator picks up a waiting handoff"""
        handoff = self.get_handoff(handoff_id)
        if handoff.status != HandoffStatus.WAITING:
            raise InvalidTransition(f"Handoff {handoff.id} is {handoff.status}")

        before = snapshot(handoff, HANDOFF_FIELDS)
        handoff.status = HandoffStatus.IN_PROGRESS
        handoff.operator = operator
        handoff.started_at = dates.local_now()
        AuditRepository.record(
            self.db,
            AuditKind.HANDOFF_ASSIGNED,
            customer_id=handoff.customer_id,
            before=before,
            after=snapshot(handoff, HANDOFF_FIELDS),
        )
        self.db.commit()
        self.db.refresh(handoff)
        logger.info(f"👤 Handoff {handoff.id} started by {operator}")
        return handoff

    def _close(self, handoff: Handoff, resolution: str) -> None:
        before = snapshot(handoff, HANDOFF_FIELDS)
        handoff.status = HandoffStatus.FINISHED
        handoff.resolution = resolution
        handoff.finished_at = dates.local_now()
        AuditRepository.record(
            self.db,
            AuditKind.HANDOFF_FINISHED,
            customer_id=handoff.customer_id,
            before=before,
            after=snapshot(handoff, HANDOFF_FIELDS),
        )

    def finish_by_customer(self, customer: Customer) -> None:
        """Customer typed MENU; committed with the conversation state"""
        handoff = self.get_active(customer.id)
        if handoff:
            self._close(handoff, "Finished by customer")
            logger.info(f"👤 Handoff {handoff.id} finished by customer {customer.id}")

    async def finish(self, handoff_id: int, resolution: str) -> Handoff:
        """
        Operator finishes the handoff: the customer goes back to the main menu
        and is told so.

        Raises:
            StaleConversationState: The customer's conversation moved meanwhile
        """
        handoff = self.get_handoff(handoff_id)
        if handoff.status == HandoffStatus.FINISHED:
            raise InvalidTransition(f"Handoff {handoff.id} is already finished")

        customer = handoff.customer
        self._close(handoff, resolution)

        if customer.conversation_state == ConversationState.IN_HUMAN_HANDOFF:
            if not CustomerRepository.compare_and_set_state(
                self.db, customer.id, customer.state_version, ConversationState.MAIN_MENU, {}
            ):
                self.db.rollback()
                raise StaleConversationState(f"Customer {customer.id} conversation changed, retry")
            AuditRepository.record(
                self.db,
                AuditKind.CONVERSATION_STATE_CHANGED,
                customer_id=customer.id,
                before={"state": ConversationState.IN_HUMAN_HANDOFF},
                after={"state": ConversationState.MAIN_MENU},
                details={"origin": "operator"},
            )
        self.db.commit()
        self.db.refresh(handoff)
        logger.info(f"👤 Handoff {handoff.id} finished by operator")

        try:
            await self.messenger.send_text(customer.phone, messages.handoff_finished())
        except ExternalServiceError as e:
            logger.error(f"❌ Handoff end notice not delivered to customer {customer.id}: {e}")
        return handoff


class HandoffFlow:
    """Conversation side: only the literal MENU leaves the handoff"""

    def __init__(self, handoffs: HandoffService):
        self.handoffs = handoffs

    async def handle_message(self, ctx: FlowContext) -> FlowResult:
        if ctx.text.strip().upper() == EXIT_COMMAND:
            self.handoffs.finish_by_customer(ctx.customer)
            return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.main_menu())

        handoff = self.handoffs.get_active(ctx.customer.id)
        if handoff is None:
            # Operator side lost track of it; reopen so the message is not dropped
            self.handoffs.open(ctx.customer, summary=ctx.text)
            return FlowResult.stay(ctx, messages.handoff_holding())
        if handoff.status == HandoffStatus.WAITING:
            return FlowResult.stay(ctx, messages.handoff_holding())
        # An operator is talking to the customer; nothing automated to say
        return FlowResult.stay(ctx)
