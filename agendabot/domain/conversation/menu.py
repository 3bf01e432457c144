"""Main menu routing"""

import logging

from ... import messages
from ...models import AppointmentStatus, ConversationState
from ..scheduling.service import SchedulingService
from .base import CONFIRM_ANSWERS, FlowContext, FlowResult
from .handoff import HandoffService

logger = logging.getLogger(__name__)

BOOK = "1"
MY_APPOINTMENTS = "2"
RESCHEDULE = "3"
CANCEL = "4"
ATTENDANT = "5"


class MainMenuFlow:
    def __init__(self, scheduling: SchedulingService, handoffs: HandoffService):
        self.scheduling = scheduling
        self.handoffs = handoffs
        self.options = {
            BOOK: self.start_booking,
            MY_APPOINTMENTS: self.list_appointments,
            RESCHEDULE: self.start_reschedule,
            CANCEL: self.start_cancel,
            ATTENDANT: self.start_handoff,
        }

    async def handle(self, ctx: FlowContext) -> FlowResult:
        option = self.options.get(ctx.text)
        if option:
            return await option(ctx)
        if ctx.command in CONFIRM_ANSWERS:
            confirmed = await self.confirm_next(ctx)
            if confirmed:
                return confirmed
        return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.invalid_option())

    async def start_booking(self, ctx: FlowContext) -> FlowResult:
        return FlowResult.to(ConversationState.AWAITING_DATE, {"flow": "booking"}, messages.ask_date())

    async def list_appointments(self, ctx: FlowContext) -> FlowResult:
        upcoming = self.scheduling.list_upcoming(ctx.customer.id)
        if not upcoming:
            return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.no_appointments())
        return FlowResult.to(
            ConversationState.MAIN_MENU, {}, messages.my_appointments([a.start_at for a in upcoming])
        )

    async def _choose_appointment(self, ctx: FlowContext, flow: str, action: str) -> FlowResult:
        upcoming = self.scheduling.list_upcoming(ctx.customer.id)
        if not upcoming:
            return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.no_appointments())
        return FlowResult.to(
            ConversationState.CHOOSING_APPOINTMENT,
            {"flow": flow, "appointment_ids": [a.id for a in upcoming]},
            messages.choose_appointment([a.start_at for a in upcoming], action),
        )

    async def start_reschedule(self, ctx: FlowContext) -> FlowResult:
        return await self._choose_appointment(ctx, "reschedule", "reschedule")

    async def start_cancel(self, ctx: FlowContext) -> FlowResult:
        return await self._choose_appointment(ctx, "cancel", "cancel")

    async def start_handoff(self, ctx: FlowContext) -> FlowResult:
        self.handoffs.open(ctx.customer, summary=ctx.text)
        return FlowResult.to(ConversationState.IN_HUMAN_HANDOFF, {}, messages.handoff_started())

    async def confirm_next(self, ctx: FlowContext):
        """Reply OK to a 24h reminder confirms the nearest reminded appointment"""
        for appointment in self.scheduling.list_upcoming(ctx.customer.id):
            if appointment.status == AppointmentStatus.SCHEDULED and appointment.reminder_24h_sent:
                self.scheduling.confirm(appointment.id)
                return FlowResult.to(
                    ConversationState.MAIN_MENU, {}, messages.appointment_confirmed(appointment.start_at)
                )
        return None
