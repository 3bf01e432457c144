"""Appointment choice for reschedule/cancel, and the cancel confirmation"""

import logging

from ... import messages
from ...exceptions import InvariantViolation, NotFoundError
from ...models import AppointmentStatus, ConversationState
from ..scheduling.service import SchedulingService
from .base import NO_ANSWERS, YES_ANSWERS, FlowContext, FlowResult, Reply, parse_choice
from .booking import FLOW_RESCHEDULE

logger = logging.getLogger(__name__)

FLOW_CANCEL = "cancel"
CANCEL_REASON = "Cancelled by customer via chat"
CONFIRM_BUTTONS = [{"id": "YES", "title": "Yes, cancel"}, {"id": "NO", "title": "No, keep it"}]


class AppointmentChoiceFlow:
    def __init__(self, scheduling: SchedulingService):
        self.scheduling = scheduling

    def _active_appointment(self, appointment_id):
        try:
            appointment = self.scheduling.get_appointment(appointment_id)
        except NotFoundError:
            return None
        return appointment if appointment.status in AppointmentStatus.ACTIVE else None

    async def handle_choice(self, ctx: FlowContext) -> FlowResult:
        ids = ctx.data.get("appointment_ids") or []
        flow = ctx.data.get("flow")
        if not ids or flow not in (FLOW_RESCHEDULE, FLOW_CANCEL):
            return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.main_menu())

        index = parse_choice(ctx.text, len(ids))
        if index is None:
            return FlowResult.stay(ctx, messages.invalid_appointment_choice())

        appointment = self._active_appointment(ids[index])
        if appointment is None:
            return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.appointment_unavailable())

        if flow == FLOW_RESCHEDULE:
            return FlowResult.to(
                ConversationState.AWAITING_DATE,
                {"flow": FLOW_RESCHEDULE, "appointment_id": appointment.id},
                messages.reschedule_ask_date(appointment.start_at),
            )
        return FlowResult(
            ConversationState.AWAITING_CONFIRMATION,
            {"flow": FLOW_CANCEL, "appointment_id": appointment.id},
            [Reply(messages.confirm_cancel(appointment.start_at), buttons=CONFIRM_BUTTONS)],
        )

    async def handle_cancel_confirmation(self, ctx: FlowContext) -> FlowResult:
        answer = ctx.command
        if answer in NO_ANSWERS:
            return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.cancel_aborted())
        if answer not in YES_ANSWERS:
            return FlowResult.stay(ctx, messages.yes_no_reprompt())

        appointment_id = ctx.data.get("appointment_id")
        try:
            appointment = await self.scheduling.cancel(appointment_id, CANCEL_REASON)
        except (InvariantViolation, NotFoundError):
            return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.appointment_unavailable())
        return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.cancel_done(appointment.start_at))
