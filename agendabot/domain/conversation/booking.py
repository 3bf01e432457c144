"""
Date and slot selection, shared by the booking and reschedule flows.

The scratch-pad carries {"flow", "date", "slots"} plus "appointment_id" when
rescheduling.
"""

import logging
from datetime import date

from ... import messages
from ...exceptions import InvariantViolation, NotFoundError, SlotTaken
from ...models import ConversationState
from ...utils import dates
from ..scheduling.service import SchedulingService
from .base import FlowContext, FlowResult, Reply, parse_choice

logger = logging.getLogger(__name__)

FLOW_BOOKING = "booking"
FLOW_RESCHEDULE = "reschedule"


class SlotSelectionFlow:
    def __init__(self, scheduling: SchedulingService):
        self.scheduling = scheduling

    async def handle_date(self, ctx: FlowContext) -> FlowResult:
        try:
            day = dates.parse_br_date(ctx.text)
        except ValueError:
            return FlowResult.stay(ctx, messages.invalid_date())

        if day < dates.local_today():
            return FlowResult.stay(ctx, messages.past_date())

        date_str = dates.format_br_date(day)
        slots = await self.scheduling.available_slots(day)
        if not slots:
            return FlowResult.stay(ctx, messages.no_slots(date_str))

        data = {**ctx.data, "date": day.isoformat(), "slots": slots}
        return FlowResult.to(ConversationState.AWAITING_SLOT_CHOICE, data, messages.slot_list(date_str, slots))

    def _pick_slot(self, ctx: FlowContext, slots: list[str]):
        index = parse_choice(ctx.text, len(slots))
        if index is not None:
            return slots[index]
        if ctx.text in slots:
            return ctx.text
        return None

    async def handle_slot_choice(self, ctx: FlowContext) -> FlowResult:
        slots = ctx.data.get("slots") or []
        day_iso = ctx.data.get("date")
        if not slots or not day_iso:
            # Scratch-pad lost its date; ask again while keeping the flow
            data = {k: v for k, v in ctx.data.items() if k not in ("date", "slots")}
            return FlowResult.to(ConversationState.AWAITING_DATE, data, messages.ask_date())

        slot = self._pick_slot(ctx, slots)
        if slot is None:
            return FlowResult.stay(ctx, messages.invalid_slot_choice())

        day = date.fromisoformat(day_iso)
        try:
            if ctx.data.get("flow") == FLOW_RESCHEDULE:
                return await self._reschedule(ctx, day, slot)
            return await self._book(ctx, day, slot)
        except SlotTaken:
            return await self._offer_remaining(ctx, day)

    async def _book(self, ctx: FlowContext, day: date, slot: str) -> FlowResult:
        appointment = await self.scheduling.book(ctx.customer.id, day, slot)
        return FlowResult.to(
            ConversationState.MAIN_MENU, {}, messages.booking_confirmed(appointment.start_at, appointment.price)
        )

    async def _reschedule(self, ctx: FlowContext, day: date, slot: str) -> FlowResult:
        appointment_id = ctx.data.get("appointment_id")
        try:
            old = self.scheduling.get_appointment(appointment_id)
            old_start = old.start_at
            new = await self.scheduling.reschedule(appointment_id, day, slot)
        except (InvariantViolation, NotFoundError):
            return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.appointment_unavailable())
        return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.reschedule_done(old_start, new.start_at))

    async def _offer_remaining(self, ctx: FlowContext, day: date) -> FlowResult:
        """Slot lost to someone else: show what is left, or ask for another date"""
        date_str = dates.format_br_date(day)
        slots = await self.scheduling.available_slots(day)
        if not slots:
            data = {k: v for k, v in ctx.data.items() if k not in ("date", "slots")}
            return FlowResult.to(ConversationState.AWAITING_DATE, data, messages.no_slots(date_str))

        data = {**ctx.data, "slots": slots}
        return FlowResult(
            ConversationState.AWAITING_SLOT_CHOICE,
            data,
            [Reply(messages.slot_taken()), Reply(messages.slot_list(date_str, slots))],
        )
