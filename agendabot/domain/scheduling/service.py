"""
Scheduling service - slot computation against the live calendar and the
appointment lifecycle.

Booking is check-then-act: the slot is re-validated against the calendar right
before commit, and the partial unique index on live appointment start times is
the backstop when two customers race for the same slot.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import DEFAULT_PRICE, DEFAULT_SLOT_DURATION, MAX_LISTED_APPOINTMENTS
from ...exceptions import (
    CannotCancelCompleted,
    ExternalServiceError,
    InvalidTransition,
    NotFoundError,
    SlotTaken,
    ValidationError,
)
from ...models import Appointment, AppointmentStatus, Customer
from ...models_events import AuditKind
from ...services.google_calendar_service import google_calendar_service
from ...utils import dates
from ...shared.locks import KeyedLocks
from ..audit.repository import AuditRepository, snapshot
from .availability_service import AvailabilityService, SlotCandidate
from .repository import AppointmentRepository

logger = logging.getLogger(__name__)

APPOINTMENT_FIELDS = ["id", "customer_id", "start_at", "end_at", "status", "payment_status", "calendar_event_id"]

# Serializes booking attempts for the same start time within this process
_slot_locks = KeyedLocks()


class SchedulingService:
    """Service for slot computation and appointment operations"""

    def __init__(self, db: Session, calendar=None):
        self.db = db
        self.calendar = calendar or google_calendar_service
        self.repo = AppointmentRepository()
        self.availability = AvailabilityService(db)

    # ========================================================================
    # SLOTS
    # ========================================================================

    async def _busy_windows(self, day: date) -> list[tuple[datetime, datetime]]:
        """Calendar busy windows plus live local appointments for the date"""
        busy = list(await self.calendar.busy_windows(day))
        day_start = datetime(day.year, day.month, day.day)
        for appointment in self.repo.get_active_between(self.db, day_start, day_start + timedelta(days=1)):
            busy.append((appointment.start_at, appointment.end_at))
        return busy

    @staticmethod
    def _is_free(start: datetime, end: datetime, busy: list[tuple[datetime, datetime]]) -> bool:
        return not any(dates.overlaps(start, end, busy_start, busy_end) for busy_start, busy_end in busy)

    async def _free_candidates(
        self, day: date, busy: Optional[list[tuple[datetime, datetime]]] = None
    ) -> list[SlotCandidate]:
        candidates = self.availability.slots_for_weekday(day.weekday())
        if not candidates:
            return []

        if busy is None:
            busy = await self._busy_windows(day)

        now = dates.local_now()
        free = []
        for slot in candidates:
            slot_start = dates.at_time(day, slot.start)
            if slot_start <= now:
                continue
            if not self._is_free(slot_start, dates.at_time(day, slot.end), busy):
                continue
            free.append(slot)
        return free

    async def available_slots(self, day: date) -> list[str]:
        """Free "HH:MM" slots for the date, empty when no rule is active that weekday"""
        return [slot.label for slot in await self._free_candidates(day)]

    # ========================================================================
    # BOOKING
    # ========================================================================

    def _get_customer(self, customer_id: int) -> Customer:
        customer = self.db.query(Customer).filter(Customer.id == customer_id).first()
        if not customer:
            raise NotFoundError(f"Customer {customer_id} not found")
        return customer

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    async def book(
        self,
        customer_id: int,
        day: date,
        time_of_day: str,
        duration: Optional[int] = None,
        replaces: Optional[Appointment] = None,
    ) -> Appointment:
        """
        Book a slot for a customer.

        Order: re-validate the slot, create the calendar event, persist the
        appointment. When `replaces` is given, the old appointment is marked
        RESCHEDULED in the same transaction that persists the new one.

        Raises:
            SlotTaken: The slot is no longer free
            ValidationError: Malformed time, or a duration running past the rule end
        """
        customer = self._get_customer(customer_id)
        try:
            start_minutes = dates.parse_time_of_day(time_of_day)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        start_at = dates.at_time(day, start_minutes)
        date_str = dates.format_br_date(day)

        async with _slot_locks.hold(start_at):
            busy = await self._busy_windows(day)
            free = {slot.start: slot for slot in await self._free_candidates(day, busy)}
            slot = free.get(start_minutes)
            if slot is None:
                logger.info(f"⚠️ Slot {date_str} {time_of_day} no longer free for customer {customer_id}")
                raise SlotTaken(date_str, time_of_day)

            duration = duration or slot.duration or DEFAULT_SLOT_DURATION
            if duration <= 0 or start_minutes + duration > slot.rule_end:
                raise ValidationError(
                    f"A {duration} minute appointment at {time_of_day} does not fit the working hours"
                )
            end_at = start_at + timedelta(minutes=duration)
            if not self._is_free(start_at, end_at, busy):
                logger.info(f"⚠️ {duration} min from {date_str} {time_of_day} overlaps a busy window")
                raise SlotTaken(date_str, time_of_day)
            price = replaces.price if replaces else (customer.price or DEFAULT_PRICE)

            event_id = await self.calendar.create_event(
                summary=f"Appointment - {customer.name or customer.phone}",
                start=start_at,
                end=end_at,
                description=f"Customer: {customer.name or '-'}\nPhone: {customer.phone}",
            )

            try:
                appointment = self.repo.add_appointment(
                    self.db,
                    customer_id=customer.id,
                    start_at=start_at,
                    end_at=end_at,
                    duration_minutes=duration,
                    status=AppointmentStatus.SCHEDULED,
                    calendar_event_id=event_id,
                    price=price,
                )
                AuditRepository.record(
                    self.db,
                    AuditKind.APPOINTMENT_SCHEDULED,
                    customer_id=customer.id,
                    appointment_id=appointment.id,
                    after=snapshot(appointment, APPOINTMENT_FIELDS),
                )
                if replaces is not None:
                    self._mark_rescheduled(replaces, appointment)
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                self._record_orphaned_event(customer.id, event_id, start_at, str(e.orig))
                raise SlotTaken(date_str, time_of_day) from e
            except SQLAlchemyError as e:
                self.db.rollback()
                self._record_orphaned_event(customer.id, event_id, start_at, str(e))
                raise

        self.db.refresh(appointment)
        logger.info(f"✅ Appointment {appointment.id} booked for customer {customer.id} at {start_at}")
        return appointment

    def _record_orphaned_event(self, customer_id: int, event_id: str, start_at: datetime, error: str) -> None:
        """Calendar event exists without a local appointment; left for manual reconciliation"""
        logger.error(
            f"❌ Calendar event {event_id} orphaned: appointment persistence failed for customer "
            f"{customer_id} at {start_at}: {error}"
        )
        try:
            AuditRepository.record(
                self.db,
                AuditKind.CALENDAR_EVENT_ORPHANED,
                customer_id=customer_id,
                details={"calendar_event_id": event_id, "start_at": start_at.isoformat(), "error": error[:500]},
            )
            self.db.commit()
        except SQLAlchemyError as audit_error:
            self.db.rollback()
            logger.error(f"❌ Could not record orphaned calendar event {event_id}: {audit_error}")

    def _mark_rescheduled(self, old: Appointment, new: Appointment) -> None:
        before = snapshot(old, APPOINTMENT_FIELDS)
        old.status = AppointmentStatus.RESCHEDULED
        old.rescheduled_to_id = new.id
        AuditRepository.record(
            self.db,
            AuditKind.APPOINTMENT_RESCHEDULED,
            customer_id=old.customer_id,
            appointment_id=old.id,
            before=before,
            after=snapshot(old, APPOINTMENT_FIELDS),
            details={"new_appointment_id": new.id},
        )

    async def _delete_calendar_event(self, appointment: Appointment) -> None:
        """Best effort; a failure is logged and audited, never raised"""
        if not appointment.calendar_event_id:
            return
        try:
            await self.calendar.delete_event(appointment.calendar_event_id)
        except ExternalServiceError as e:
            logger.warning(
                f"⚠️ Could not delete calendar event {appointment.calendar_event_id} "
                f"for appointment {appointment.id}: {e}"
            )
            AuditRepository.record(
                self.db,
                AuditKind.CALENDAR_DELETE_FAILED,
                customer_id=appointment.customer_id,
                appointment_id=appointment.id,
                details={"calendar_event_id": appointment.calendar_event_id, "error": str(e)[:500]},
            )
            self.db.commit()

    def _ensure_active(self, appointment: Appointment) -> None:
        if appointment.status not in AppointmentStatus.ACTIVE:
            raise InvalidTransition(f"Appointment {appointment.id} is {appointment.status}")

    async def reschedule(self, appointment_id: int, new_day: date, new_time_of_day: str) -> Appointment:
        """
        Move an appointment: book the new slot (old one marked RESCHEDULED
        atomically with the new row), then delete the old calendar event.
        """
        old = self.get_appointment(appointment_id)
        self._ensure_active(old)

        new = await self.book(old.customer_id, new_day, new_time_of_day, replaces=old)
        await self._delete_calendar_event(old)
        logger.info(f"✅ Appointment {old.id} rescheduled to {new.id} ({new.start_at})")
        return new

    async def cancel(self, appointment_id: int, reason: str) -> Appointment:
        appointment = self.get_appointment(appointment_id)
        if appointment.status == AppointmentStatus.COMPLETED:
            raise CannotCancelCompleted(f"Appointment {appointment.id} is already completed")
        self._ensure_active(appointment)

        before = snapshot(appointment, APPOINTMENT_FIELDS)
        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancel_reason = reason
        appointment.cancelled_at = dates.local_now()
        AuditRepository.record(
            self.db,
            AuditKind.APPOINTMENT_CANCELLED,
            customer_id=appointment.customer_id,
            appointment_id=appointment.id,
            before=before,
            after=snapshot(appointment, APPOINTMENT_FIELDS),
            details={"reason": reason},
        )
        self.db.commit()

        await self._delete_calendar_event(appointment)
        logger.info(f"✅ Appointment {appointment.id} cancelled: {reason}")
        return appointment

    # ========================================================================
    # STATUS TRANSITIONS
    # ========================================================================

    def _transition(self, appointment_id: int, allowed_from: set, new_status: str, kind: str) -> Appointment:
        appointment = self.get_appointment(appointment_id)
        if appointment.status not in allowed_from:
            raise InvalidTransition(
                f"Appointment {appointment.id} cannot go from {appointment.status} to {new_status}"
            )

        before = snapshot(appointment, APPOINTMENT_FIELDS)
        appointment.status = new_status
        now = dates.local_now()
        if new_status == AppointmentStatus.CONFIRMED:
            appointment.confirmed_at = now
        elif new_status == AppointmentStatus.COMPLETED:
            appointment.completed_at = now
        AuditRepository.record(
            self.db,
            kind,
            customer_id=appointment.customer_id,
            appointment_id=appointment.id,
            before=before,
            after=snapshot(appointment, APPOINTMENT_FIELDS),
        )
        self.db.commit()
        self.db.refresh(appointment)
        logger.info(f"✅ Appointment {appointment.id}: {before['status']} → {new_status}")
        return appointment

    def confirm(self, appointment_id: int) -> Appointment:
        return self._transition(
            appointment_id, {AppointmentStatus.SCHEDULED}, AppointmentStatus.CONFIRMED, AuditKind.APPOINTMENT_CONFIRMED
        )

    def complete(self, appointment_id: int) -> Appointment:
        return self._transition(
            appointment_id, AppointmentStatus.ACTIVE, AppointmentStatus.COMPLETED, AuditKind.APPOINTMENT_COMPLETED
        )

    def mark_no_show(self, appointment_id: int) -> Appointment:
        return self._transition(
            appointment_id, AppointmentStatus.ACTIVE, AppointmentStatus.NO_SHOW, AuditKind.APPOINTMENT_NO_SHOW
        )

    # ========================================================================
    # QUERIES
    # ========================================================================

    def list_upcoming(self, customer_id: int, limit: int = MAX_LISTED_APPOINTMENTS) -> list[Appointment]:
        return self.repo.get_upcoming_for_customer(self.db, customer_id, dates.local_now(), limit)

    def list_appointments(self, **filters) -> list[Appointment]:
        return self.repo.get_appointments(self.db, **filters)
