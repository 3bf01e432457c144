"""
Appointment reminders sent over WhatsApp.

24h reminder: appointments starting in [now+24h, now+25h), run hourly.
2h reminder: appointments starting in [now+2h, now+3h), run every 30 minutes.
A reminder flag is set once the message goes out, so overlapping runs never
send the same reminder twice.
"""

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from .. import config, messages
from ..domain.audit.repository import AuditRepository
from ..domain.scheduling.repository import AppointmentRepository
from ..exceptions import ExternalServiceError
from ..models import Appointment
from ..models_events import AuditKind
from ..utils import dates
from .whatsapp_service import whatsapp_service

logger = logging.getLogger(__name__)

REMINDER_24H = "24h"
REMINDER_2H = "2h"

REMINDERS = {
    # kind: (lead time, flag column, message builder)
    REMINDER_24H: (timedelta(hours=24), Appointment.reminder_24h_sent, messages.reminder_24h),
    REMINDER_2H: (timedelta(hours=2), Appointment.reminder_2h_sent, messages.reminder_2h),
}


def _enabled(kind: str) -> bool:
    if kind == REMINDER_24H:
        return config.REMINDER_24H_ENABLED
    return config.REMINDER_2H_ENABLED


async def send_reminders(db: Session, kind: str, messenger=None) -> dict:
    """
    Send one kind of reminder to every live appointment in its window.

    Returns:
        dict: sent / failed counts
    """
    summary = {"kind": kind, "sent": 0, "failed": 0}
    if not _enabled(kind):
        logger.info(f"ℹ️ {kind} reminders disabled")
        return summary

    messenger = messenger or whatsapp_service
    lead_time, flag_column, build_message = REMINDERS[kind]
    window_start = dates.local_now() + lead_time
    window_end = window_start + timedelta(hours=1)

    appointments = AppointmentRepository.get_due_for_reminder(db, window_start, window_end, flag_column)
    logger.info(f"🔄 {len(appointments)} appointments due for the {kind} reminder")

    for appointment in appointments:
        phone = appointment.customer.phone
        try:
            await messenger.send_text(phone, build_message(appointment.start_at))
        except ExternalServiceError as e:
            summary["failed"] += 1
            logger.error(f"❌ {kind} reminder for appointment {appointment.id} failed: {e}")
            continue

        setattr(appointment, flag_column.key, True)
        AuditRepository.record(
            db,
            AuditKind.REMINDER_SENT,
            customer_id=appointment.customer_id,
            appointment_id=appointment.id,
            details={"kind": kind, "start_at": appointment.start_at.isoformat()},
        )
        db.commit()
        summary["sent"] += 1
        logger.info(f"📤 {kind} reminder sent for appointment {appointment.id}")

    return summary


async def send_24h_reminders(db: Session, messenger=None) -> dict:
    return await send_reminders(db, REMINDER_24H, messenger)


async def send_2h_reminders(db: Session, messenger=None) -> dict:
    return await send_reminders(db, REMINDER_2H, messenger)
