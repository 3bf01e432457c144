"""Scheduling repository - Database operations for availability rules and appointments"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Appointment, AppointmentStatus, AvailabilityRule, PaymentStatus


class AvailabilityRepository:
    """Repository for availability rule database operations"""

    @staticmethod
    def get_rules(db: Session, active_only: bool = False) -> list[AvailabilityRule]:
        query = db.query(AvailabilityRule)
        if active_only:
            query = query.filter(AvailabilityRule.is_active.is_(True))
        return query.order_by(AvailabilityRule.day_of_week, AvailabilityRule.start_time).all()

    @staticmethod
    def get_rules_for_day(db: Session, day_of_week: int, active_only: bool = True) -> list[AvailabilityRule]:
        query = db.query(AvailabilityRule).filter(AvailabilityRule.day_of_week == day_of_week)
        if active_only:
            query = query.filter(AvailabilityRule.is_active.is_(True))
        return query.order_by(AvailabilityRule.start_time).all()

    @staticmethod
    def get_rule(db: Session, rule_id: int) -> Optional[AvailabilityRule]:
        return db.query(AvailabilityRule).filter(AvailabilityRule.id == rule_id).first()

    @staticmethod
    def add_rule(db: Session, **rule_data) -> AvailabilityRule:
        rule = AvailabilityRule(**rule_data)
        db.add(rule)
        db.flush()
        return rule

    @staticmethod
    def delete_rule(db: Session, rule: AvailabilityRule) -> None:
        db.delete(rule)
        db.flush()


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get_appointment(db: Session, appointment_id: int) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def get_appointments(
        db: Session,
        status: Optional[str] = None,
        customer_id: Optional[int] = None,
        start_from: Optional[datetime] = None,
        start_to: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Appointment]:
        query = db.query(Appointment)
        if status:
            query = query.filter(Appointment.status == status)
        if customer_id is not None:
            query = query.filter(Appointment.customer_id == customer_id)
        if start_from is not None:
            query = query.filter(Appointment.start_at >= start_from)
        if start_to is not None:
            query = query.filter(Appointment.start_at < start_to)
        return query.order_by(Appointment.start_at).offset(offset).limit(limit).all()

    @staticmethod
    def get_upcoming_for_customer(db: Session, customer_id: int, now: datetime, limit: int) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(
                Appointment.customer_id == customer_id,
                Appointment.status.in_(AppointmentStatus.ACTIVE),
                Appointment.start_at >= now,
            )
            .order_by(Appointment.start_at)
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_active_between(db: Session, range_start: datetime, range_end: datetime) -> list[Appointment]:
        """Live appointments starting inside [range_start, range_end)"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.status.in_(AppointmentStatus.ACTIVE),
                Appointment.start_at >= range_start,
                Appointment.start_at < range_end,
            )
            .order_by(Appointment.start_at)
            .all()
        )

    @staticmethod
    def get_completed_unbilled(db: Session) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(
                Appointment.status == AppointmentStatus.COMPLETED,
                Appointment.payment_status == PaymentStatus.UNBILLED,
            )
            .order_by(Appointment.start_at)
            .all()
        )

    @staticmethod
    def get_due_for_reminder(
        db: Session, window_start: datetime, window_end: datetime, flag_column
    ) -> list[Appointment]:
        """Live appointments in the window whose reminder flag is still unset"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.status.in_(AppointmentStatus.ACTIVE),
                Appointment.start_at >= window_start,
                Appointment.start_at < window_end,
                flag_column.is_(False),
            )
            .order_by(Appointment.start_at)
            .all()
        )

    @staticmethod
    def add_appointment(db: Session, **appointment_data) -> Appointment:
        appointment = Appointment(**appointment_data)
        db.add(appointment)
        db.flush()
        return appointment
