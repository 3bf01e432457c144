"""
Inbound event ledger and audit trail
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from .database import Base


class EventSource:
    MESSAGING = "messaging"
    PAYMENT = "payment"

    ALL = {MESSAGING, PAYMENT}


class InboundEvent(Base):
    """Idempotency ledger row, written before any side effect"""

    __tablename__ = "inbound_events"
    __table_args__ = (UniqueConstraint("source", "external_id", name="uq_inbound_events_source_external_id"),)

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String(20), nullable=False)  # messaging, payment
    external_id = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=True)  # message type or payment event name
    payload = Column(JSON, nullable=False)  # Raw payload kept for replay

    processed = Column(Boolean, default=False, index=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0)

    received_at = Column(DateTime, server_default=func.now())
    last_attempt_at = Column(DateTime, nullable=True)
    claimed_until = Column(DateTime, nullable=True)  # Lease held by the worker running an attempt
    processed_at = Column(DateTime, nullable=True)


class AuditKind:
    CUSTOMER_CREATED = "CUSTOMER_CREATED"
    CUSTOMER_UPDATED = "CUSTOMER_UPDATED"
    CUSTOMER_DEACTIVATED = "CUSTOMER_DEACTIVATED"
    CONVERSATION_STATE_CHANGED = "CONVERSATION_STATE_CHANGED"
    APPOINTMENT_SCHEDULED = "APPOINTMENT_SCHEDULED"
    APPOINTMENT_CONFIRMED = "APPOINTMENT_CONFIRMED"
    APPOINTMENT_COMPLETED = "APPOINTMENT_COMPLETED"
    APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"
    APPOINTMENT_RESCHEDULED = "APPOINTMENT_RESCHEDULED"
    APPOINTMENT_NO_SHOW = "APPOINTMENT_NO_SHOW"
    CALENDAR_EVENT_ORPHANED = "CALENDAR_EVENT_ORPHANED"
    CALENDAR_DELETE_FAILED = "CALENDAR_DELETE_FAILED"
    AVAILABILITY_RULE_CREATED = "AVAILABILITY_RULE_CREATED"
    AVAILABILITY_RULE_UPDATED = "AVAILABILITY_RULE_UPDATED"
    AVAILABILITY_RULE_DELETED = "AVAILABILITY_RULE_DELETED"
    PAYMENT_CUSTOMER_CREATED = "PAYMENT_CUSTOMER_CREATED"
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_CANCELLED = "INVOICE_CANCELLED"
    INVOICE_ORPHANED = "INVOICE_ORPHANED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_OVERDUE = "PAYMENT_OVERDUE"
    PAYMENT_REFUNDED = "PAYMENT_REFUNDED"
    PAYMENT_EVENT_IGNORED = "PAYMENT_EVENT_IGNORED"
    REMINDER_SENT = "REMINDER_SENT"
    HANDOFF_STARTED = "HANDOFF_STARTED"
    HANDOFF_ASSIGNED = "HANDOFF_ASSIGNED"
    HANDOFF_FINISHED = "HANDOFF_FINISHED"
    FLOW_STEP_FAILED = "FLOW_STEP_FAILED"
    EVENT_RETRIES_EXHAUSTED = "EVENT_RETRIES_EXHAUSTED"


class AuditRecord(Base):
    """Append-only; rows are never updated or deleted"""

    __tablename__ = "audit_records"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(50), nullable=False, index=True)
    customer_id = Column(Integer, nullable=True, index=True)
    appointment_id = Column(Integer, nullable=True, index=True)
    invoice_id = Column(Integer, nullable=True, index=True)
    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)
    idempotency_key = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)
