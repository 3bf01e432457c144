from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class ConversationState:
    NEW = "NEW"
    COLLECTING_NAME = "COLLECTING_NAME"
    COLLECTING_TAX_ID = "COLLECTING_TAX_ID"
    COLLECTING_EMAIL = "COLLECTING_EMAIL"
    MAIN_MENU = "MAIN_MENU"
    AWAITING_DATE = "AWAITING_DATE"
    AWAITING_SLOT_CHOICE = "AWAITING_SLOT_CHOICE"
    CHOOSING_APPOINTMENT = "CHOOSING_APPOINTMENT"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    IN_HUMAN_HANDOFF = "IN_HUMAN_HANDOFF"

    REGISTRATION = {NEW, COLLECTING_NAME, COLLECTING_TAX_ID, COLLECTING_EMAIL}


class AppointmentStatus:
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"

    ACTIVE = {SCHEDULED, CONFIRMED}
    TERMINAL = {COMPLETED, CANCELLED, NO_SHOW, RESCHEDULED}


class PaymentStatus:
    UNBILLED = "UNBILLED"
    INVOICE_GENERATED = "INVOICE_GENERATED"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    REFUNDED = "REFUNDED"

    TERMINAL = {PAID, REFUNDED}


class BillingMethod:
    PIX = "PIX"
    BOLETO = "BOLETO"
    CREDIT_CARD = "CREDIT_CARD"

    ALL = {PIX, BOLETO, CREDIT_CARD}


class HandoffStatus:
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"


class HandoffReason:
    CUSTOMER_REQUEST = "CUSTOMER_REQUEST"
    FINANCIAL_QUESTION = "FINANCIAL_QUESTION"
    TECHNICAL_ISSUE = "TECHNICAL_ISSUE"
    EMERGENCY = "EMERGENCY"
    OTHER = "OTHER"

    ALL = {CUSTOMER_REQUEST, FINANCIAL_QUESTION, TECHNICAL_ISSUE, EMERGENCY, OTHER}


class Customer(Base):
    """A person talking to the business over WhatsApp"""

    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String(20), unique=True, nullable=False, index=True)  # Digits only, with country code
    name = Column(String(255), nullable=True)
    tax_id = Column(String(14), nullable=True, index=True)  # CPF, digits only
    email = Column(String(255), nullable=True)

    # Billing
    payment_customer_id = Column(String(100), nullable=True)  # Asaas customer id, set on first sync
    billing_method = Column(String(20), default=BillingMethod.PIX)
    price = Column(Float, nullable=True)  # Overrides DEFAULT_PRICE when set

    # Conversation
    conversation_state = Column(String(40), nullable=False, default=ConversationState.NEW)
    conversation_data = Column(JSON, nullable=False, default=dict)  # Scratch-pad for the current flow
    state_version = Column(Integer, nullable=False, default=0)  # Optimistic lock counter
    registration_complete = Column(Boolean, default=False)
    last_message_at = Column(DateTime, nullable=True)

    is_active = Column(Boolean, default=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    appointments = relationship("Appointment", back_populates="customer", foreign_keys="Appointment.customer_id")
    handoffs = relationship("Handoff", back_populates="customer")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # A single provider can only hold one live appointment per start time
        Index(
            "uq_appointments_active_slot",
            "start_at",
            unique=True,
            postgresql_where=text("status IN ('SCHEDULED', 'CONFIRMED')"),
            sqlite_where=text("status IN ('SCHEDULED', 'CONFIRMED')"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)

    # Local business time, minute precision
    start_at = Column(DateTime, nullable=False, index=True)
    end_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default=AppointmentStatus.SCHEDULED, index=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.UNBILLED, index=True)

    calendar_event_id = Column(String(255), unique=True, nullable=True)  # Google Calendar event id
    price = Column(Float, nullable=False)

    reminder_24h_sent = Column(Boolean, default=False)
    reminder_2h_sent = Column(Boolean, default=False)

    cancel_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    rescheduled_to_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    confirmed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    customer = relationship("Customer", back_populates="appointments", foreign_keys=[customer_id])
    invoice = relationship("Invoice", back_populates="appointment", uselist=False)


class AvailabilityRule(Base):
    """Weekly availability template entry"""

    __tablename__ = "availability_rules"

    id = Column(Integer, primary_key=True, index=True)
    day_of_week = Column(Integer, nullable=False, index=True)  # 0 = Monday ... 6 = Sunday
    start_time = Column(String(5), nullable=False)  # "HH:MM"
    end_time = Column(String(5), nullable=False)  # "HH:MM"
    slot_duration = Column(Integer, nullable=False, default=50)  # minutes
    slot_gap = Column(Integer, nullable=False, default=10)  # minutes between slots
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Handoff(Base):
    """Human attendance request opened from the chat"""

    __tablename__ = "handoffs"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    reason = Column(String(30), nullable=False, default=HandoffReason.CUSTOMER_REQUEST)
    status = Column(String(20), nullable=False, default=HandoffStatus.WAITING, index=True)
    summary = Column(Text, nullable=True)  # Last customer message when the handoff was opened
    operator = Column(String(255), nullable=True)
    resolution = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=True)  # Operator picked it up
    finished_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    customer = relationship("Customer", back_populates="handoffs")
