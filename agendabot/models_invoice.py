"""
Invoice model mirroring the Asaas payment created for a completed appointment
"""

from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class InvoiceStatus:
    PENDING = "PENDING"
    RECEIVED = "RECEIVED"
    CONFIRMED = "CONFIRMED"
    OVERDUE = "OVERDUE"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"

    OPEN = {PENDING, OVERDUE}
    PAID = {RECEIVED, CONFIRMED}


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)

    remote_id = Column(String(100), unique=True, nullable=False, index=True)  # Asaas payment id
    amount = Column(Float, nullable=False)
    billing_method = Column(String(20), nullable=False)  # PIX, BOLETO, CREDIT_CARD
    status = Column(String(20), nullable=False, default=InvoiceStatus.PENDING, index=True)

    # Payment instructions
    payment_link = Column(String(500), nullable=True)  # invoiceUrl
    pix_payload = Column(Text, nullable=True)  # PIX copy-and-paste code
    boleto_line = Column(String(100), nullable=True)  # Boleto digitable line

    due_date = Column(Date, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    appointment = relationship("Appointment", back_populates="invoice")
