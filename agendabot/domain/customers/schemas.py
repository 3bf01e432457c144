"""Customer domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ...models import BillingMethod
from ...shared.validators import normalize_phone, validate_cpf, validate_email


class CustomerBase(BaseModel):
    name: Optional[str] = None
    tax_id: Optional[str] = None
    email: Optional[str] = None
    billing_method: Optional[str] = None
    price: Optional[float] = None
    notes: Optional[str] = None

    @field_validator("tax_id")
    @classmethod
    def check_tax_id(cls, v: Optional[str]) -> Optional[str]:
        return validate_cpf(v) if v else v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        return validate_email(v)

    @field_validator("billing_method")
    @classmethod
    def check_billing_method(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.upper()
        if v not in BillingMethod.ALL:
            raise ValueError(f"billing_method must be one of {sorted(BillingMethod.ALL)}")
        return v

    @field_validator("price")
    @classmethod
    def check_price(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("price must be positive")
        return v


class CustomerCreate(CustomerBase):
    phone: str

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: str) -> str:
        phone = normalize_phone(v)
        if not phone or len(phone) < 12:
            raise ValueError("phone must include area code")
        return phone


class CustomerUpdate(CustomerBase):
    pass


class CustomerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    phone: str
    name: Optional[str] = None
    tax_id: Optional[str] = None
    email: Optional[str] = None
    payment_customer_id: Optional[str] = None
    billing_method: Optional[str] = None
    price: Optional[float] = None
    conversation_state: str
    registration_complete: bool
    is_active: bool
    notes: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
