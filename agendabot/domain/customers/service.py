"""Customer service - Business logic for customer records"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...exceptions import ConflictError, NotFoundError
from ...models import BillingMethod, ConversationState, Customer
from ...models_events import AuditKind
from ..audit.repository import AuditRepository, snapshot
from .repository import CustomerRepository

logger = logging.getLogger(__name__)

CUSTOMER_FIELDS = [
    "id",
    "phone",
    "name",
    "tax_id",
    "email",
    "billing_method",
    "price",
    "payment_customer_id",
    "registration_complete",
    "is_active",
]


class CustomerService:
    """Service for customer business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = CustomerRepository()

    def list_customers(self, active_only: bool = True, search: Optional[str] = None, limit: int = 100, offset: int = 0):
        return self.repo.get_customers(self.db, active_only=active_only, search=search, limit=limit, offset=offset)

    def get_customer(self, customer_id: int) -> Customer:
        customer = self.repo.get_customer_by_id(self.db, customer_id)
        if not customer:
            raise NotFoundError(f"Customer {customer_id} not found")
        return customer

    def get_by_phone(self, phone: str) -> Optional[Customer]:
        return self.repo.get_customer_by_phone(self.db, phone)

    def create_customer(self, phone: str, **data) -> Customer:
        """Create a customer from the admin API; complete data skips chat registration"""
        if self.repo.get_customer_by_phone(self.db, phone):
            raise ConflictError(f"Customer with phone {phone} already exists")

        fields = {k: v for k, v in data.items() if v is not None}
        fields.setdefault("billing_method", BillingMethod.PIX)
        registered = bool(fields.get("name") and fields.get("tax_id"))
        customer = self.repo.add_customer(
            self.db,
            phone=phone,
            registration_complete=registered,
            conversation_state=ConversationState.MAIN_MENU if registered else ConversationState.NEW,
            conversation_data={},
            **fields,
        )
        AuditRepository.record(
            self.db, AuditKind.CUSTOMER_CREATED, customer_id=customer.id, after=snapshot(customer, CUSTOMER_FIELDS)
        )
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(f"Customer with phone {phone} already exists") from e
        self.db.refresh(customer)
        logger.info(f"✅ Customer {customer.id} created ({phone})")
        return customer

    def get_or_create_by_phone(self, phone: str) -> tuple[Customer, bool]:
        """Customer for an inbound message; created in NEW on first contact"""
        customer = self.repo.get_customer_by_phone(self.db, phone)
        if customer:
            return customer, False

        customer = self.repo.add_customer(
            self.db,
            phone=phone,
            conversation_state=ConversationState.NEW,
            conversation_data={},
            billing_method=BillingMethod.PIX,
        )
        AuditRepository.record(
            self.db,
            AuditKind.CUSTOMER_CREATED,
            customer_id=customer.id,
            after=snapshot(customer, CUSTOMER_FIELDS),
            details={"origin": "whatsapp"},
        )
        try:
            self.db.commit()
        except IntegrityError:
            # Another message from the same number created it first
            self.db.rollback()
            return self.repo.get_customer_by_phone(self.db, phone), False
        self.db.refresh(customer)
        logger.info(f"✅ New customer {customer.id} from WhatsApp ({phone})")
        return customer, True

    def update_customer(self, customer_id: int, **updates) -> Customer:
        customer = self.get_customer(customer_id)
        before = snapshot(customer, CUSTOMER_FIELDS)

        for key, value in updates.items():
            if value is not None and hasattr(customer, key):
                setattr(customer, key, value)
        if customer.name and customer.tax_id and not customer.registration_complete:
            customer.registration_complete = True

        AuditRepository.record(
            self.db,
            AuditKind.CUSTOMER_UPDATED,
            customer_id=customer.id,
            before=before,
            after=snapshot(customer, CUSTOMER_FIELDS),
        )
        self.db.commit()
        self.db.refresh(customer)
        logger.info(f"✅ Customer {customer.id} updated")
        return customer

    def deactivate_customer(self, customer_id: int) -> Customer:
        """Customers are never deleted"""
        customer = self.get_customer(customer_id)
        before = snapshot(customer, CUSTOMER_FIELDS)
        customer.is_active = False
        AuditRepository.record(
            self.db,
            AuditKind.CUSTOMER_DEACTIVATED,
            customer_id=customer.id,
            before=before,
            after=snapshot(customer, CUSTOMER_FIELDS),
        )
        self.db.commit()
        self.db.refresh(customer)
        logger.info(f"✅ Customer {customer.id} deactivated")
        return customer
