"""Customer repository - Database operations for customers"""

from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ...models import Customer


class CustomerRepository:
    """Repository for customer database operations"""

    @staticmethod
    def get_customers(
        db: Session,
        active_only: bool = True,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Customer]:
        query = db.query(Customer)
        if active_only:
            query = query.filter(Customer.is_active.is_(True))
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(Customer.name.ilike(pattern), Customer.phone.ilike(pattern), Customer.email.ilike(pattern))
            )
        return query.order_by(Customer.created_at.desc(), Customer.id.desc()).offset(offset).limit(limit).all()

    @staticmethod
    def get_customer_by_id(db: Session, customer_id: int) -> Optional[Customer]:
        return db.query(Customer).filter(Customer.id == customer_id).first()

    @staticmethod
    def get_customer_by_phone(db: Session, phone: str) -> Optional[Customer]:
        return db.query(Customer).filter(Customer.phone == phone).first()

    @staticmethod
    def add_customer(db: Session, **customer_data) -> Customer:
        customer = Customer(**customer_data)
        db.add(customer)
        db.flush()
        return customer

    @staticmethod
    def compare_and_set_state(
        db: Session, customer_id: int, expected_version: int, state: str, data: dict
    ) -> bool:
        """
        Conditional update keyed on the version read before the flow step.

        Returns False when another message already advanced the conversation.
        """
        result = db.execute(
            update(Customer)
            .where(Customer.id == customer_id, Customer.state_version == expected_version)
            .values(
                conversation_state=state,
                conversation_data=data,
                state_version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
