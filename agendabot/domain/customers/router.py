"""Customer router - FastAPI endpoints for customer records"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import require_admin
from ...database import get_db
from ...exceptions import AgendaError
from ...shared.errors import http_error
from .schemas import CustomerCreate, CustomerResponse, CustomerUpdate
from .service import CustomerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/customers", tags=["Customers"], dependencies=[Depends(require_admin)])


def get_customer_service(db: Session = Depends(get_db)) -> CustomerService:
    """Dependency injection for CustomerService"""
    return CustomerService(db)


@router.get("", response_model=list[CustomerResponse])
async def list_customers(
    active_only: bool = Query(True),
    search: Optional[str] = Query(None),
    limit: int = Query(100, le=500),
    offset: int = Query(0, ge=0),
    service: CustomerService = Depends(get_customer_service),
):
    return service.list_customers(active_only=active_only, search=search, limit=limit, offset=offset)


@router.post("", response_model=CustomerResponse, status_code=201)
async def create_customer(data: CustomerCreate, service: CustomerService = Depends(get_customer_service)):
    try:
        payload = data.model_dump()
        return service.create_customer(payload.pop("phone"), **payload)
    except AgendaError as e:
        raise http_error(e) from e


@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(customer_id: int, service: CustomerService = Depends(get_customer_service)):
    try:
        return service.get_customer(customer_id)
    except AgendaError as e:
        raise http_error(e) from e


@router.put("/{customer_id}", response_model=CustomerResponse)
async def update_customer(
    customer_id: int,
    data: CustomerUpdate,
    service: CustomerService = Depends(get_customer_service),
):
    try:
        return service.update_customer(customer_id, **data.model_dump(exclude_unset=True))
    except AgendaError as e:
        raise http_error(e) from e


@router.post("/{customer_id}/deactivate", response_model=CustomerResponse)
async def deactivate_customer(customer_id: int, service: CustomerService = Depends(get_customer_service)):
    try:
        return service.deactivate_customer(customer_id)
    except AgendaError as e:
        raise http_error(e) from e
