"""Billing router - manual invoice generation, sweep trigger and invoice lists"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import require_admin
from ...database import get_db
from ...exceptions import AgendaError
from ...shared.errors import http_error
from .schemas import InvoiceResponse, SweepResponse
from .service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"], dependencies=[Depends(require_admin)])


def get_billing_service(db: Session = Depends(get_db)) -> BillingService:
    """Dependency injection for BillingService"""
    return BillingService(db)


@router.post("/appointments/{appointment_id}/invoice", response_model=InvoiceResponse)
async def generate_invoice(appointment_id: int, service: BillingService = Depends(get_billing_service)):
    """Generate (or return the existing) invoice for a completed appointment"""
    try:
        return await service.generate_invoice(appointment_id)
    except AgendaError as e:
        raise http_error(e) from e


@router.post("/sweep", response_model=SweepResponse)
async def run_billing_sweep(service: BillingService = Depends(get_billing_service)):
    return await service.run_sweep()


@router.get("/invoices/pending", response_model=list[InvoiceResponse])
async def list_pending_invoices(
    limit: int = Query(100, le=500),
    offset: int = Query(0, ge=0),
    service: BillingService = Depends(get_billing_service),
):
    return service.list_pending(limit=limit, offset=offset)


@router.get("/invoices/overdue", response_model=list[InvoiceResponse])
async def list_overdue_invoices(
    limit: int = Query(100, le=500),
    offset: int = Query(0, ge=0),
    service: BillingService = Depends(get_billing_service),
):
    return service.list_overdue(limit=limit, offset=offset)


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(invoice_id: int, service: BillingService = Depends(get_billing_service)):
    try:
        return service.get_invoice(invoice_id)
    except AgendaError as e:
        raise http_error(e) from e


@router.post("/invoices/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(invoice_id: int, service: BillingService = Depends(get_billing_service)):
    try:
        return await service.cancel_invoice(invoice_id)
    except AgendaError as e:
        raise http_error(e) from e
