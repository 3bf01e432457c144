"""Scheduling router - availability rules, slot preview and appointment operations"""

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import require_admin
from ...database import get_db
from ...exceptions import AgendaError
from ...shared.errors import http_error
from .availability_service import AvailabilityService
from .schemas import (
    AppointmentResponse,
    AvailabilityRuleCreate,
    AvailabilityRuleResponse,
    AvailabilityRuleUpdate,
    AvailabilitySummary,
    BookAppointmentRequest,
    CancelAppointmentRequest,
    RescheduleRequest,
    SlotsResponse,
)
from .service import SchedulingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduling", tags=["Scheduling"], dependencies=[Depends(require_admin)])


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db)


def get_scheduling_service(db: Session = Depends(get_db)) -> SchedulingService:
    """Dependency injection for SchedulingService"""
    return SchedulingService(db)


# ============================================================================
# AVAILABILITY RULES
# ============================================================================


@router.get("/rules", response_model=list[AvailabilityRuleResponse])
async def list_rules(
    active_only: bool = Query(False),
    service: AvailabilityService = Depends(get_availability_service),
):
    return service.list_rules(active_only=active_only)


@router.get("/rules/summary", response_model=AvailabilitySummary)
async def rules_summary(service: AvailabilityService = Depends(get_availability_service)):
    """Weekly totals for the active template"""
    return service.summary()


@router.post("/rules", response_model=AvailabilityRuleResponse, status_code=201)
async def create_rule(
    data: AvailabilityRuleCreate,
    service: AvailabilityService = Depends(get_availability_service),
):
    try:
        return service.create_rule(**data.model_dump())
    except AgendaError as e:
        raise http_error(e) from e


@router.get("/rules/{rule_id}", response_model=AvailabilityRuleResponse)
async def get_rule(rule_id: int, service: AvailabilityService = Depends(get_availability_service)):
    try:
        return service.get_rule(rule_id)
    except AgendaError as e:
        raise http_error(e) from e


@router.put("/rules/{rule_id}", response_model=AvailabilityRuleResponse)
async def update_rule(
    rule_id: int,
    data: AvailabilityRuleUpdate,
    service: AvailabilityService = Depends(get_availability_service),
):
    try:
        return service.update_rule(rule_id, **data.model_dump(exclude_unset=True))
    except AgendaError as e:
        raise http_error(e) from e


@router.patch("/rules/{rule_id}/toggle", response_model=AvailabilityRuleResponse)
async def toggle_rule(rule_id: int, service: AvailabilityService = Depends(get_availability_service)):
    try:
        return service.toggle_rule(rule_id)
    except AgendaError as e:
        raise http_error(e) from e


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(rule_id: int, service: AvailabilityService = Depends(get_availability_service)):
    try:
        service.delete_rule(rule_id)
    except AgendaError as e:
        raise http_error(e) from e


# ============================================================================
# SLOTS
# ============================================================================


@router.get("/slots", response_model=SlotsResponse)
async def available_slots(
    day: date = Query(..., alias="date"),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Free slots for a date after removing calendar busy windows"""
    try:
        return SlotsResponse(date=day, slots=await service.available_slots(day))
    except AgendaError as e:
        raise http_error(e) from e


# ============================================================================
# APPOINTMENTS
# ============================================================================


@router.get("/appointments", response_model=list[AppointmentResponse])
async def list_appointments(
    status: Optional[str] = Query(None),
    customer_id: Optional[int] = Query(None),
    start_from: Optional[datetime] = Query(None),
    start_to: Optional[datetime] = Query(None),
    limit: int = Query(100, le=500),
    offset: int = Query(0, ge=0),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return service.list_appointments(
        status=status,
        customer_id=customer_id,
        start_from=start_from,
        start_to=start_to,
        limit=limit,
        offset=offset,
    )


@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(appointment_id: int, service: SchedulingService = Depends(get_scheduling_service)):
    try:
        return service.get_appointment(appointment_id)
    except AgendaError as e:
        raise http_error(e) from e


@router.post("/appointments", response_model=AppointmentResponse, status_code=201)
async def book_appointment(
    data: BookAppointmentRequest,
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return await service.book(data.customer_id, data.date, data.time)
    except AgendaError as e:
        raise http_error(e) from e


@router.post("/appointments/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Returns the new appointment"""
    try:
        return await service.reschedule(appointment_id, data.date, data.time)
    except AgendaError as e:
        raise http_error(e) from e


@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest,
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return await service.cancel(appointment_id, data.reason)
    except AgendaError as e:
        raise http_error(e) from e


@router.post("/appointments/{appointment_id}/confirm", response_model=AppointmentResponse)
async def confirm_appointment(appointment_id: int, service: SchedulingService = Depends(get_scheduling_service)):
    try:
        return service.confirm(appointment_id)
    except AgendaError as e:
        raise http_error(e) from e


@router.post("/appointments/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(appointment_id: int, service: SchedulingService = Depends(get_scheduling_service)):
    """Completed appointments are picked up by the billing sweep"""
    try:
        return service.complete(appointment_id)
    except AgendaError as e:
        raise http_error(e) from e


@router.post("/appointments/{appointment_id}/no-show", response_model=AppointmentResponse)
async def no_show_appointment(appointment_id: int, service: SchedulingService = Depends(get_scheduling_service)):
    try:
        return service.mark_no_show(appointment_id)
    except AgendaError as e:
        raise http_error(e) from e
