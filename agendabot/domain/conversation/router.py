"""Handoff router - operator endpoints for human attendance"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import require_admin
from ...database import get_db
from ...exceptions import AgendaError
from ...models import HandoffStatus
from ...shared.errors import http_error
from .handoff import HandoffService
from .schemas import FinishHandoffRequest, HandoffResponse, StartHandoffRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/handoffs", tags=["Handoffs"], dependencies=[Depends(require_admin)])


def get_handoff_service(db: Session = Depends(get_db)) -> HandoffService:
    """Dependency injection for HandoffService"""
    return HandoffService(db)


@router.get("/waiting", response_model=list[HandoffResponse])
async def list_waiting(service: HandoffService = Depends(get_handoff_service)):
    return service.list_by_status(HandoffStatus.WAITING)


@router.get("/in-progress", response_model=list[HandoffResponse])
async def list_in_progress(service: HandoffService = Depends(get_handoff_service)):
    return service.list_by_status(HandoffStatus.IN_PROGRESS)


@router.post("/{handoff_id}/start", response_model=HandoffResponse)
async def start_handoff(
    handoff_id: int,
    data: StartHandoffRequest,
    service: HandoffService = Depends(get_handoff_service),
):
    try:
        return service.start(handoff_id, data.operator)
    except AgendaError as e:
        raise http_error(e) from e


@router.post("/{handoff_id}/finish", response_model=HandoffResponse)
async def finish_handoff(
    handoff_id: int,
    data: FinishHandoffRequest,
    service: HandoffService = Depends(get_handoff_service),
):
    """Close the handoff and hand the customer back to the automatic menu"""
    try:
        return await service.finish(handoff_id, data.resolution)
    except AgendaError as e:
        raise http_error(e) from e
