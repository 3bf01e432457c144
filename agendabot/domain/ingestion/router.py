"""
Webhook router - WhatsApp Cloud API and Asaas callbacks.

Handlers verify, record each event in the ledger and acknowledge. Dispatch
runs as a background task so the gateways get their 200 quickly.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ... import config
from ...auth import require_admin
from ...database import get_db
from ...models_events import EventSource
from ...webhook_security import WebhookSignatureError, verify_asaas_token, verify_whatsapp_signature
from . import service as ingestion
from .normalizers import parse_asaas_payload, split_whatsapp_payload
from .schemas import InboundEventResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def get_ingestion_service(db: Session = Depends(get_db)) -> ingestion.IngestionService:
    """Dependency injection for IngestionService"""
    return ingestion.IngestionService(db)


def _parse_json(raw_body: bytes) -> dict:
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"⚠️ Webhook body is not valid JSON: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from e
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    return payload


def _ingest(service, background_tasks: BackgroundTasks, source: str, external_id, payload, event_type):
    try:
        result = service.ingest(source, external_id, payload, event_type=event_type)
    except SQLAlchemyError as e:
        # Without a ledger row the event is not acknowledged, so the gateway redelivers
        logger.error(f"❌ Could not record {source} event {external_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Event could not be recorded"
        ) from e
    if result.should_dispatch:
        background_tasks.add_task(ingestion.process_event_in_background, result.event_id)
    return result


# ========================================
# WHATSAPP
# ========================================


@router.get("/whatsapp", response_class=PlainTextResponse)
async def verify_whatsapp_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """Meta subscription handshake: echo the challenge when the verify token matches"""
    if mode == "subscribe" and config.WHATSAPP_VERIFY_TOKEN and token == config.WHATSAPP_VERIFY_TOKEN:
        logger.info("✅ WhatsApp webhook verified")
        return challenge or ""
    logger.warning(f"🚫 WhatsApp webhook verification failed (mode={mode})")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


@router.post("/whatsapp")
async def whatsapp_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature_256: Optional[str] = Header(None),
    service: ingestion.IngestionService = Depends(get_ingestion_service),
):
    raw_body = await request.body()
    try:
        verify_whatsapp_signature(raw_body, x_hub_signature_256, config.WHATSAPP_APP_SECRET)
    except WebhookSignatureError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e

    payload = _parse_json(raw_body)
    events = split_whatsapp_payload(payload)
    if not events:
        # Delivery receipts and other notifications carry no messages
        return {"status": "ok", "accepted": 0, "duplicates": 0}

    accepted = duplicates = 0
    for message_id, event_payload, message_type in events:
        result = _ingest(service, background_tasks, EventSource.MESSAGING, message_id, event_payload, message_type)
        if result.should_dispatch:
            accepted += 1
        else:
            duplicates += 1

    logger.info(f"📨 WhatsApp webhook: {accepted} accepted, {duplicates} duplicates")
    return {"status": "ok", "accepted": accepted, "duplicates": duplicates}


# ========================================
# ASAAS
# ========================================


@router.post("/asaas")
async def asaas_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    asaas_access_token: Optional[str] = Header(None),
    service: ingestion.IngestionService = Depends(get_ingestion_service),
):
    try:
        verify_asaas_token(asaas_access_token, config.ASAAS_WEBHOOK_TOKEN)
    except WebhookSignatureError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e

    payload = _parse_json(await request.body())
    payment_event = parse_asaas_payload(payload)
    if payment_event is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing event name")

    result = _ingest(
        service, background_tasks, EventSource.PAYMENT, payment_event.event_id, payload, payment_event.event
    )
    logger.info(f"📨 Asaas webhook {payment_event.event} ({payment_event.event_id}): {result.status}")
    return {"status": result.status, "event_id": payment_event.event_id}


# ========================================
# LEDGER (admin)
# ========================================


@router.get("/events", response_model=list[InboundEventResponse], dependencies=[Depends(require_admin)])
async def list_inbound_events(
    source: Optional[str] = None,
    processed: Optional[bool] = None,
    failed_only: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: ingestion.IngestionService = Depends(get_ingestion_service),
):
    return service.list_events(source=source, processed=processed, failed_only=failed_only, limit=limit, offset=offset)


@router.post("/events/retry", dependencies=[Depends(require_admin)])
async def retry_inbound_events(service: ingestion.IngestionService = Depends(get_ingestion_service)):
    """Run the retry sweep now instead of waiting for the worker"""
    return await service.retry_pending()
