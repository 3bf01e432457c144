"""
Webhook ingestion - idempotency ledger and dispatch.

Every inbound event is recorded under (source, external id) before any side
effect. The HTTP handler only persists and acknowledges; processing happens
out of band via process_event(), which marks the ledger row processed on
success or captures the error for the retry sweep.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...cache import cache
from ...config import EVENT_CLAIM_TIMEOUT_SECONDS, EVENT_MAX_RETRIES, EVENT_RETRY_AFTER_SECONDS
from ...database import SessionLocal
from ...exceptions import ExternalServiceError
from ...models_events import AuditKind, EventSource, InboundEvent
from ...services.whatsapp_service import whatsapp_service
from ...shared.locks import KeyedLocks
from ...utils import dates
from ..audit.repository import AuditRepository
from ..billing.reconciliation import PaymentReconciler
from ..conversation.orchestrator import ConversationOrchestrator
from .normalizers import normalize_whatsapp_message, parse_asaas_payload
from .repository import InboundEventRepository
from .schemas import IngestResult

logger = logging.getLogger(__name__)

ACCEPTED = "accepted"
DUPLICATE = "duplicate"
REJECTED = "rejected"

PROCESSED_CACHE_TTL = 24 * 3600

_event_locks = KeyedLocks()


def processed_cache_key(source: str, external_id: str) -> str:
    return f"inbound:{source}:{external_id}"


class IngestionService:
    def __init__(self, db: Session, messenger=None, calendar=None):
        self.db = db
        self.messenger = messenger or whatsapp_service
        self.calendar = calendar
        self.repo = InboundEventRepository()
        self.dispatchers = {
            EventSource.MESSAGING: self._dispatch_message,
            EventSource.PAYMENT: self._dispatch_payment,
        }

    # ========================================
    # LEDGER
    # ========================================

    def ingest(
        self, source: str, external_id: Optional[str], payload: dict, event_type: Optional[str] = None
    ) -> IngestResult:
        """
        Record an inbound event.

        Accepted means the caller should dispatch it. A redelivery of an event
        whose last attempt failed is accepted again; anything processed or
        still in flight is a duplicate.
        """
        if source not in EventSource.ALL:
            return IngestResult(status=REJECTED, reason=f"unknown source {source}")
        if not external_id:
            return IngestResult(status=REJECTED, reason="missing event id")

        if cache.get(processed_cache_key(source, external_id)):
            logger.info(f"ℹ️ Duplicate {source} event {external_id} (cached)")
            return IngestResult(status=DUPLICATE)

        existing = self.repo.get_by_key(self.db, source, external_id)
        if existing:
            return self._redelivery(existing)

        try:
            event = self.repo.add_event(
                self.db,
                source=source,
                external_id=external_id,
                event_type=event_type,
                payload=payload,
                processed=False,
                retry_count=0,
                received_at=dates.local_now(),
            )
            self.db.commit()
        except IntegrityError:
            # Concurrent delivery of the same event won the insert
            self.db.rollback()
            existing = self.repo.get_by_key(self.db, source, external_id)
            logger.info(f"ℹ️ Duplicate {source} event {external_id} (concurrent delivery)")
            return IngestResult(status=DUPLICATE, event_id=existing.id if existing else None)

        logger.info(f"📨 Recorded {source} event {external_id} as #{event.id}")
        return IngestResult(status=ACCEPTED, event_id=event.id)

    def _redelivery(self, event: InboundEvent) -> IngestResult:
        if event.processed:
            logger.info(f"ℹ️ Duplicate {event.source} event {event.external_id} ignored")
            return IngestResult(status=DUPLICATE, event_id=event.id)
        if event.error_message and event.retry_count < EVENT_MAX_RETRIES:
            logger.info(f"🔄 Redelivery of failed {event.source} event {event.external_id}, retrying")
            return IngestResult(status=ACCEPTED, event_id=event.id)
        return IngestResult(status=DUPLICATE, event_id=event.id, reason="in flight")

    def list_events(self, **filters) -> list[InboundEvent]:
        return self.repo.get_events(self.db, **filters)

    # ========================================
    # PROCESSING
    # ========================================

    async def process_event(self, event_id: int) -> bool:
        """
        Dispatch a recorded event. Returns True once the event is processed.

        Failures never escape: the error is stored on the ledger row and the
        retry count goes up. The row is claimed in the database before
        dispatch, so an attempt running in another process makes this one
        return False without side effects.
        """
        async with _event_locks.hold(event_id):
            event = self.repo.get_event(self.db, event_id)
            if not event:
                logger.warning(f"⚠️ Inbound event #{event_id} not found")
                return False
            if event.processed:
                return True

            source, external_id = event.source, event.external_id
            dispatcher = self.dispatchers.get(source)
            now = dates.local_now()
            lease_until = now + timedelta(seconds=EVENT_CLAIM_TIMEOUT_SECONDS)
            if not self.repo.claim(self.db, event_id, now, lease_until):
                self.db.rollback()
                logger.info(f"ℹ️ {source} event {external_id} is being processed elsewhere, skipped")
                return False
            self.db.commit()
            self.db.refresh(event)

            try:
                await dispatcher(event)
            except Exception as e:
                self.db.rollback()
                self._record_failure(event_id, e)
                return False

            event = self.repo.get_event(self.db, event_id)
            event.processed = True
            event.processed_at = dates.local_now()
            event.claimed_until = None
            self.db.commit()

        cache.set(processed_cache_key(source, external_id), True, ttl=PROCESSED_CACHE_TTL)
        logger.info(f"✅ Processed {source} event {external_id}")
        return True

    def _record_failure(self, event_id: int, error: Exception) -> None:
        event = self.repo.get_event(self.db, event_id)
        event.retry_count = (event.retry_count or 0) + 1
        event.error_message = f"{type(error).__name__}: {error}"[:2000]
        event.last_attempt_at = dates.local_now()
        event.claimed_until = None
        logger.error(
            f"❌ Processing {event.source} event {event.external_id} failed "
            f"(attempt {event.retry_count}/{EVENT_MAX_RETRIES}): {error}"
        )

        if event.retry_count >= EVENT_MAX_RETRIES:
            logger.error(f"❌ Giving up on {event.source} event {event.external_id}")
            AuditRepository.record(
                self.db,
                AuditKind.EVENT_RETRIES_EXHAUSTED,
                details={
                    "source": event.source,
                    "external_id": event.external_id,
                    "event_type": event.event_type,
                    "error": event.error_message,
                },
                idempotency_key=f"{event.source}:{event.external_id}",
            )
        self.db.commit()

    async def retry_pending(self, limit: int = 50) -> dict:
        """Re-dispatch failed or never-attempted events that have gone stale"""
        stale_before = dates.local_now() - timedelta(seconds=EVENT_RETRY_AFTER_SECONDS)
        event_ids = [e.id for e in self.repo.get_retryable(self.db, EVENT_MAX_RETRIES, stale_before, limit)]
        if not event_ids:
            return {"retried": 0, "succeeded": 0, "failed": 0}

        logger.info(f"🔄 Retrying {len(event_ids)} inbound events")
        succeeded = 0
        for event_id in event_ids:
            if await self.process_event(event_id):
                succeeded += 1

        summary = {"retried": len(event_ids), "succeeded": succeeded, "failed": len(event_ids) - succeeded}
        logger.info(f"✅ Inbound retry sweep: {summary}")
        return summary

    # ========================================
    # DISPATCHERS
    # ========================================

    async def _dispatch_message(self, event: InboundEvent) -> None:
        message = normalize_whatsapp_message(event.payload)
        if message is None:
            logger.info(f"ℹ️ Unsupported message type {event.event_type} from event {event.external_id}, not dispatched")
            return

        try:
            await self.messenger.mark_read(message.message_id)
        except ExternalServiceError as e:
            logger.warning(f"⚠️ Could not mark message {message.message_id} as read: {e}")

        orchestrator = ConversationOrchestrator(self.db, messenger=self.messenger, calendar=self.calendar)
        await orchestrator.handle_message(message)

    async def _dispatch_payment(self, event: InboundEvent) -> None:
        payment_event = parse_asaas_payload(event.payload)
        if payment_event is None:
            logger.warning(f"⚠️ Payment event {event.external_id} has no event name, skipped")
            return

        reconciler = PaymentReconciler(self.db, messenger=self.messenger)
        result = await reconciler.handle_payment_event(
            payment_event.event,
            payment_event.remote_invoice_id,
            payload=event.payload,
            event_id=event.external_id,
        )
        logger.info(f"📨 Payment event {event.external_id}: {result}")


async def process_event_in_background(event_id: int) -> None:
    """Background task entry point with its own database session"""
    db = SessionLocal()
    try:
        await IngestionService(db).process_event(event_id)
    finally:
        db.close()
