"""Ingestion repository - Database operations for the inbound event ledger"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models_events import InboundEvent


class InboundEventRepository:
    """Repository for inbound event database operations"""

    @staticmethod
    def get_event(db: Session, event_id: int) -> Optional[InboundEvent]:
        return db.query(InboundEvent).filter(InboundEvent.id == event_id).first()

    @staticmethod
    def get_by_key(db: Session, source: str, external_id: str) -> Optional[InboundEvent]:
        return (
            db.query(InboundEvent)
            .filter(InboundEvent.source == source, InboundEvent.external_id == external_id)
            .first()
        )

    @staticmethod
    def add_event(db: Session, **event_data) -> InboundEvent:
        event = InboundEvent(**event_data)
        db.add(event)
        db.flush()
        return event

    @staticmethod
    def claim(db: Session, event_id: int, now: datetime, lease_until: datetime) -> bool:
        """
        Take an unprocessed event for one attempt with a conditional update.

        Fails while another worker holds an unexpired lease, so only one
        process dispatches the event at a time.
        """
        claimed = (
            db.query(InboundEvent)
            .filter(
                InboundEvent.id == event_id,
                InboundEvent.processed.is_(False),
                or_(InboundEvent.claimed_until.is_(None), InboundEvent.claimed_until < now),
            )
            .update(
                {InboundEvent.claimed_until: lease_until, InboundEvent.last_attempt_at: now},
                synchronize_session=False,
            )
        )
        return claimed == 1

    @staticmethod
    def get_retryable(db: Session, max_retries: int, stale_before: datetime, limit: int = 50) -> list[InboundEvent]:
        """
        Unprocessed events below the retry limit that either failed or were
        never attempted (crash between receipt and dispatch), not touched since
        `stale_before`.
        """
        return (
            db.query(InboundEvent)
            .filter(
                InboundEvent.processed.is_(False),
                InboundEvent.retry_count < max_retries,
                InboundEvent.received_at < stale_before,
                or_(InboundEvent.last_attempt_at.is_(None), InboundEvent.last_attempt_at < stale_before),
            )
            .order_by(InboundEvent.id)
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_events(
        db: Session,
        source: Optional[str] = None,
        processed: Optional[bool] = None,
        failed_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[InboundEvent]:
        query = db.query(InboundEvent)
        if source:
            query = query.filter(InboundEvent.source == source)
        if processed is not None:
            query = query.filter(InboundEvent.processed.is_(processed))
        if failed_only:
            query = query.filter(InboundEvent.error_message.isnot(None))
        return query.order_by(InboundEvent.id.desc()).offset(offset).limit(limit).all()
