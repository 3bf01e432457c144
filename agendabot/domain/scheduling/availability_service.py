"""
Availability service - weekly template rules and pure slot generation
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ...config import DEFAULT_SLOT_DURATION, DEFAULT_SLOT_GAP
from ...exceptions import NotFoundError, OverlappingRule, ValidationError
from ...models import AvailabilityRule
from ...models_events import AuditKind
from ...utils import dates
from ..audit.repository import AuditRepository, snapshot
from .repository import AvailabilityRepository

logger = logging.getLogger(__name__)

RULE_FIELDS = ["id", "day_of_week", "start_time", "end_time", "slot_duration", "slot_gap", "is_active"]


@dataclass(frozen=True)
class SlotCandidate:
    """A slot in minutes since midnight, with the end of the rule that produced it"""

    start: int
    duration: int
    rule_end: int

    @property
    def end(self) -> int:
        return self.start + self.duration

    @property
    def label(self) -> str:
        return dates.format_time_of_day(self.start)


def generate_slots(rules: list[AvailabilityRule]) -> list[SlotCandidate]:
    """
    Every slot of `duration` stepped by `duration + gap` inside [start, end).

    A slot is kept only if it ends at or before the rule end. Inactive rules are
    ignored. The result is sorted by start time with duplicates removed.
    """
    slots: dict[int, SlotCandidate] = {}
    for rule in rules:
        if not rule.is_active:
            continue
        start = dates.parse_time_of_day(rule.start_time)
        end = dates.parse_time_of_day(rule.end_time)
        step = rule.slot_duration + rule.slot_gap
        current = start
        while current + rule.slot_duration <= end:
            slots.setdefault(current, SlotCandidate(current, rule.slot_duration, end))
            current += step
    return [slots[key] for key in sorted(slots)]


class AvailabilityService:
    """Service for availability rule business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AvailabilityRepository()

    def list_rules(self, active_only: bool = False) -> list[AvailabilityRule]:
        return self.repo.get_rules(self.db, active_only=active_only)

    def get_rule(self, rule_id: int) -> AvailabilityRule:
        rule = self.repo.get_rule(self.db, rule_id)
        if not rule:
            raise NotFoundError(f"Availability rule {rule_id} not found")
        return rule

    def _validate(
        self,
        day_of_week: int,
        start_time: str,
        end_time: str,
        slot_duration: int,
        slot_gap: int,
        is_active: bool,
        exclude_id: Optional[int] = None,
    ) -> None:
        if day_of_week not in range(7):
            raise ValidationError("day_of_week must be between 0 (Monday) and 6 (Sunday)")
        try:
            start = dates.parse_time_of_day(start_time)
            end = dates.parse_time_of_day(end_time)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if start >= end:
            raise ValidationError("start_time must be before end_time")
        if slot_duration <= 0:
            raise ValidationError("slot_duration must be positive")
        if slot_gap < 0:
            raise ValidationError("slot_gap cannot be negative")
        if start + slot_duration > end:
            raise ValidationError("slot_duration does not fit between start_time and end_time")

        if not is_active:
            return

        for other in self.repo.get_rules_for_day(self.db, day_of_week, active_only=True):
            if other.id == exclude_id:
                continue
            other_start = dates.parse_time_of_day(other.start_time)
            other_end = dates.parse_time_of_day(other.end_time)
            if dates.overlaps(start, end, other_start, other_end):
                raise OverlappingRule(
                    f"Overlaps rule {other.id} ({dates.WEEKDAY_NAMES[day_of_week]} "
                    f"{other.start_time}-{other.end_time})"
                )

    def create_rule(
        self,
        day_of_week: int,
        start_time: str,
        end_time: str,
        slot_duration: int = DEFAULT_SLOT_DURATION,
        slot_gap: int = DEFAULT_SLOT_GAP,
        is_active: bool = True,
    ) -> AvailabilityRule:
        self._validate(day_of_week, start_time, end_time, slot_duration, slot_gap, is_active)

        rule = self.repo.add_rule(
            self.db,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            slot_duration=slot_duration,
            slot_gap=slot_gap,
            is_active=is_active,
        )
        AuditRepository.record(self.db, AuditKind.AVAILABILITY_RULE_CREATED, after=snapshot(rule, RULE_FIELDS))
        self.db.commit()
        self.db.refresh(rule)
        logger.info(f"✅ Availability rule {rule.id} created: day {day_of_week} {start_time}-{end_time}")
        return rule

    def update_rule(self, rule_id: int, **changes) -> AvailabilityRule:
        rule = self.get_rule(rule_id)
        before = snapshot(rule, RULE_FIELDS)

        merged = {field: getattr(rule, field) for field in RULE_FIELDS if field != "id"}
        merged.update({k: v for k, v in changes.items() if v is not None and k in merged})
        self._validate(exclude_id=rule.id, **merged)

        for key, value in merged.items():
            setattr(rule, key, value)
        AuditRepository.record(
            self.db, AuditKind.AVAILABILITY_RULE_UPDATED, before=before, after=snapshot(rule, RULE_FIELDS)
        )
        self.db.commit()
        self.db.refresh(rule)
        logger.info(f"✅ Availability rule {rule.id} updated")
        return rule

    def toggle_rule(self, rule_id: int) -> AvailabilityRule:
        """Flip the active flag; activation re-checks overlaps"""
        rule = self.get_rule(rule_id)
        return self.update_rule(rule.id, is_active=not rule.is_active)

    def delete_rule(self, rule_id: int) -> None:
        rule = self.get_rule(rule_id)
        AuditRepository.record(self.db, AuditKind.AVAILABILITY_RULE_DELETED, before=snapshot(rule, RULE_FIELDS))
        self.repo.delete_rule(self.db, rule)
        self.db.commit()
        logger.info(f"🗑️ Availability rule {rule_id} deleted")

    def slots_for_weekday(self, day_of_week: int) -> list[SlotCandidate]:
        return generate_slots(self.repo.get_rules_for_day(self.db, day_of_week, active_only=True))

    def summary(self) -> dict:
        """Active weekdays, total weekly hours and weekly slot count"""
        rules = self.repo.get_rules(self.db, active_only=True)
        days = sorted({rule.day_of_week for rule in rules})
        total_minutes = sum(
            dates.parse_time_of_day(rule.end_time) - dates.parse_time_of_day(rule.start_time) for rule in rules
        )
        total_slots = sum(len(generate_slots([rule])) for rule in rules)
        return {
            "active_days": days,
            "active_day_names": [dates.WEEKDAY_NAMES[d] for d in days],
            "total_weekly_hours": round(total_minutes / 60, 2),
            "total_weekly_slots": total_slots,
            "rule_count": len(rules),
        }
