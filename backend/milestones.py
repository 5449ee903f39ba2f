"""
Study Tracker - Milestone Catalog & Trigger Engine
Celebrate study progress with cooldown-protected milestone events
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Iterable

import pydantic

from conditions import evaluate_condition, satisfied_metrics
from database import Database
from errors import StoreError, ValidationError
from logger import get_logger
from models import MilestoneDefinition, MilestoneCheckResponse, ProgressSnapshot

log = get_logger("milestones")

DEFAULT_COOLDOWN = timedelta(hours=24)


# ============================================
# MILESTONE DEFINITIONS
# ============================================

# Seeded in this order; the trigger engine walks them in the same order.
MILESTONE_DEFINITIONS = {
    "first_hour": {
        "title": "First Hour",
        "description": "Study for a total of one hour",
        "celebration_message": "Your first hour is in the books. Keep going!",
        "icon": "clock",
        "trigger_condition": {"total_hours": 1},
        "xp_bonus": 25
    },
    "ten_hours": {
        "title": "Ten Hour Club",
        "description": "Study for a total of ten hours",
        "celebration_message": "Ten hours of focused study. Impressive!",
        "icon": "hourglass",
        "trigger_condition": {"total_hours": 10},
        "xp_bonus": 100
    },
    "fifty_hours": {
        "title": "Half Century",
        "description": "Study for a total of fifty hours",
        "celebration_message": "Fifty hours! You're building real expertise.",
        "icon": "award",
        "trigger_condition": {"total_hours": 50},
        "xp_bonus": 300
    },
    "hundred_pages": {
        "title": "Page Turner",
        "description": "Read one hundred pages",
        "celebration_message": "One hundred pages read!",
        "icon": "book",
        "trigger_condition": {"total_pages": 100},
        "xp_bonus": 50
    },
    "five_hundred_pages": {
        "title": "Bookworm",
        "description": "Read five hundred pages",
        "celebration_message": "Five hundred pages. That's a whole textbook!",
        "icon": "book-open",
        "trigger_condition": {"total_pages": 500},
        "xp_bonus": 200
    },
    "week_streak": {
        "title": "Week Warrior",
        "description": "Study seven days in a row",
        "celebration_message": "A full week of daily study!",
        "icon": "flame",
        "trigger_condition": {"streak_days": 7},
        "xp_bonus": 75
    },
    "month_streak": {
        "title": "Month Master",
        "description": "Study thirty days in a row",
        "celebration_message": "Thirty days straight. Unstoppable!",
        "icon": "calendar-check",
        "trigger_condition": {"streak_days": 30},
        "xp_bonus": 400
    },
    "dedicated_reader": {
        "title": "Dedicated Reader",
        "description": "Study 25 hours or read 1000 pages",
        "celebration_message": "Your dedication to reading is paying off!",
        "icon": "star",
        "trigger_condition": {"total_hours": 25, "total_pages": 1000},
        "xp_bonus": 250
    },
}


def build_catalog(definitions: Optional[Dict[str, Dict[str, Any]]] = None) -> List[MilestoneDefinition]:
    """Validate raw definitions into typed milestones (keys and thresholds checked here)."""
    definitions = MILESTONE_DEFINITIONS if definitions is None else definitions
    try:
        return [MilestoneDefinition(key=key, **data) for key, data in definitions.items()]
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid milestone definition: {e.errors()[0]['msg']}") from e


# ============================================
# PERSISTENCE
# ============================================

def _definition_from_row(row: dict) -> MilestoneDefinition:
    """Parse a study_milestones row, raising StoreError for malformed rows."""
    try:
        return MilestoneDefinition.from_row(row)
    except (pydantic.ValidationError, KeyError) as e:
        key = row.get("milestone_key", "<unknown>")
        raise StoreError(f"Malformed milestone row {key}: {e}", cause=e) from e


class MilestoneRepository:
    """study_milestones / user_settings queries."""

    def __init__(self, db: Database):
        self.db = db

    async def insert_if_absent(self, milestone: MilestoneDefinition) -> bool:
        """Insert a definition unless its key exists. Returns True if inserted."""
        row = await self.db.execute_returning("""
            INSERT INTO study_milestones
            (milestone_key, title, description, celebration_message, icon,
             trigger_condition, xp_bonus)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (milestone_key) DO NOTHING
            RETURNING id
        """, milestone.key, milestone.title, milestone.description,
            milestone.celebration_message, milestone.icon,
            milestone.condition_payload(), milestone.xp_bonus)
        return row is not None

    async def list_all(self, errors: Optional[List[StoreError]] = None) -> List[MilestoneDefinition]:
        """Every readable definition in catalog order.

        Rows that do not parse are logged and skipped; when ``errors`` is
        given each one is appended to it.
        """
        rows = await self.db.fetch("SELECT * FROM study_milestones ORDER BY id")
        milestones = []
        for row in rows:
            try:
                milestones.append(_definition_from_row(row))
            except StoreError as e:
                log.error(e.message)
                if errors is not None:
                    errors.append(e)
        return milestones

    async def fire(
        self,
        key: str,
        now: datetime,
        cooldown_start: datetime
    ) -> Optional[MilestoneDefinition]:
        """Record a fire unless the milestone fired after cooldown_start.

        Returns the updated definition, or None when another caller fired
        it first.
        """
        row = await self.db.execute_returning("""
            UPDATE study_milestones
            SET last_triggered = $2, times_triggered = times_triggered + 1
            WHERE milestone_key = $1
              AND (last_triggered IS NULL OR last_triggered <= $3)
            RETURNING *
        """, key, now, cooldown_start)
        return _definition_from_row(row) if row else None

    async def add_bonus_xp(self, setting_key: str, amount: int) -> int:
        """Credit XP to the user's running total. Returns the new total."""
        row = await self.db.execute_returning("""
            INSERT INTO user_settings (setting_key, setting_value)
            VALUES ($1, ($2::INTEGER)::TEXT)
            ON CONFLICT (setting_key) DO UPDATE SET
                setting_value = (
                    COALESCE(NULLIF(user_settings.setting_value, ''), '0')::INTEGER + $2::INTEGER
                )::TEXT,
                updated_at = NOW()
            RETURNING setting_value
        """, setting_key, amount)
        return int(row["setting_value"])


# ============================================
# TRIGGER ENGINE
# ============================================

@dataclass
class MilestoneCheckResult:
    triggered: List[MilestoneDefinition] = field(default_factory=list)
    total_bonus_xp: int = 0
    errors: List[StoreError] = field(default_factory=list)

    def to_response(self) -> MilestoneCheckResponse:
        return MilestoneCheckResponse(
            triggered_milestones=self.triggered,
            total_bonus_xp=self.total_bonus_xp,
            errors=[e.message for e in self.errors],
        )


def _utc(moment: Optional[datetime]) -> datetime:
    if moment is None:
        return datetime.now(timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class MilestoneEngine:
    """Evaluates progress snapshots against the milestone catalog."""

    def __init__(
        self,
        repository: MilestoneRepository,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        award_xp: bool = True,
        xp_setting_key: str = "total_xp"
    ):
        self.repository = repository
        self.cooldown = cooldown
        self.award_xp = award_xp
        self.xp_setting_key = xp_setting_key

    def in_cooldown(self, milestone: MilestoneDefinition, now: datetime) -> bool:
        if milestone.last_triggered is None:
            return False
        return _utc(milestone.last_triggered) > now - self.cooldown

    async def seed_catalog(self, definitions: Optional[Iterable[MilestoneDefinition]] = None) -> int:
        """Insert definitions whose keys are missing. Returns count inserted."""
        definitions = build_catalog() if definitions is None else definitions
        inserted = 0
        for milestone in definitions:
            if await self.repository.insert_if_absent(milestone):
                inserted += 1
        log.info("Milestone catalog seeded: %d new definitions", inserted)
        return inserted

    async def initialize(self) -> Dict[str, Any]:
        """
        Seed the built-in catalog.
        Safe to call on every startup.
        """
        inserted = await self.seed_catalog()
        return {"success": True, "definitions_seeded": inserted}

    async def list_milestones(self) -> List[MilestoneDefinition]:
        return await self.repository.list_all()

    async def check_milestones(
        self,
        snapshot: ProgressSnapshot,
        now: Optional[datetime] = None
    ) -> MilestoneCheckResult:
        """
        Fire every milestone whose condition holds and which is out of cooldown.

        Milestones are evaluated in catalog order. A store failure or an
        unreadable row for one milestone is recorded in the result and the
        loop moves on.

        Args:
            snapshot: Current progress metrics
            now: Reference time for the cooldown window (defaults to UTC now)

        Returns:
            MilestoneCheckResult with the pre-fire definitions of fired milestones
        """
        now = _utc(now)
        cooldown_start = now - self.cooldown
        result = MilestoneCheckResult()

        for milestone in await self.repository.list_all(errors=result.errors):
            if self.in_cooldown(milestone, now):
                continue
            if not evaluate_condition(milestone.trigger_condition, snapshot):
                continue

            try:
                fired = await self.repository.fire(milestone.key, now, cooldown_start)
            except StoreError as e:
                log.error("Failed to record milestone %s: %s", milestone.key, e.message)
                result.errors.append(e)
                continue

            if fired is None:
                # Lost the conditional update to a concurrent check
                log.debug("Milestone %s already fired by another caller", milestone.key)
                continue

            log.info(
                "Milestone fired: %s (met %s, fire #%d)",
                milestone.key,
                ", ".join(satisfied_metrics(milestone.trigger_condition, snapshot)),
                fired.times_triggered
            )
            result.triggered.append(milestone)

        result.total_bonus_xp = sum(m.xp_bonus for m in result.triggered)
        if self.award_xp and result.total_bonus_xp > 0:
            try:
                new_total = await self.repository.add_bonus_xp(
                    self.xp_setting_key, result.total_bonus_xp
                )
                log.info("Awarded %d bonus XP (total %d)", result.total_bonus_xp, new_total)
            except StoreError as e:
                log.error("Failed to award bonus XP: %s", e.message)
                result.errors.append(e)

        return result
