"""Assignment rules for weekly schedules.

Two rules apply to weekly schedules only; daily schedules are always allowed:

* weekly exclusivity: a staff member may hold at most one active
  (``scheduled`` or ``in-progress``) weekly schedule per ISO week;
* consecutive-week category: a staff member who completed a task of the same
  category within the seven days before the candidate date may not take it
  again.

The checks read the store without locking, so they are advisory. The
orchestrator backs exclusivity with an atomic weekly claim before it commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..domain.models import ACTIVE_STATUSES, ScheduleStatus, ScheduleType
from ..domain.weeks import ensure_utc, resolve_tz, week_bounds
from ..store import SCHEDULES, Between, EntityStore, Eq, In, Query

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictDecision:
    allowed: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class PreviousTask:
    title: str
    category: str
    schedule_id: str


@dataclass(frozen=True)
class ConsecutiveWeekResult:
    available: bool
    reason: Optional[str] = None
    previous_task: Optional[PreviousTask] = None

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "reason": self.reason,
            "previous_task": (
                {
                    "title": self.previous_task.title,
                    "category": self.previous_task.category,
                    "schedule_id": self.previous_task.schedule_id,
                }
                if self.previous_task
                else None
            ),
        }


class ConflictChecker:
    """Decide whether a staff member may take a schedule on a given date."""

    def __init__(self, store: EntityStore, tz: str = "UTC") -> None:
        self.store = store
        self.tz = tz

    def check_assignment(
        self,
        staff_id: str,
        schedule_type: ScheduleType | str,
        task_category: str,
        scheduled_date: datetime,
        staff_name: Optional[str] = None,
    ) -> ConflictDecision:
        if ScheduleType(schedule_type) != ScheduleType.WEEKLY:
            return ConflictDecision(allowed=True)

        label = staff_name or staff_id
        existing = self.active_weekly_schedules(staff_id, scheduled_date)
        if existing:
            reason = (
                f"Staff {label} already has {len(existing)} weekly "
                f"schedule(s) in the week of {self._week_label(scheduled_date)}"
            )
            logger.info(
                "weekly exclusivity conflict",
                extra={"staff_id": staff_id, "existing": len(existing)},
            )
            return ConflictDecision(allowed=False, reason=reason)

        consecutive = self.check_consecutive_week(staff_id, task_category, scheduled_date)
        if not consecutive.available:
            logger.info(
                "consecutive week conflict",
                extra={"staff_id": staff_id, "task_category": task_category},
            )
            return ConflictDecision(allowed=False, reason=f"Staff {label}: {consecutive.reason}")

        return ConflictDecision(allowed=True)

    def active_weekly_schedules(self, staff_id: str, moment: datetime) -> list[dict]:
        start, end = week_bounds(moment, self.tz)
        return self.store.find(
            SCHEDULES,
            Query.where(
                Eq("assignments.staff_id", staff_id),
                Eq("schedule_type", ScheduleType.WEEKLY.value),
                Between("scheduled_date", start, end),
                In("status", [s.value for s in ACTIVE_STATUSES]),
            ),
        )

    def check_consecutive_week(
        self, staff_id: str, task_category: str, scheduled_date: datetime
    ) -> ConsecutiveWeekResult:
        """Look for a completed same-category task in the prior seven days."""
        moment = ensure_utc(scheduled_date)
        previous = self.store.find(
            SCHEDULES,
            Query.where(
                Eq("assignments.staff_id", staff_id),
                Eq("task_category", task_category),
                Eq("status", ScheduleStatus.COMPLETED.value),
                Between("scheduled_date", moment - timedelta(days=7), moment, end_inclusive=False),
                sort=[("scheduled_date", True)],
                limit=1,
            ),
        )
        if not previous:
            return ConsecutiveWeekResult(available=True)
        doc = previous[0]
        return ConsecutiveWeekResult(
            available=False,
            reason=f'Worked on similar "{doc["task_title"]}" task last week',
            previous_task=PreviousTask(
                title=doc["task_title"],
                category=doc.get("task_category") or task_category,
                schedule_id=doc["schedule_id"],
            ),
        )

    def _week_label(self, moment: datetime) -> str:
        start, _ = week_bounds(moment, self.tz)
        return start.astimezone(resolve_tz(self.tz)).date().isoformat()
