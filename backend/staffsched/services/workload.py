"""Read-side reductions over stored schedules: workload, statistics, reports."""

from __future__ import annotations

import logging
import math
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from ..core.errors import NotFoundError, ValidationError
from ..domain.models import ACTIVE_STATUSES, Schedule, ScheduleStatus, ScheduleType, Staff
from ..domain.schemas import (
    DateAvailability,
    GroupedCounts,
    RecentSchedule,
    RecommendedTimes,
    ReportPeriod,
    ReportRow,
    ReportStats,
    ScheduleCounts,
    ScheduleReport,
    ScheduleStatistics,
    StaffSummary,
    StaffWeek,
    StaffWorkload,
    TimeSlot,
    WeeklySummary,
    WorkloadEntry,
)
from ..domain.weeks import (
    at_local_hour,
    day_bounds,
    ensure_utc,
    resolve_tz,
    week_bounds,
    week_start_from_number,
)
from ..store import SCHEDULES, STAFF, Between, EntityStore, Eq, In, Query

logger = logging.getLogger(__name__)

RECENT_LIMIT = 5
RECOMMENDATION_LIMIT = 3
WORKDAY_START, WORKDAY_END = 9, 17
WEEK_VIEW_STATUSES = (ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS, ScheduleStatus.COMPLETED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _entry(schedule: Schedule) -> WorkloadEntry:
    return WorkloadEntry(
        id=schedule.id,
        schedule_id=schedule.schedule_id,
        task_title=schedule.task_title,
        schedule_type=schedule.schedule_type,
        scheduled_date=schedule.scheduled_date,
        estimated_hours=schedule.estimated_hours,
        status=schedule.status,
    )


def _summary(staff: Staff) -> StaffSummary:
    return StaffSummary(id=staff.id, name=staff.name, department=staff.department)


def group_counts(schedules: Iterable[Schedule]) -> dict:
    """Count schedules by status, priority, type and department."""
    by_status: Counter = Counter()
    by_priority: Counter = Counter()
    by_type: Counter = Counter()
    by_department: Counter = Counter()
    for s in schedules:
        by_status[s.status.value] += 1
        by_priority[s.priority.value] += 1
        by_type[s.schedule_type.value] += 1
        by_department[s.department or "General"] += 1
    return {
        "by_status": dict(by_status),
        "by_priority": dict(by_priority),
        "by_schedule_type": dict(by_type),
        "by_department": dict(by_department),
    }


class WorkloadAggregator:
    def __init__(
        self,
        store: EntityStore,
        tz: str = "UTC",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.tz = tz
        self.clock = clock

    def _schedules(self, *predicates, sort=(("scheduled_date", False),)) -> List[Schedule]:
        docs = self.store.find(SCHEDULES, Query.where(*predicates, sort=sort))
        return [Schedule.from_document(doc) for doc in docs]

    def _staff(self, staff_id: str) -> Staff:
        doc = self.store.find_by_id(STAFF, staff_id)
        if doc is None:
            raise NotFoundError("Staff not found", {"staff_id": staff_id})
        return Staff.from_document(doc)

    def get_staff_workload(self, staff_id: str, start_date: datetime, end_date: datetime) -> StaffWorkload:
        """Totals over schedules naming ``staff_id`` dated within ``[start, end]``.

        Hours are summed regardless of status; anything not completed counts
        as pending.
        """
        staff = self._staff(staff_id)
        schedules = self._schedules(
            Eq("assignments.staff_id", staff_id),
            Between("scheduled_date", ensure_utc(start_date), ensure_utc(end_date)),
        )
        completed = sum(1 for s in schedules if s.status == ScheduleStatus.COMPLETED)
        return StaffWorkload(
            staff=_summary(staff),
            total_schedules=len(schedules),
            total_hours=sum(s.estimated_hours for s in schedules),
            completed_schedules=completed,
            pending_schedules=len(schedules) - completed,
            schedules=[_entry(s) for s in schedules],
        )

    def get_staff_weekly_schedule(self, staff_id: str, week_number: int, year: int) -> StaffWeek:
        staff = self._staff(staff_id)
        try:
            start = week_start_from_number(week_number, year, self.tz)
        except ValueError:
            raise ValidationError(
                f"Invalid ISO week {week_number} for {year}", {"field": "week_number"}
            ) from None
        start, end = week_bounds(start, self.tz)
        schedules = self._schedules(
            Eq("assignments.staff_id", staff_id),
            Between("scheduled_date", start, end),
            In("status", [s.value for s in WEEK_VIEW_STATUSES]),
        )
        zone = resolve_tz(self.tz)
        return StaffWeek(
            staff_name=staff.name,
            week_number=week_number,
            year=year,
            week_range=f"{start.astimezone(zone):%b %d} - {end.astimezone(zone):%b %d}",
            schedules=[_entry(s) for s in schedules],
            weekly_summary=WeeklySummary(
                total_tasks=len(schedules),
                total_hours=sum(s.estimated_hours for s in schedules),
                daily_tasks=sum(1 for s in schedules if s.schedule_type == ScheduleType.DAILY),
                weekly_tasks=sum(1 for s in schedules if s.schedule_type == ScheduleType.WEEKLY),
            ),
        )

    def get_schedule_statistics(self, now: Optional[datetime] = None) -> ScheduleStatistics:
        now = ensure_utc(now) if now else self.clock()
        schedules = self._schedules()
        week_start, week_end = week_bounds(now, self.tz)

        upcoming = sum(
            1 for s in schedules if s.status == ScheduleStatus.SCHEDULED and s.scheduled_date > now
        )
        in_progress = sum(1 for s in schedules if s.status == ScheduleStatus.IN_PROGRESS)
        this_week = sum(1 for s in schedules if week_start <= s.scheduled_date <= week_end)

        oldest = datetime.min.replace(tzinfo=timezone.utc)
        recent = sorted(schedules, key=lambda s: s.created_at or oldest, reverse=True)[:RECENT_LIMIT]
        return ScheduleStatistics(
            counts=ScheduleCounts(
                total=len(schedules), upcoming=upcoming, in_progress=in_progress, this_week=this_week
            ),
            groups=GroupedCounts(**group_counts(schedules)),
            recent_schedules=[
                RecentSchedule(
                    id=s.id,
                    schedule_id=s.schedule_id,
                    task_title=s.task_title,
                    schedule_type=s.schedule_type,
                    scheduled_date=s.scheduled_date,
                    staff_count=len(s.assignments),
                )
                for s in recent
            ],
        )

    def generate_report(
        self,
        start_date: datetime,
        end_date: datetime,
        department: Optional[str] = None,
        schedule_type: Optional[str] = None,
    ) -> ScheduleReport:
        start, end = ensure_utc(start_date), ensure_utc(end_date)
        if end < start:
            raise ValidationError("end_date must not be before start_date", {"field": "end_date"})
        predicates = [Between("scheduled_date", start, end)]
        if department:
            predicates.append(Eq("department", department))
        if schedule_type:
            predicates.append(Eq("schedule_type", schedule_type))
        schedules = self._schedules(*predicates)

        logger.info(
            "report generated",
            extra={"start": start.isoformat(), "end": end.isoformat(), "schedules": len(schedules)},
        )
        return ScheduleReport(
            period=ReportPeriod(start_date=start, end_date=end),
            stats=ReportStats(
                total_schedules=len(schedules),
                total_hours=sum(s.estimated_hours for s in schedules),
                **group_counts(schedules),
            ),
            schedules=[
                ReportRow(
                    id=s.id,
                    schedule_id=s.schedule_id,
                    task_title=s.task_title,
                    schedule_type=s.schedule_type,
                    scheduled_date=s.scheduled_date,
                    estimated_hours=s.estimated_hours,
                    priority=s.priority,
                    status=s.status,
                    department=s.department,
                    staff_count=len(s.assignments),
                )
                for s in schedules
            ],
        )

    def check_date_availability(
        self,
        date: datetime,
        department: Optional[str] = None,
        schedule_type: Optional[str] = None,
    ) -> DateAvailability:
        """Active schedules on ``date`` and the staff not assigned to any of them."""
        start, end = day_bounds(date, self.tz)
        predicates = [
            Between("scheduled_date", start, end),
            In("status", [s.value for s in ACTIVE_STATUSES]),
        ]
        if department:
            predicates.append(Eq("department", department))
        if schedule_type:
            predicates.append(Eq("schedule_type", schedule_type))
        schedules = self._schedules(*predicates)
        busy = {staff_id for s in schedules for staff_id in s.staff_ids}

        staff_query = Query.where(Eq("department", department)) if department else None
        available = [
            Staff.from_document(doc)
            for doc in self.store.find(STAFF, staff_query)
            if doc["id"] not in busy
        ]
        return DateAvailability(
            date=start,
            scheduled_tasks=len(schedules),
            scheduled_staff=len(busy),
            available_staff=[_summary(s) for s in sorted(available, key=lambda s: s.name)],
        )

    def get_recommended_times(
        self,
        date: datetime,
        duration: float,
        department: Optional[str] = None,
        schedule_type: str = "daily",
    ) -> RecommendedTimes:
        """Whole-hour start times inside the working day that overlap no schedule.

        An hour is busy when a non-cancelled schedule of ``schedule_type`` (and
        ``department``, if given) on that local day starts in it or runs into
        it. At most ``RECOMMENDATION_LIMIT`` slots are returned, earliest first.
        """
        start, end = day_bounds(date, self.tz)
        predicates = [
            Between("scheduled_date", start, end),
            Eq("schedule_type", schedule_type),
            In("status", [s.value for s in WEEK_VIEW_STATUSES]),
        ]
        if department:
            predicates.append(Eq("department", department))
        zone = resolve_tz(self.tz)

        busy = set()
        for s in self._schedules(*predicates):
            first = s.scheduled_date.astimezone(zone).hour
            busy.update(range(first, first + math.ceil(s.estimated_hours)))

        span = math.ceil(duration)
        slots: List[TimeSlot] = []
        for hour in range(WORKDAY_START, int(WORKDAY_END - duration) + 1):
            if busy.intersection(range(hour, hour + span)):
                continue
            slot_start = at_local_hour(start, hour, self.tz)
            slot_end = slot_start + timedelta(hours=duration)
            slots.append(
                TimeSlot(
                    time=f"{hour:02d}:00",
                    display=f"{slot_start.astimezone(zone):%H:%M} - {slot_end.astimezone(zone):%H:%M}",
                    start=slot_start,
                )
            )
            if len(slots) == RECOMMENDATION_LIMIT:
                break
        return RecommendedTimes(date=start, duration=duration, recommendations=slots)
