"""Schedule orchestration: create, read, edit and delete schedules.

Creation is all-or-nothing up to the first write: the schedule type, task and
every staff member are validated, and weekly conflicts are checked per staff
member in input order, before anything is persisted. Notification dispatch is
a separate step that runs after the schedule is stored; its outcome is
written back with a version check so it cannot clobber a concurrent edit.
"""

from __future__ import annotations

import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from ..core.config import Settings, get_settings
from ..core.errors import (
    ConcurrencyError,
    ConflictError,
    DispatchError,
    DuplicateKeyError,
    NotFoundError,
    ValidationError,
)
from ..core.metrics import (
    CONFLICTS_PREVENTED,
    NOTIFICATIONS_FAILED,
    NOTIFICATIONS_SENT,
    SCHEDULES_CREATED,
    MetricsRecorder,
    PrometheusMetrics,
)
from ..domain.models import (
    Assignment,
    AssignmentStatus,
    DispatchState,
    EmailStatus,
    NotificationResult,
    Schedule,
    ScheduleStatus,
    ScheduleType,
    Staff,
    Task,
    is_legal_transition,
)
from ..domain.schemas import ScheduleCreate, ScheduleFilters, ScheduleUpdate
from ..domain.weeks import day_bounds, ensure_utc, iso_week_key
from ..store import (
    SCHEDULES,
    STAFF,
    TASKS,
    WEEKLY_CLAIMS,
    Between,
    EntityStore,
    Eq,
    Query,
    Search,
)
from .conflicts import ConflictChecker, ConsecutiveWeekResult
from .mailer import OutgoingMessage, build_mailer
from .notifications import NotificationDispatcher
from .workload import WorkloadAggregator

logger = logging.getLogger(__name__)

DISPATCH_SAVE_ATTEMPTS = 3
EDITABLE_FIELDS = (
    "priority",
    "estimated_hours",
    "scheduled_date",
    "end_date",
    "status",
    "department",
    "notes",
    "location",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_schedule_id(schedule_type: ScheduleType, rng: random.Random | None = None) -> str:
    """``WK-`` / ``DY-`` prefix, last six digits of the ms clock, three random digits."""
    prefix = "WK" if schedule_type == ScheduleType.WEEKLY else "DY"
    stamp = str(int(time.time() * 1000))[-6:]
    suffix = (rng or random).randrange(1000)
    return f"{prefix}-{stamp}{suffix:03d}"


@dataclass
class ScheduleResult:
    """A schedule together with the notification results of its last dispatch."""

    schedule: Schedule
    notifications: List[NotificationResult] = field(default_factory=list)


class ScheduleService:
    def __init__(
        self,
        store: EntityStore,
        checker: Optional[ConflictChecker] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        metrics: Optional[MetricsRecorder] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.checker = checker or ConflictChecker(store, self.settings.TZ)
        self.dispatcher = dispatcher or NotificationDispatcher(build_mailer(self.settings), clock=clock)
        self.metrics = metrics or PrometheusMetrics()
        self.workload = WorkloadAggregator(store, self.settings.TZ, clock=clock)
        self.clock = clock

    # -- creation ---------------------------------------------------------

    def create_schedule(self, data: ScheduleCreate) -> ScheduleResult:
        schedule_type = self._validate_type(data.schedule_type)
        task = self._load_task(data.task_id)
        category = task.category or "general"
        scheduled_date = ensure_utc(data.scheduled_date)

        if len(set(data.staff_ids)) != len(data.staff_ids):
            raise ValidationError(
                "Each staff member may be listed only once", {"field": "staff_ids"}
            )

        assignments: List[Assignment] = []
        for staff_id in data.staff_ids:
            staff = self._load_staff(staff_id)
            if schedule_type == ScheduleType.WEEKLY:
                decision = self.checker.check_assignment(
                    staff.id, schedule_type, category, scheduled_date, staff_name=staff.name
                )
                if not decision.allowed:
                    self.metrics.increment(CONFLICTS_PREVENTED)
                    raise ConflictError(decision.reason, {"staff_id": staff.id})
            assignments.append(Assignment.snapshot(staff))

        if data.end_date is not None:
            end_date = ensure_utc(data.end_date)
        else:
            end_date = scheduled_date + timedelta(hours=data.estimated_hours)

        now = self.clock()
        schedule = Schedule(
            id=uuid.uuid4().hex,
            schedule_id="",
            schedule_type=schedule_type,
            task_id=task.id,
            task_title=task.title,
            task_category=category,
            task_description=data.task_description or task.description,
            assignments=assignments,
            priority=data.priority,
            estimated_hours=data.estimated_hours,
            scheduled_date=scheduled_date,
            end_date=end_date,
            recurrence=data.recurrence,
            department=data.department or task.department or "General",
            notes=data.notes,
            location=data.location or "Office",
            status=ScheduleStatus.SCHEDULED,
            send_email=data.send_email,
            dispatch_state=(
                DispatchState.PENDING_DISPATCH if data.send_email else DispatchState.NOT_REQUESTED
            ),
            created_by=data.created_by,
            created_at=now,
            updated_at=now,
        )

        claims = self._claim_weeks(schedule) if schedule_type == ScheduleType.WEEKLY else []
        try:
            self._insert(schedule)
        except Exception:
            self._release_keys(claims, schedule.id)
            raise

        self.metrics.increment(SCHEDULES_CREATED)
        logger.info(
            "schedule created",
            extra={
                "schedule_id": schedule.schedule_id,
                "schedule_type": schedule_type.value,
                "assignees": len(assignments),
            },
        )

        if not data.send_email:
            logger.info("notifications disabled", extra={"schedule_id": schedule.schedule_id})
            return ScheduleResult(schedule=schedule)
        return self._dispatch(schedule)

    def _insert(self, schedule: Schedule) -> None:
        attempts = max(1, self.settings.SCHEDULE_ID_RETRIES)
        for attempt in range(1, attempts + 1):
            schedule.schedule_id = generate_schedule_id(schedule.schedule_type)
            try:
                stored = self.store.insert(SCHEDULES, schedule.to_document())
            except DuplicateKeyError:
                if attempt == attempts:
                    raise
                logger.warning(
                    "schedule id collision, regenerating",
                    extra={"schedule_id": schedule.schedule_id, "attempt": attempt},
                )
                continue
            schedule.version = stored["version"]
            return

    # -- notification dispatch -------------------------------------------

    def dispatch_notifications(self, id: str) -> ScheduleResult:
        """Send (or resend) notifications to every assignee not yet reached."""
        schedule = self.get_schedule_by_id(id)
        pending = [a for a in schedule.assignments if a.email_status != EmailStatus.SENT]
        if not pending:
            return ScheduleResult(schedule=schedule)
        return self._dispatch(schedule, pending)

    def _dispatch(
        self, schedule: Schedule, only: Optional[List[Assignment]] = None
    ) -> ScheduleResult:
        results = self.dispatcher.dispatch(schedule, only)
        sent = sum(1 for r in results if r.success)
        self.metrics.increment(NOTIFICATIONS_SENT, sent)
        self.metrics.increment(NOTIFICATIONS_FAILED, len(results) - sent)
        return ScheduleResult(schedule=self._persist_dispatch(schedule), notifications=results)

    def _persist_dispatch(self, schedule: Schedule) -> Schedule:
        outcome: Dict[str, Assignment] = {a.staff_id: a for a in schedule.assignments}
        email_state = (schedule.email_sent, schedule.email_status, schedule.last_notification_sent)
        current = schedule
        for attempt in range(1, DISPATCH_SAVE_ATTEMPTS + 1):
            current.dispatch_state = DispatchState.DISPATCHED
            current.updated_at = self.clock()
            try:
                stored = self.store.save(
                    SCHEDULES, current.to_document(), expected_version=current.version
                )
            except ConcurrencyError:
                logger.warning(
                    "schedule changed during dispatch, re-applying outcome",
                    extra={"schedule_id": schedule.schedule_id, "attempt": attempt},
                )
                fresh = self.store.find_by_id(SCHEDULES, schedule.id)
                if fresh is None:
                    logger.warning(
                        "schedule removed before dispatch outcome was saved",
                        extra={"schedule_id": schedule.schedule_id},
                    )
                    return schedule
                current = Schedule.from_document(fresh)
                for assignment in current.assignments:
                    source = outcome.get(assignment.staff_id)
                    if source is not None:
                        assignment.notification_sent = source.notification_sent
                        assignment.notification_sent_at = source.notification_sent_at
                        assignment.email_status = source.email_status
                        assignment.email_error = source.email_error
                        assignment.message_id = source.message_id
                current.email_sent, current.email_status, current.last_notification_sent = email_state
                continue
            current.version = stored["version"]
            return current
        # Left pending so a later dispatch_notifications call can record it.
        logger.error(
            "could not record notification outcome",
            extra={"schedule_id": schedule.schedule_id, "attempts": DISPATCH_SAVE_ATTEMPTS},
        )
        current.dispatch_state = DispatchState.PENDING_DISPATCH
        return current

    def test_email_service(self, recipient: Optional[str] = None) -> dict:
        """Send a probe message through the configured transport."""
        target = recipient or self.settings.MAIL_SENDER
        probe = OutgoingMessage(
            to=target,
            subject="Test Email - Task Scheduler System",
            html_body="<p>This is a test message from the task scheduler.</p>",
            text_body="This is a test message from the task scheduler.",
        )
        timestamp = self.clock().isoformat()
        try:
            result = self.dispatcher.mailer.send(probe)
        except DispatchError as exc:
            logger.exception("test email failed", extra={"recipient": target})
            return {"success": False, "message": "Test email failed", "error": str(exc), "timestamp": timestamp}
        if not result.success:
            return {"success": False, "message": "Test email failed", "error": result.error, "timestamp": timestamp}
        return {
            "success": True,
            "message": "Test email sent successfully",
            "details": {"recipient": target, "message_id": result.message_id},
            "timestamp": timestamp,
        }

    # -- reads --------------------------------------------------------------

    def get_all_schedules(self, filters: Optional[ScheduleFilters] = None) -> List[Schedule]:
        filters = filters or ScheduleFilters()
        predicates = []
        for name in ("schedule_type", "status", "priority"):
            value = getattr(filters, name)
            if value and value != "all":
                predicates.append(Eq(name, value))
        if filters.start_date or filters.end_date:
            predicates.append(
                Between(
                    "scheduled_date",
                    ensure_utc(filters.start_date) if filters.start_date else None,
                    ensure_utc(filters.end_date) if filters.end_date else None,
                )
            )
        if filters.date:
            start, end = day_bounds(filters.date, self.settings.TZ)
            predicates.append(Between("scheduled_date", start, end))
        if filters.staff_id:
            predicates.append(Eq("assignments.staff_id", filters.staff_id))
        if filters.department:
            predicates.append(Eq("department", filters.department))
        if filters.search:
            predicates.append(
                Search(["task_title", "schedule_id", "assignments.staff_name"], filters.search)
            )

        docs = self.store.find(
            SCHEDULES,
            Query.where(*predicates, sort=[("scheduled_date", True), ("created_at", True)]),
        )
        schedules = [Schedule.from_document(doc) for doc in docs]
        if filters.week_number:
            suffix = f"-W{filters.week_number:02d}"
            schedules = [
                s for s in schedules
                if iso_week_key(s.scheduled_date, self.settings.TZ).endswith(suffix)
            ]
        return schedules

    def get_upcoming_schedules(self, days: int = 7, schedule_type: str = "all") -> List[Schedule]:
        now = self.clock()
        predicates = [
            Between("scheduled_date", now, now + timedelta(days=days)),
            Eq("status", ScheduleStatus.SCHEDULED.value),
        ]
        if schedule_type != "all":
            predicates.append(Eq("schedule_type", self._validate_type(schedule_type).value))
        docs = self.store.find(SCHEDULES, Query.where(*predicates, sort=[("scheduled_date", False)]))
        return [Schedule.from_document(doc) for doc in docs]

    def get_schedule_by_id(self, id: str) -> Schedule:
        doc = self.store.find_by_id(SCHEDULES, id)
        if doc is None:
            raise NotFoundError("Schedule not found", {"id": id})
        return Schedule.from_document(doc)

    def check_consecutive_week_restriction(
        self, staff_id: str, task_category: str, date: datetime
    ) -> ConsecutiveWeekResult:
        return self.checker.check_consecutive_week(staff_id, task_category, date)

    def get_staff_workload(self, staff_id: str, start_date: datetime, end_date: datetime):
        return self.workload.get_staff_workload(staff_id, start_date, end_date)

    def get_staff_weekly_schedule(self, staff_id: str, week_number: int, year: int):
        return self.workload.get_staff_weekly_schedule(staff_id, week_number, year)

    def get_schedule_statistics(self, now: Optional[datetime] = None):
        return self.workload.get_schedule_statistics(now)

    def generate_report(
        self,
        start_date: datetime,
        end_date: datetime,
        department: Optional[str] = None,
        schedule_type: Optional[str] = None,
    ):
        return self.workload.generate_report(start_date, end_date, department, schedule_type)

    def check_date_availability(
        self,
        date: datetime,
        department: Optional[str] = None,
        schedule_type: Optional[str] = None,
    ):
        return self.workload.check_date_availability(date, department, schedule_type)

    def get_recommended_times(
        self,
        date: datetime,
        duration: float,
        department: Optional[str] = None,
        schedule_type: str = "daily",
    ):
        return self.workload.get_recommended_times(date, duration, department, schedule_type)

    # -- edits ------------------------------------------------------------

    def update_schedule(self, id: str, patch: ScheduleUpdate) -> Schedule:
        schedule = self.get_schedule_by_id(id)
        changes = {k: v for k, v in patch.changes().items() if k in EDITABLE_FIELDS}
        was_active = schedule.is_active
        previous_date = schedule.scheduled_date

        if "status" in changes:
            target = ScheduleStatus(changes["status"])
            if self.settings.STRICT_STATUS_TRANSITIONS and not is_legal_transition(schedule.status, target):
                raise ValidationError(
                    f"Cannot move schedule from {schedule.status.value} to {target.value}",
                    {"field": "status"},
                )

        for name, value in changes.items():
            if name in ("scheduled_date", "end_date"):
                value = ensure_utc(value)
            setattr(schedule, name, value)
        if schedule.end_date <= schedule.scheduled_date:
            raise ValidationError("end_date must be after scheduled_date", {"field": "end_date"})

        new_claims: List[str] = []
        if schedule.schedule_type == ScheduleType.WEEKLY:
            moved = iso_week_key(previous_date, self.settings.TZ) != iso_week_key(
                schedule.scheduled_date, self.settings.TZ
            )
            if schedule.is_active and (moved or not was_active):
                self._ensure_week_free(schedule)
                new_claims = self._claim_weeks(schedule)

        schedule.updated_at = self.clock()
        try:
            stored = self.store.save(SCHEDULES, schedule.to_document(), expected_version=schedule.version)
        except Exception:
            self._release_keys(new_claims, schedule.id)
            raise
        schedule.version = stored["version"]

        if schedule.schedule_type == ScheduleType.WEEKLY and was_active:
            if not schedule.is_active or new_claims:
                self._release_claims(schedule, previous_date)

        logger.info(
            "schedule updated",
            extra={"schedule_id": schedule.schedule_id, "fields": sorted(changes)},
        )
        return schedule

    def update_assignment_status(
        self, id: str, staff_id: str, status: AssignmentStatus
    ) -> Schedule:
        """Record an assignee's response; the set of assignees never changes."""
        schedule = self.get_schedule_by_id(id)
        assignment = next((a for a in schedule.assignments if a.staff_id == staff_id), None)
        if assignment is None:
            raise NotFoundError(
                "Assignment not found for this staff member",
                {"id": id, "staff_id": staff_id},
            )
        assignment.status = AssignmentStatus(status)
        schedule.updated_at = self.clock()
        stored = self.store.save(SCHEDULES, schedule.to_document(), expected_version=schedule.version)
        schedule.version = stored["version"]
        logger.info(
            "assignment status updated",
            extra={
                "schedule_id": schedule.schedule_id,
                "staff_id": staff_id,
                "status": assignment.status.value,
            },
        )
        return schedule

    def delete_schedule(self, id: str) -> None:
        schedule = self.get_schedule_by_id(id)
        self.store.delete_by_id(SCHEDULES, id)
        if schedule.schedule_type == ScheduleType.WEEKLY and schedule.is_active:
            self._release_claims(schedule, schedule.scheduled_date)
        logger.info("schedule deleted", extra={"schedule_id": schedule.schedule_id})

    # -- weekly claims ----------------------------------------------------

    def _claim_key(self, staff_id: str, moment: datetime) -> str:
        return f"{staff_id}:{iso_week_key(moment, self.settings.TZ)}"

    def _claim_weeks(self, schedule: Schedule) -> List[str]:
        """Atomically reserve each assignee's week; all or none."""
        week = iso_week_key(schedule.scheduled_date, self.settings.TZ)
        taken: List[str] = []
        for assignment in schedule.assignments:
            key = self._claim_key(assignment.staff_id, schedule.scheduled_date)
            try:
                self.store.insert(
                    WEEKLY_CLAIMS,
                    {
                        "id": key,
                        "staff_id": assignment.staff_id,
                        "week": week,
                        "schedule_ref": schedule.id,
                        "claimed_at": self.clock(),
                    },
                )
            except DuplicateKeyError:
                self._release_keys(taken, schedule.id)
                self.metrics.increment(CONFLICTS_PREVENTED)
                raise ConflictError(
                    f"Staff {assignment.staff_name} already has a weekly schedule in {week}",
                    {"staff_id": assignment.staff_id, "week": week},
                ) from None
            taken.append(key)
        return taken

    def _release_claims(self, schedule: Schedule, moment: datetime) -> None:
        keys = [self._claim_key(a.staff_id, moment) for a in schedule.assignments]
        self._release_keys(keys, schedule.id)

    def _release_keys(self, keys: List[str], owner: str) -> None:
        for key in keys:
            claim = self.store.find_by_id(WEEKLY_CLAIMS, key)
            if claim is not None and claim.get("schedule_ref") == owner:
                self.store.delete_by_id(WEEKLY_CLAIMS, key)

    def _ensure_week_free(self, schedule: Schedule) -> None:
        for assignment in schedule.assignments:
            others = [
                doc
                for doc in self.checker.active_weekly_schedules(assignment.staff_id, schedule.scheduled_date)
                if doc["id"] != schedule.id
            ]
            if others:
                self.metrics.increment(CONFLICTS_PREVENTED)
                raise ConflictError(
                    f"Staff {assignment.staff_name} already has {len(others)} weekly "
                    f"schedule(s) in {iso_week_key(schedule.scheduled_date, self.settings.TZ)}",
                    {"staff_id": assignment.staff_id},
                )

    # -- lookups ----------------------------------------------------------

    def _validate_type(self, value: str) -> ScheduleType:
        try:
            return ScheduleType(value)
        except ValueError:
            raise ValidationError(
                'Schedule type must be either "daily" or "weekly"',
                {"field": "schedule_type", "value": value},
            ) from None

    def _load_task(self, task_id: str) -> Task:
        doc = self.store.find_by_id(TASKS, task_id)
        if doc is None:
            raise ValidationError(f"Task with ID {task_id} not found", {"field": "task_id"})
        return Task.from_document(doc)

    def _load_staff(self, staff_id: str) -> Staff:
        doc = self.store.find_by_id(STAFF, staff_id)
        if doc is None:
            raise ValidationError(
                f"Staff member with ID {staff_id} not found", {"field": "staff_ids"}
            )
        return Staff.from_document(doc)
