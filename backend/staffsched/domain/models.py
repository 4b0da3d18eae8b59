"""Core domain entities for staff scheduling.

``Staff`` and ``Task`` are immutable references owned elsewhere. ``Schedule``
is the one mutable entity this engine manages; its ``assignments`` are a
snapshot of staff identity taken when the schedule is created and are never
added to or removed from afterwards.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .weeks import ensure_utc


class ScheduleType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class ScheduleStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Recurrence(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"


class AssignmentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class EmailStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class AggregateEmailStatus(str, Enum):
    PENDING = "pending"
    ALL_SENT = "all_sent"
    PARTIAL_SENT = "partial_sent"
    FAILED = "failed"


class DispatchState(str, Enum):
    NOT_REQUESTED = "not_requested"
    PENDING_DISPATCH = "pending_dispatch"
    DISPATCHED = "dispatched"


ACTIVE_STATUSES = (ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS)
TERMINAL_STATUSES = (ScheduleStatus.COMPLETED, ScheduleStatus.CANCELLED)

LEGAL_TRANSITIONS: Dict[ScheduleStatus, frozenset] = {
    ScheduleStatus.SCHEDULED: frozenset(
        {ScheduleStatus.IN_PROGRESS, ScheduleStatus.CANCELLED}
    ),
    ScheduleStatus.IN_PROGRESS: frozenset(
        {ScheduleStatus.COMPLETED, ScheduleStatus.CANCELLED}
    ),
    ScheduleStatus.COMPLETED: frozenset(),
    ScheduleStatus.CANCELLED: frozenset(),
}


def is_legal_transition(current: ScheduleStatus, target: ScheduleStatus) -> bool:
    return current == target or target in LEGAL_TRANSITIONS[current]


def _value(item: Any) -> Any:
    return item.value if isinstance(item, Enum) else item


def _utc_or_none(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


@dataclass(frozen=True)
class Staff:
    """Staff member that can be assigned to schedules.

    Example:
        >>> Staff(id="stf_1", name="Abebe Kebede", email="abebe@example.com")
    """

    id: str
    name: str
    email: str
    department: Optional[str] = None
    status: str = "Active"

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "department": self.department,
            "status": self.status,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Staff":
        return cls(
            id=doc["id"],
            name=doc["name"],
            email=doc["email"],
            department=doc.get("department"),
            status=doc.get("status", "Active"),
        )


@dataclass(frozen=True)
class Task:
    """Task definition; ``category`` drives the consecutive-week rule.

    Example:
        >>> Task(id="tsk_1", title="Monthly report", category="Reporting")
    """

    id: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    department: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "department": self.department,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Task":
        return cls(
            id=doc["id"],
            title=doc["title"],
            description=doc.get("description"),
            category=doc.get("category"),
            department=doc.get("department"),
        )


@dataclass
class Assignment:
    """Snapshot of one assignee plus their notification state."""

    staff_id: str
    staff_name: str
    email: str
    status: AssignmentStatus = AssignmentStatus.PENDING
    notification_sent: bool = False
    notification_sent_at: Optional[datetime] = None
    email_status: EmailStatus = EmailStatus.PENDING
    email_error: Optional[str] = None
    message_id: Optional[str] = None

    @classmethod
    def snapshot(cls, staff: Staff) -> "Assignment":
        return cls(staff_id=staff.id, staff_name=staff.name, email=staff.email)

    def mark_sent(self, message_id: Optional[str], sent_at: datetime) -> None:
        self.notification_sent = True
        self.notification_sent_at = sent_at
        self.email_status = EmailStatus.SENT
        self.message_id = message_id
        self.email_error = None

    def mark_failed(self, error: str) -> None:
        self.notification_sent = False
        self.email_status = EmailStatus.FAILED
        self.email_error = error

    def to_document(self) -> Dict[str, Any]:
        return {
            "staff_id": self.staff_id,
            "staff_name": self.staff_name,
            "email": self.email,
            "status": _value(self.status),
            "notification_sent": self.notification_sent,
            "notification_sent_at": self.notification_sent_at,
            "email_status": _value(self.email_status),
            "email_error": self.email_error,
            "message_id": self.message_id,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Assignment":
        return cls(
            staff_id=doc["staff_id"],
            staff_name=doc["staff_name"],
            email=doc["email"],
            status=AssignmentStatus(doc.get("status", "pending")),
            notification_sent=bool(doc.get("notification_sent", False)),
            notification_sent_at=_utc_or_none(doc.get("notification_sent_at")),
            email_status=EmailStatus(doc.get("email_status", "pending")),
            email_error=doc.get("email_error"),
            message_id=doc.get("message_id"),
        )


@dataclass
class Schedule:
    """A task bound to one or more staff members on a date.

    ``schedule_type`` and ``assignments`` are fixed at creation. Task fields
    are copied from the task when the schedule is created and do not follow
    later edits to the task.
    """

    id: str
    schedule_id: str
    schedule_type: ScheduleType
    task_id: str
    task_title: str
    task_category: str
    scheduled_date: datetime
    end_date: datetime
    estimated_hours: float
    assignments: List[Assignment] = field(default_factory=list)
    task_description: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    recurrence: Recurrence = Recurrence.ONCE
    department: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[str] = None
    status: ScheduleStatus = ScheduleStatus.SCHEDULED
    send_email: bool = True
    email_sent: bool = False
    email_status: AggregateEmailStatus = AggregateEmailStatus.PENDING
    dispatch_state: DispatchState = DispatchState.NOT_REQUESTED
    last_notification_sent: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    @property
    def staff_ids(self) -> List[str]:
        return [a.staff_id for a in self.assignments]

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def refresh_email_summary(self, now: datetime) -> None:
        """Recompute ``email_sent``/``email_status`` from the assignments."""
        sent = sum(1 for a in self.assignments if a.email_status == EmailStatus.SENT)
        if sent:
            self.email_sent = True
            self.email_status = (
                AggregateEmailStatus.ALL_SENT
                if sent == len(self.assignments)
                else AggregateEmailStatus.PARTIAL_SENT
            )
            self.last_notification_sent = now
        else:
            self.email_sent = False
            self.email_status = AggregateEmailStatus.FAILED

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "schedule_type": _value(self.schedule_type),
            "task_id": self.task_id,
            "task_title": self.task_title,
            "task_category": self.task_category,
            "task_description": self.task_description,
            "assignments": [a.to_document() for a in self.assignments],
            "priority": _value(self.priority),
            "estimated_hours": self.estimated_hours,
            "scheduled_date": self.scheduled_date,
            "end_date": self.end_date,
            "recurrence": _value(self.recurrence),
            "department": self.department,
            "notes": self.notes,
            "location": self.location,
            "status": _value(self.status),
            "send_email": self.send_email,
            "email_sent": self.email_sent,
            "email_status": _value(self.email_status),
            "dispatch_state": _value(self.dispatch_state),
            "last_notification_sent": self.last_notification_sent,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Schedule":
        return cls(
            id=doc["id"],
            schedule_id=doc["schedule_id"],
            schedule_type=ScheduleType(doc["schedule_type"]),
            task_id=doc["task_id"],
            task_title=doc["task_title"],
            task_category=doc.get("task_category") or "general",
            task_description=doc.get("task_description"),
            assignments=[Assignment.from_document(a) for a in doc.get("assignments", [])],
            priority=Priority(doc.get("priority", "medium")),
            estimated_hours=float(doc["estimated_hours"]),
            scheduled_date=ensure_utc(doc["scheduled_date"]),
            end_date=ensure_utc(doc["end_date"]),
            recurrence=Recurrence(doc.get("recurrence", "once")),
            department=doc.get("department"),
            notes=doc.get("notes"),
            location=doc.get("location"),
            status=ScheduleStatus(doc.get("status", "scheduled")),
            send_email=bool(doc.get("send_email", True)),
            email_sent=bool(doc.get("email_sent", False)),
            email_status=AggregateEmailStatus(doc.get("email_status", "pending")),
            dispatch_state=DispatchState(doc.get("dispatch_state", "not_requested")),
            last_notification_sent=_utc_or_none(doc.get("last_notification_sent")),
            created_by=doc.get("created_by"),
            created_at=_utc_or_none(doc.get("created_at")),
            updated_at=_utc_or_none(doc.get("updated_at")),
            version=int(doc.get("version", 0)),
        )


@dataclass(frozen=True)
class NotificationResult:
    """Outcome of delivering one assignment notification."""

    success: bool
    staff_name: str
    email: str
    message_id: Optional[str] = None
    error: Optional[str] = None
    sent_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": self.success,
            "staff_name": self.staff_name,
            "email": self.email,
        }
        if self.success:
            body["message_id"] = self.message_id
            body["sent_at"] = self.sent_at
        else:
            body["error"] = self.error
        return body
