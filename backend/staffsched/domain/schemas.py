"""Pydantic models used for request and response bodies.

Request models validate caller input before it reaches the service layer.
Response models are read models produced by the service and aggregator and
serialised by the API layer.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from .models import (
    AggregateEmailStatus,
    AssignmentStatus,
    DispatchState,
    EmailStatus,
    Priority,
    Recurrence,
    ScheduleStatus,
    ScheduleType,
)
from .weeks import ensure_utc


class ScheduleCreate(BaseModel):
    """Input for creating a schedule.

    ``schedule_type`` is kept as a plain string so the service can reject an
    unknown type with its own validation error.

    Example:
        >>> ScheduleCreate(
        ...     schedule_type="daily",
        ...     task_id="tsk_1",
        ...     staff_ids=["stf_1"],
        ...     estimated_hours=3,
        ...     scheduled_date=datetime(2026, 2, 1, 10, 0),
        ... )
    """

    schedule_type: str
    task_id: str
    staff_ids: List[str] = Field(min_length=1)
    task_description: Optional[str] = Field(default=None, max_length=1000)
    priority: Priority = Priority.MEDIUM
    estimated_hours: float = Field(ge=0.5, le=24)
    scheduled_date: datetime
    end_date: Optional[datetime] = None
    recurrence: Recurrence = Recurrence.ONCE
    department: Optional[str] = Field(default=None, max_length=100)
    send_email: bool = True
    notes: Optional[str] = Field(default=None, max_length=500)
    location: Optional[str] = Field(default=None, max_length=200)
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def _end_after_start(self) -> "ScheduleCreate":
        if self.end_date is not None and ensure_utc(self.end_date) <= ensure_utc(self.scheduled_date):
            raise ValueError("end_date must be after scheduled_date")
        return self

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "schedule_type": "weekly",
                "task_id": "tsk_1",
                "staff_ids": ["stf_1", "stf_2"],
                "priority": "high",
                "estimated_hours": 8,
                "scheduled_date": "2026-01-05T09:00:00Z",
                "send_email": True,
            }
        }


class ScheduleUpdate(BaseModel):
    """Patch for an existing schedule; assignments and type are not editable."""

    priority: Optional[Priority] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0.5, le=24)
    scheduled_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[ScheduleStatus] = None
    department: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)
    location: Optional[str] = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def _not_empty(self) -> "ScheduleUpdate":
        if not self.changes():
            raise ValueError("At least one field must be provided for update")
        return self

    def changes(self) -> Dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if getattr(self, name) is not None
        }

    class Config:
        frozen = True
        json_schema_extra = {"example": {"status": "in-progress", "notes": "Started early"}}


class ScheduleFilters(BaseModel):
    """Query filters for listing schedules; ``all`` disables an enum filter."""

    schedule_type: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    date: Optional[datetime] = None
    staff_id: Optional[str] = None
    department: Optional[str] = None
    week_number: Optional[int] = Field(default=None, ge=1, le=53)
    search: Optional[str] = None

    class Config:
        frozen = True


class AssignmentOut(BaseModel):
    staff_id: str
    staff_name: str
    email: EmailStr
    status: AssignmentStatus
    notification_sent: bool
    notification_sent_at: Optional[datetime] = None
    email_status: EmailStatus
    email_error: Optional[str] = None
    message_id: Optional[str] = None

    class Config:
        from_attributes = True


class ScheduleOut(BaseModel):
    """Schedule as returned to API callers."""

    id: str
    schedule_id: str
    schedule_type: ScheduleType
    task_id: str
    task_title: str
    task_category: str
    task_description: Optional[str] = None
    assignments: List[AssignmentOut]
    priority: Priority
    estimated_hours: float
    scheduled_date: datetime
    end_date: datetime
    recurrence: Recurrence
    department: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[str] = None
    status: ScheduleStatus
    email_sent: bool
    email_status: AggregateEmailStatus
    dispatch_state: DispatchState
    last_notification_sent: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StaffSummary(BaseModel):
    id: str
    name: str
    department: Optional[str] = None


class WorkloadEntry(BaseModel):
    id: str
    schedule_id: str
    task_title: str
    schedule_type: ScheduleType
    scheduled_date: datetime
    estimated_hours: float
    status: ScheduleStatus


class StaffWorkload(BaseModel):
    """Per-staff totals over a date range."""

    staff: StaffSummary
    total_schedules: int
    total_hours: float
    completed_schedules: int
    pending_schedules: int
    schedules: List[WorkloadEntry]


class WeeklySummary(BaseModel):
    total_tasks: int
    total_hours: float
    daily_tasks: int
    weekly_tasks: int


class StaffWeek(BaseModel):
    staff_name: str
    week_number: int
    year: int
    week_range: str
    schedules: List[WorkloadEntry]
    weekly_summary: WeeklySummary


class GroupedCounts(BaseModel):
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)
    by_schedule_type: Dict[str, int] = Field(default_factory=dict)
    by_department: Dict[str, int] = Field(default_factory=dict)


class ScheduleCounts(BaseModel):
    total: int
    upcoming: int
    in_progress: int
    this_week: int


class RecentSchedule(BaseModel):
    id: str
    schedule_id: str
    task_title: str
    schedule_type: ScheduleType
    scheduled_date: datetime
    staff_count: int


class ScheduleStatistics(BaseModel):
    counts: ScheduleCounts
    groups: GroupedCounts
    recent_schedules: List[RecentSchedule]


class ReportStats(GroupedCounts):
    total_schedules: int
    total_hours: float


class ReportRow(BaseModel):
    id: str
    schedule_id: str
    task_title: str
    schedule_type: ScheduleType
    scheduled_date: datetime
    estimated_hours: float
    priority: Priority
    status: ScheduleStatus
    department: Optional[str] = None
    staff_count: int


class ReportPeriod(BaseModel):
    start_date: datetime
    end_date: datetime


class ScheduleReport(BaseModel):
    period: ReportPeriod
    stats: ReportStats
    schedules: List[ReportRow]


class DateAvailability(BaseModel):
    date: datetime
    scheduled_tasks: int
    scheduled_staff: int
    available_staff: List[StaffSummary]


class Envelope(BaseModel):
    """Uniform response wrapper: ``{success, data|message, error?}``."""

    success: bool = True
    message: Optional[str] = None
    count: Optional[int] = None
    data: Any = None
    error: Optional[str] = None


class TimeSlot(BaseModel):
    time: str
    display: str
    start: datetime


class RecommendedTimes(BaseModel):
    """Free start times within the working day for a task of ``duration`` hours."""

    date: datetime
    duration: float
    recommendations: List[TimeSlot]


class AssignmentStatusUpdate(BaseModel):
    status: AssignmentStatus

    class Config:
        frozen = True
        json_schema_extra = {"example": {"status": "accepted"}}
