"""Schedule endpoints.

Handlers are thin: they translate query/body input into service calls and
wrap the result in an :class:`Envelope`. Domain errors propagate to the
application-level handler.
"""

from datetime import date, datetime
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..core.config import get_settings
from ..domain.schemas import (
    AssignmentStatusUpdate,
    Envelope,
    ScheduleCreate,
    ScheduleFilters,
    ScheduleOut,
    ScheduleUpdate,
)
from ..services.scheduling import ScheduleResult, ScheduleService
from ..store import build_store

router = APIRouter(prefix="/schedules", tags=["schedules"])


@lru_cache
def get_service() -> ScheduleService:
    """Process-wide service bound to the configured store and mail transport."""
    settings = get_settings()
    return ScheduleService(build_store(settings), settings=settings)


def _out(result: ScheduleResult) -> dict:
    return {
        "schedule": ScheduleOut.model_validate(result.schedule),
        "notifications": [n.to_dict() for n in result.notifications],
    }


@router.post("", response_model=Envelope, status_code=201)
def create_schedule(
    payload: ScheduleCreate, service: ScheduleService = Depends(get_service)
) -> Envelope:
    result = service.create_schedule(payload)
    return Envelope(message="Schedule created successfully", data=_out(result))


@router.get("", response_model=Envelope)
def list_schedules(
    schedule_type: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    date: Optional[datetime] = None,
    staff_id: Optional[str] = None,
    department: Optional[str] = None,
    week_number: Optional[int] = Query(default=None, ge=1, le=53),
    search: Optional[str] = None,
    service: ScheduleService = Depends(get_service),
) -> Envelope:
    filters = ScheduleFilters(
        schedule_type=schedule_type,
        status=status,
        priority=priority,
        start_date=start_date,
        end_date=end_date,
        date=date,
        staff_id=staff_id,
        department=department,
        week_number=week_number,
        search=search,
    )
    schedules = service.get_all_schedules(filters)
    return Envelope(count=len(schedules), data=[ScheduleOut.model_validate(s) for s in schedules])


@router.get("/upcoming", response_model=Envelope)
def upcoming_schedules(
    days: int = Query(default=7, ge=1, le=365),
    schedule_type: str = "all",
    service: ScheduleService = Depends(get_service),
) -> Envelope:
    schedules = service.get_upcoming_schedules(days, schedule_type)
    return Envelope(count=len(schedules), data=[ScheduleOut.model_validate(s) for s in schedules])


@router.get("/statistics", response_model=Envelope)
def schedule_statistics(service: ScheduleService = Depends(get_service)) -> Envelope:
    return Envelope(data=service.get_schedule_statistics())


@router.get("/report", response_model=Envelope)
def schedule_report(
    start_date: datetime,
    end_date: datetime,
    department: Optional[str] = None,
    schedule_type: Optional[str] = None,
    service: ScheduleService = Depends(get_service),
) -> Envelope:
    return Envelope(data=service.generate_report(start_date, end_date, department, schedule_type))


@router.get("/availability/{day}", response_model=Envelope)
def date_availability(
    day: date,
    department: Optional[str] = None,
    schedule_type: Optional[str] = None,
    service: ScheduleService = Depends(get_service),
) -> Envelope:
    return Envelope(data=service.check_date_availability(day, department, schedule_type))


@router.get("/recommendations/times", response_model=Envelope)
def recommended_times(
    date: date,
    duration: float = Query(ge=0.5, le=8),
    department: Optional[str] = None,
    schedule_type: str = "daily",
    service: ScheduleService = Depends(get_service),
) -> Envelope:
    return Envelope(data=service.get_recommended_times(date, duration, department, schedule_type))


@router.get("/workload/{staff_id}", response_model=Envelope)
def staff_workload(
    staff_id: str,
    start_date: datetime,
    end_date: datetime,
    service: ScheduleService = Depends(get_service),
) -> Envelope:
    return Envelope(data=service.get_staff_workload(staff_id, start_date, end_date))


@router.get("/staff/{staff_id}/week", response_model=Envelope)
def staff_week(
    staff_id: str,
    week_number: int = Query(ge=1, le=53),
    year: int = Query(ge=1970, le=9999),
    service: ScheduleService = Depends(get_service),
) -> Envelope:
    return Envelope(data=service.get_staff_weekly_schedule(staff_id, week_number, year))


@router.get("/consecutive-check", response_model=Envelope)
def consecutive_check(
    staff_id: str,
    task_category: str,
    date: datetime,
    service: ScheduleService = Depends(get_service),
) -> Envelope:
    result = service.check_consecutive_week_restriction(staff_id, task_category, date)
    return Envelope(data=result.to_dict())


@router.post("/test-email", response_model=Envelope)
def test_email(
    recipient: Optional[str] = None, service: ScheduleService = Depends(get_service)
) -> Envelope:
    outcome = service.test_email_service(recipient)
    return Envelope(
        success=outcome["success"],
        message=outcome["message"],
        data=outcome.get("details"),
        error=outcome.get("error"),
    )


@router.get("/{id}", response_model=Envelope)
def get_schedule(id: str, service: ScheduleService = Depends(get_service)) -> Envelope:
    return Envelope(data=ScheduleOut.model_validate(service.get_schedule_by_id(id)))


@router.patch("/{id}", response_model=Envelope)
def update_schedule(
    id: str, patch: ScheduleUpdate, service: ScheduleService = Depends(get_service)
) -> Envelope:
    schedule = service.update_schedule(id, patch)
    return Envelope(message="Schedule updated successfully", data=ScheduleOut.model_validate(schedule))


@router.patch("/{id}/assignments/{staff_id}/status", response_model=Envelope)
def update_assignment_status(
    id: str,
    staff_id: str,
    body: AssignmentStatusUpdate,
    service: ScheduleService = Depends(get_service),
) -> Envelope:
    schedule = service.update_assignment_status(id, staff_id, body.status)
    return Envelope(
        message="Assignment status updated successfully", data=ScheduleOut.model_validate(schedule)
    )


@router.delete("/{id}", response_model=Envelope)
def delete_schedule(id: str, service: ScheduleService = Depends(get_service)) -> Envelope:
    service.delete_schedule(id)
    return Envelope(message="Schedule deleted successfully")


@router.post("/{id}/dispatch", response_model=Envelope)
def dispatch_schedule(id: str, service: ScheduleService = Depends(get_service)) -> Envelope:
    result = service.dispatch_notifications(id)
    return Envelope(message="Notifications dispatched", data=_out(result))
