"""Schedule orchestration: creation, dispatch persistence, edits and deletes."""

from datetime import datetime, timedelta

import pytest

from staffsched.core.config import Settings
from staffsched.core.errors import (
    ConcurrencyError,
    ConflictError,
    DuplicateKeyError,
    NotFoundError,
    ValidationError,
)
from staffsched.domain.models import (
    AggregateEmailStatus,
    AssignmentStatus,
    DispatchState,
    EmailStatus,
    ScheduleStatus,
)
from staffsched.domain.schemas import ScheduleCreate, ScheduleFilters, ScheduleUpdate
from staffsched.services import scheduling
from staffsched.services.notifications import NotificationDispatcher
from staffsched.services.scheduling import ScheduleService, generate_schedule_id
from staffsched.store import SCHEDULES, WEEKLY_CLAIMS, Eq, Query

from conftest import NOW, ScriptedMailer, utc


def _payload(**overrides):
    payload = {
        "schedule_type": "daily",
        "task_id": "tsk_report",
        "staff_ids": ["stf_a"],
        "estimated_hours": 3,
        "scheduled_date": utc(2026, 2, 1, 10, 0),
    }
    payload.update(overrides)
    return ScheduleCreate(**payload)


def _service(store, mailer, **settings):
    return ScheduleService(
        store,
        dispatcher=NotificationDispatcher(mailer, clock=lambda: NOW),
        settings=Settings(**settings),
        clock=lambda: NOW,
    )


def test_generate_schedule_id_format():
    weekly = generate_schedule_id("weekly")
    daily = generate_schedule_id("daily")

    assert weekly.startswith("WK-") and daily.startswith("DY-")
    assert len(weekly) == len("WK-") + 9 and weekly[3:].isdigit()


def test_end_date_defaults_to_start_plus_estimated_hours(service):
    result = service.create_schedule(_payload(send_email=False))

    assert result.schedule.end_date == utc(2026, 2, 1, 13, 0)


def test_supplied_end_date_is_kept(service):
    result = service.create_schedule(
        _payload(end_date=utc(2026, 2, 3, 17, 30), send_email=False)
    )

    assert result.schedule.end_date == utc(2026, 2, 3, 17, 30)


def test_naive_dates_are_treated_as_utc(service):
    result = service.create_schedule(
        _payload(scheduled_date=datetime(2026, 2, 1, 10, 0), send_email=False)
    )

    assert result.schedule.scheduled_date == utc(2026, 2, 1, 10, 0)


def test_snapshot_and_defaults_come_from_task_and_staff(service, store):
    result = service.create_schedule(_payload(staff_ids=["stf_a", "stf_b"], send_email=False))
    schedule = result.schedule

    assert schedule.task_title == "Monthly report"
    assert schedule.task_category == "Reporting"
    assert schedule.task_description == "Compile the monthly finance report"
    assert schedule.department == "Finance"
    assert schedule.location == "Office"
    assert schedule.priority.value == "medium"
    assert [a.staff_name for a in schedule.assignments] == ["Abebe Kebede", "Sara Tesfaye"]
    assert all(a.email_status == EmailStatus.PENDING for a in schedule.assignments)
    assert schedule.created_at == NOW and schedule.updated_at == NOW

    stored = store.find_by_id(SCHEDULES, schedule.id)
    assert stored["schedule_id"] == schedule.schedule_id
    assert stored["version"] == 1


def test_task_without_category_uses_general(service):
    result = service.create_schedule(_payload(task_id="tsk_misc", send_email=False))

    assert result.schedule.task_category == "general"
    assert result.schedule.department == "General"


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"schedule_type": "monthly"}, 'Schedule type must be either "daily" or "weekly"'),
        ({"task_id": "tsk_missing"}, "Task with ID tsk_missing not found"),
        ({"staff_ids": ["stf_a", "stf_missing"]}, "Staff member with ID stf_missing not found"),
        ({"staff_ids": ["stf_a", "stf_a"]}, "Each staff member may be listed only once"),
    ],
)
def test_invalid_input_is_rejected_before_any_write(service, store, mailer, overrides, message):
    with pytest.raises(ValidationError) as exc:
        service.create_schedule(_payload(**overrides))

    assert exc.value.message == message
    assert store.find(SCHEDULES) == []
    assert mailer.batches == []


def test_send_email_false_skips_dispatch(service, mailer):
    result = service.create_schedule(_payload(send_email=False))

    assert mailer.batches == []
    assert result.notifications == []
    assert result.schedule.dispatch_state == DispatchState.NOT_REQUESTED
    assert result.schedule.email_status == AggregateEmailStatus.PENDING


def test_all_notifications_sent(service, store, mailer, metrics):
    result = service.create_schedule(_payload(staff_ids=["stf_a", "stf_b"]))
    schedule = result.schedule

    assert len(mailer.batches) == 1 and len(mailer.batches[0]) == 2
    assert mailer.batches[0][0].subject == "Daily task assignment: Monthly report"
    assert schedule.email_sent is True
    assert schedule.email_status == AggregateEmailStatus.ALL_SENT
    assert schedule.last_notification_sent == NOW
    assert schedule.dispatch_state == DispatchState.DISPATCHED
    assert [n.success for n in result.notifications] == [True, True]

    stored = store.find_by_id(SCHEDULES, schedule.id)
    assert stored["version"] == 2
    assert stored["dispatch_state"] == "dispatched"
    assert metrics.snapshot()["notifications_sent"] == 2
    assert metrics.snapshot()["schedules_created"] == 1


def test_partial_delivery_is_recorded_per_assignment(store):
    mailer = ScriptedMailer(failures={"sara@example.com"})
    service = _service(store, mailer)

    result = service.create_schedule(_payload(staff_ids=["stf_a", "stf_b"]))

    first, second = service.get_schedule_by_id(result.schedule.id).assignments
    assert result.schedule.email_status == AggregateEmailStatus.PARTIAL_SENT
    assert result.schedule.email_sent is True
    assert first.email_status == EmailStatus.SENT and first.notification_sent
    assert first.message_id == "<abebe@example.com>"
    assert second.email_status == EmailStatus.FAILED
    assert second.email_error == "mailbox unavailable"
    assert not second.notification_sent
    assert [n.success for n in result.notifications] == [True, False]


def test_transport_exception_marks_every_recipient_failed(store):
    mailer = ScriptedMailer(raises=RuntimeError("smtp down"))
    service = _service(store, mailer)

    result = service.create_schedule(_payload(staff_ids=["stf_a", "stf_b"]))

    schedule = service.get_schedule_by_id(result.schedule.id)
    assert schedule.email_status == AggregateEmailStatus.FAILED
    assert schedule.email_sent is False
    assert {a.email_error for a in schedule.assignments} == {"smtp down"}
    assert schedule.dispatch_state == DispatchState.DISPATCHED


def test_redispatch_targets_only_unsent_assignments(store):
    mailer = ScriptedMailer(failures={"sara@example.com"})
    service = _service(store, mailer)
    created = service.create_schedule(_payload(staff_ids=["stf_a", "stf_b"])).schedule

    mailer.failures.clear()
    result = service.dispatch_notifications(created.id)

    assert [m.to for m in mailer.batches[-1]] == ["sara@example.com"]
    assert result.schedule.email_status == AggregateEmailStatus.ALL_SENT
    assert all(a.email_status == EmailStatus.SENT for a in result.schedule.assignments)


def test_redispatch_with_everything_sent_is_a_no_op(service, mailer):
    created = service.create_schedule(_payload()).schedule

    result = service.dispatch_notifications(created.id)

    assert len(mailer.batches) == 1
    assert result.notifications == []


def test_concurrent_edit_during_dispatch_is_preserved(store):
    def edit_while_sending(messages):
        doc = store.find(SCHEDULES, Query.where(Eq("schedule_id", messages[0].headers["X-Schedule-Id"])))[0]
        doc["status"] = "in-progress"
        doc["notes"] = "started early"
        store.save(SCHEDULES, doc)

    service = _service(store, ScriptedMailer(on_batch=edit_while_sending))

    result = service.create_schedule(_payload(staff_ids=["stf_a", "stf_b"]))

    stored = service.get_schedule_by_id(result.schedule.id)
    assert stored.status == ScheduleStatus.IN_PROGRESS
    assert stored.notes == "started early"
    assert stored.email_status == AggregateEmailStatus.ALL_SENT
    assert all(a.email_status == EmailStatus.SENT for a in stored.assignments)
    assert stored.version == 3


def test_schedule_deleted_during_dispatch_is_not_resurrected(store):
    def delete_while_sending(messages):
        doc = store.find(SCHEDULES, Query.where(Eq("schedule_id", messages[0].headers["X-Schedule-Id"])))[0]
        store.delete_by_id(SCHEDULES, doc["id"])

    service = _service(store, ScriptedMailer(on_batch=delete_while_sending))

    result = service.create_schedule(_payload())

    assert store.find(SCHEDULES) == []
    assert result.schedule.email_status == AggregateEmailStatus.ALL_SENT


def test_schedule_id_collision_is_retried(service, store, monkeypatch):
    ids = iter(["DY-000001001", "DY-000001001", "DY-000002002"])
    monkeypatch.setattr(scheduling, "generate_schedule_id", lambda _type: next(ids))

    first = service.create_schedule(_payload(send_email=False)).schedule
    second = service.create_schedule(_payload(send_email=False)).schedule

    assert first.schedule_id == "DY-000001001"
    assert second.schedule_id == "DY-000002002"
    assert len(store.find(SCHEDULES)) == 2


def test_exhausted_schedule_id_retries_release_weekly_claims(service, store, monkeypatch):
    monkeypatch.setattr(scheduling, "generate_schedule_id", lambda _type: "WK-000001001")
    service.create_schedule(_payload(schedule_type="weekly", send_email=False))

    with pytest.raises(DuplicateKeyError):
        service.create_schedule(
            _payload(schedule_type="weekly", staff_ids=["stf_b"], send_email=False)
        )

    assert [c["staff_id"] for c in store.find(WEEKLY_CLAIMS)] == ["stf_a"]


def test_held_weekly_claim_rejects_creation_and_rolls_back(service, store, metrics):
    store.insert(
        WEEKLY_CLAIMS,
        {"id": "stf_a:2026-W05", "staff_id": "stf_a", "week": "2026-W05", "schedule_ref": "other"},
    )

    with pytest.raises(ConflictError):
        service.create_schedule(
            _payload(schedule_type="weekly", staff_ids=["stf_b", "stf_a"], send_email=False)
        )

    assert store.find(SCHEDULES) == []
    assert [c["id"] for c in store.find(WEEKLY_CLAIMS)] == ["stf_a:2026-W05"]
    assert metrics.snapshot()["conflicts_prevented"] == 1


def test_get_schedule_by_id_missing(service):
    with pytest.raises(NotFoundError):
        service.get_schedule_by_id("nope")


def test_update_applies_editable_fields_and_bumps_version(service, make_schedule):
    schedule = make_schedule()

    updated = service.update_schedule(
        schedule.id, ScheduleUpdate(priority="urgent", notes="bring laptop", estimated_hours=4)
    )

    assert updated.priority.value == "urgent"
    assert updated.notes == "bring laptop"
    assert updated.estimated_hours == 4
    assert updated.version == schedule.version + 1
    assert service.get_schedule_by_id(schedule.id).notes == "bring laptop"


def test_update_rejects_end_before_start(service, make_schedule):
    schedule = make_schedule()

    with pytest.raises(ValidationError):
        service.update_schedule(
            schedule.id, ScheduleUpdate(end_date=schedule.scheduled_date - timedelta(hours=1))
        )


def test_status_transitions_are_permissive_by_default(service, make_schedule):
    schedule = make_schedule()

    updated = service.update_schedule(schedule.id, ScheduleUpdate(status="completed"))
    reopened = service.update_schedule(schedule.id, ScheduleUpdate(status="scheduled"))

    assert updated.status == ScheduleStatus.COMPLETED
    assert reopened.status == ScheduleStatus.SCHEDULED


def test_strict_status_transitions(store, mailer):
    service = _service(store, mailer, STRICT_STATUS_TRANSITIONS=True)
    schedule = service.create_schedule(_payload(send_email=False)).schedule

    with pytest.raises(ValidationError):
        service.update_schedule(schedule.id, ScheduleUpdate(status="completed"))

    service.update_schedule(schedule.id, ScheduleUpdate(status="in-progress"))
    done = service.update_schedule(schedule.id, ScheduleUpdate(status="completed"))
    assert done.status == ScheduleStatus.COMPLETED

    with pytest.raises(ValidationError):
        service.update_schedule(schedule.id, ScheduleUpdate(status="cancelled"))


def test_moving_weekly_schedule_moves_its_claim(service, store, make_schedule):
    schedule = make_schedule(schedule_type="weekly", scheduled_date=utc(2026, 1, 5, 9, 0))

    service.update_schedule(
        schedule.id,
        ScheduleUpdate(scheduled_date=utc(2026, 1, 13, 9, 0), end_date=utc(2026, 1, 13, 11, 0)),
    )

    assert [c["id"] for c in store.find(WEEKLY_CLAIMS)] == ["stf_a:2026-W03"]


def test_moving_weekly_schedule_into_occupied_week_is_rejected(service, store, make_schedule):
    make_schedule(schedule_type="weekly", scheduled_date=utc(2026, 1, 12, 9, 0))
    other = make_schedule(
        schedule_type="weekly", task_id="tsk_clean", scheduled_date=utc(2026, 1, 5, 9, 0)
    )

    with pytest.raises(ConflictError):
        service.update_schedule(
            other.id,
            ScheduleUpdate(scheduled_date=utc(2026, 1, 14, 9, 0), end_date=utc(2026, 1, 14, 10, 0)),
        )

    assert service.get_schedule_by_id(other.id).scheduled_date == utc(2026, 1, 5, 9, 0)
    assert sorted(c["id"] for c in store.find(WEEKLY_CLAIMS)) == ["stf_a:2026-W02", "stf_a:2026-W03"]


def test_reactivating_into_occupied_week_is_rejected(service, make_schedule):
    first = make_schedule(schedule_type="weekly", scheduled_date=utc(2026, 1, 5, 9, 0))
    service.update_schedule(first.id, ScheduleUpdate(status="cancelled"))
    make_schedule(schedule_type="weekly", task_id="tsk_clean", scheduled_date=utc(2026, 1, 7, 9, 0))

    with pytest.raises(ConflictError):
        service.update_schedule(first.id, ScheduleUpdate(status="scheduled"))


def test_delete_releases_claims(service, store, make_schedule):
    schedule = make_schedule(schedule_type="weekly", scheduled_date=utc(2026, 1, 5, 9, 0))

    service.delete_schedule(schedule.id)

    assert store.find(SCHEDULES) == []
    assert store.find(WEEKLY_CLAIMS) == []
    with pytest.raises(NotFoundError):
        service.delete_schedule(schedule.id)


def test_filters_and_ordering(service, make_schedule):
    early = make_schedule(scheduled_date=utc(2026, 1, 5, 9, 0))
    late = make_schedule(
        scheduled_date=utc(2026, 1, 20, 9, 0), staff_ids=["stf_b"], priority="high"
    )
    weekly = make_schedule(
        schedule_type="weekly",
        task_id="tsk_clean",
        staff_ids=["stf_c"],
        scheduled_date=utc(2026, 1, 14, 9, 0),
    )

    def ids(**filters):
        return [s.id for s in service.get_all_schedules(ScheduleFilters(**filters))]

    assert ids() == [late.id, weekly.id, early.id]
    assert ids(schedule_type="all", status="all") == [late.id, weekly.id, early.id]
    assert ids(schedule_type="weekly") == [weekly.id]
    assert ids(priority="high") == [late.id]
    assert ids(staff_id="stf_b") == [late.id]
    assert ids(department="Operations") == [weekly.id]
    assert ids(date=utc(2026, 1, 5, 18, 0)) == [early.id]
    assert ids(start_date=utc(2026, 1, 10), end_date=utc(2026, 1, 31)) == [late.id, weekly.id]
    assert ids(week_number=3) == [weekly.id]
    assert ids(search="sara") == [late.id]
    assert ids(search="warehouse") == [weekly.id]
    assert ids(search=weekly.schedule_id.lower()) == [weekly.id]


def test_upcoming_schedules(service, make_schedule):
    soon = make_schedule(scheduled_date=utc(2026, 1, 3, 9, 0))
    make_schedule(scheduled_date=utc(2026, 1, 20, 9, 0))
    cancelled = make_schedule(scheduled_date=utc(2026, 1, 4, 9, 0))
    service.update_schedule(cancelled.id, ScheduleUpdate(status="cancelled"))
    weekly = make_schedule(
        schedule_type="weekly", staff_ids=["stf_b"], scheduled_date=utc(2026, 1, 2, 9, 0)
    )

    assert [s.id for s in service.get_upcoming_schedules()] == [weekly.id, soon.id]
    assert [s.id for s in service.get_upcoming_schedules(schedule_type="daily")] == [soon.id]
    assert len(service.get_upcoming_schedules(days=30)) == 3

    with pytest.raises(ValidationError):
        service.get_upcoming_schedules(schedule_type="monthly")


def test_test_email_service_reports_transport_outcome(store):
    ok = _service(store, ScriptedMailer()).test_email_service("ops@example.com")
    failed = _service(store, ScriptedMailer(failures={"ops@example.com"})).test_email_service(
        "ops@example.com"
    )

    assert ok["success"] is True
    assert ok["details"]["recipient"] == "ops@example.com"
    assert failed["success"] is False
    assert failed["error"] == "mailbox unavailable"


def test_unrecorded_dispatch_outcome_keeps_schedule_pending(store, monkeypatch):
    service = _service(store, ScriptedMailer())

    def always_stale(collection, doc, expected_version=None):
        raise ConcurrencyError("Document version changed", {"id": doc["id"]})

    monkeypatch.setattr(store, "save", always_stale)

    result = service.create_schedule(_payload())

    assert result.schedule.dispatch_state == DispatchState.PENDING_DISPATCH
    assert result.schedule.email_status == AggregateEmailStatus.ALL_SENT
    assert store.find_by_id(SCHEDULES, result.schedule.id)["dispatch_state"] == "pending_dispatch"


def test_default_dispatcher_uses_service_clock(store):
    service = ScheduleService(store, settings=Settings(), clock=lambda: NOW)

    schedule = service.create_schedule(_payload()).schedule

    assert schedule.assignments[0].notification_sent_at == NOW
    assert schedule.last_notification_sent == NOW
    assert schedule.updated_at == NOW


@pytest.mark.parametrize("status", [AssignmentStatus.ACCEPTED, AssignmentStatus.DECLINED])
def test_update_assignment_status(service, make_schedule, status):
    schedule = make_schedule(staff_ids=["stf_a", "stf_b"])

    updated = service.update_assignment_status(schedule.id, "stf_b", status)

    stored = service.get_schedule_by_id(schedule.id)
    assert [a.staff_id for a in stored.assignments] == ["stf_a", "stf_b"]
    assert [a.status for a in stored.assignments] == [AssignmentStatus.PENDING, status]
    assert stored.version == schedule.version + 1
    assert updated.updated_at == NOW


def test_update_assignment_status_unknown_assignee(service, make_schedule):
    schedule = make_schedule()

    with pytest.raises(NotFoundError):
        service.update_assignment_status(schedule.id, "stf_c", AssignmentStatus.ACCEPTED)
    with pytest.raises(NotFoundError):
        service.update_assignment_status("missing", "stf_a", AssignmentStatus.ACCEPTED)

    assert service.get_schedule_by_id(schedule.id).version == schedule.version
