"""Shared fixtures: seeded in-memory store, scripted mailer, fixed clock."""

from datetime import datetime, timezone
from pathlib import Path
import sys

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))
from staffsched.core.config import Settings  # noqa: E402
from staffsched.core.metrics import PrometheusMetrics  # noqa: E402
from staffsched.domain.models import Staff, Task  # noqa: E402
from staffsched.domain.schemas import ScheduleCreate  # noqa: E402
from staffsched.services.mailer import DeliveryResult  # noqa: E402
from staffsched.services.notifications import NotificationDispatcher  # noqa: E402
from staffsched.services.scheduling import ScheduleService  # noqa: E402
from staffsched.store import STAFF, TASKS, InMemoryStore  # noqa: E402

NOW = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

STAFF_MEMBERS = [
    Staff(id="stf_a", name="Abebe Kebede", email="abebe@example.com", department="Finance"),
    Staff(id="stf_b", name="Sara Tesfaye", email="sara@example.com", department="Finance"),
    Staff(id="stf_c", name="Lemlem Haile", email="lemlem@example.com", department="Operations"),
]

TASKS_SEED = [
    Task(
        id="tsk_report",
        title="Monthly report",
        description="Compile the monthly finance report",
        category="Reporting",
        department="Finance",
    ),
    Task(id="tsk_clean", title="Warehouse audit", category="Facilities", department="Operations"),
    Task(id="tsk_misc", title="Inbox triage"),
]


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class ScriptedMailer:
    """Mail transport whose per-recipient outcome is scripted by address."""

    def __init__(self, failures=None, raises=None, on_batch=None):
        self.failures = set(failures or ())
        self.raises = raises
        self.on_batch = on_batch
        self.batches = []

    def send(self, message):
        return self.send_batch([message])[0]

    def send_batch(self, messages):
        self.batches.append(list(messages))
        if self.on_batch is not None:
            self.on_batch(messages)
        if self.raises is not None:
            raise self.raises
        return [
            DeliveryResult(success=False, error="mailbox unavailable")
            if m.to in self.failures
            else DeliveryResult(success=True, message_id=f"<{m.to}>")
            for m in messages
        ]


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    for staff in STAFF_MEMBERS:
        store.insert(STAFF, staff.to_document())
    for task in TASKS_SEED:
        store.insert(TASKS, task.to_document())
    return store


@pytest.fixture
def mailer() -> ScriptedMailer:
    return ScriptedMailer()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def metrics() -> PrometheusMetrics:
    return PrometheusMetrics()


@pytest.fixture
def service(store, mailer, settings, metrics) -> ScheduleService:
    return ScheduleService(
        store,
        dispatcher=NotificationDispatcher(mailer, clock=lambda: NOW),
        metrics=metrics,
        settings=settings,
        clock=lambda: NOW,
    )


@pytest.fixture
def make_schedule(service):
    """Create a schedule through the service with sensible defaults."""

    def _make(**overrides):
        payload = {
            "schedule_type": "daily",
            "task_id": "tsk_report",
            "staff_ids": ["stf_a"],
            "estimated_hours": 2,
            "scheduled_date": utc(2026, 1, 5, 10, 0),
            "send_email": False,
        }
        payload.update(overrides)
        return service.create_schedule(ScheduleCreate(**payload)).schedule

    return _make
