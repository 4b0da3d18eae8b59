"""Assignment notification dispatch.

One message is rendered per assignment and the whole set is handed to the
mail transport as a single batch. Results are applied to each assignment
independently, then the schedule's aggregate email state is recomputed. A
transport exception never escapes: it is logged and recorded as a failure
for every recipient in the batch.
"""

from __future__ import annotations

import html
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from ..domain.models import Assignment, NotificationResult, Schedule, ScheduleType
from .mailer import DeliveryResult, Mailer, OutgoingMessage

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def render_subject(schedule: Schedule) -> str:
    kind = "Weekly" if schedule.schedule_type == ScheduleType.WEEKLY else "Daily"
    return f"{kind} task assignment: {schedule.task_title}"


def render_text(schedule: Schedule, assignment: Assignment) -> str:
    lines = [
        f"Hi {assignment.staff_name},",
        "",
        f"You have been assigned to \"{schedule.task_title}\" ({schedule.schedule_id}).",
        f"Starts: {schedule.scheduled_date:%A, %B %d, %Y %H:%M} UTC",
        f"Ends: {schedule.end_date:%A, %B %d, %Y %H:%M} UTC",
        f"Estimated hours: {schedule.estimated_hours:g}",
        f"Priority: {schedule.priority.value}",
        f"Location: {schedule.location or 'Office'}",
    ]
    if schedule.task_description:
        lines += ["", schedule.task_description]
    if schedule.notes:
        lines += ["", f"Notes: {schedule.notes}"]
    lines += ["", "Thanks,", "Task Management System"]
    return "\n".join(lines)


def render_html(schedule: Schedule, assignment: Assignment) -> str:
    e = html.escape
    description = (
        f"<p>{e(schedule.task_description)}</p>" if schedule.task_description else ""
    )
    notes = f"<p><strong>Notes:</strong> {e(schedule.notes)}</p>" if schedule.notes else ""
    return f"""
    <div style="font-family:system-ui,Segoe UI,Roboto,Arial,sans-serif;font-size:14px;line-height:1.45">
      <p>Hi {e(assignment.staff_name)},</p>
      <p>You have been assigned to <strong>{e(schedule.task_title)}</strong>
         ({e(schedule.schedule_id)}).</p>
      <table style="border-collapse:collapse">
        <tr><td>Starts</td><td>{schedule.scheduled_date:%A, %B %d, %Y %H:%M} UTC</td></tr>
        <tr><td>Ends</td><td>{schedule.end_date:%A, %B %d, %Y %H:%M} UTC</td></tr>
        <tr><td>Estimated hours</td><td>{schedule.estimated_hours:g}</td></tr>
        <tr><td>Priority</td><td>{e(schedule.priority.value)}</td></tr>
        <tr><td>Location</td><td>{e(schedule.location or "Office")}</td></tr>
      </table>
      {description}
      {notes}
      <p>Thanks,<br/>Task Management System</p>
    </div>"""


def render_message(schedule: Schedule, assignment: Assignment) -> OutgoingMessage:
    return OutgoingMessage(
        to=assignment.email,
        subject=render_subject(schedule),
        html_body=render_html(schedule, assignment),
        text_body=render_text(schedule, assignment),
        headers={
            "X-Schedule-Id": schedule.schedule_id,
            "X-Recipient-Id": assignment.staff_id,
        },
    )


class NotificationDispatcher:
    """Send one notification per assignment and record the outcome in place."""

    def __init__(self, mailer: Mailer, clock: Callable[[], datetime] = _utcnow) -> None:
        self.mailer = mailer
        self.clock = clock

    def dispatch(
        self, schedule: Schedule, only: Optional[Sequence[Assignment]] = None
    ) -> List[NotificationResult]:
        """Notify every assignment, or just ``only``; returns one result each."""
        targets = list(schedule.assignments if only is None else only)
        messages = [render_message(schedule, a) for a in targets]
        logger.info(
            "dispatching notifications",
            extra={"schedule_id": schedule.schedule_id, "recipients": len(messages)},
        )
        try:
            deliveries = self.mailer.send_batch(messages)
        except Exception as exc:  # transport failures are absorbed into schedule state
            logger.exception(
                "notification batch failed", extra={"schedule_id": schedule.schedule_id}
            )
            deliveries = [DeliveryResult(success=False, error=str(exc) or type(exc).__name__)] * len(messages)

        if len(deliveries) < len(messages):
            missing = DeliveryResult(success=False, error="no delivery result returned")
            deliveries = list(deliveries) + [missing] * (len(messages) - len(deliveries))

        now = self.clock()
        results: List[NotificationResult] = []
        for assignment, delivery in zip(targets, deliveries):
            if delivery.success:
                assignment.mark_sent(delivery.message_id, now)
                results.append(
                    NotificationResult(
                        success=True,
                        staff_name=assignment.staff_name,
                        email=assignment.email,
                        message_id=delivery.message_id,
                        sent_at=now,
                    )
                )
            else:
                error = delivery.error or "delivery failed"
                assignment.mark_failed(error)
                results.append(
                    NotificationResult(
                        success=False,
                        staff_name=assignment.staff_name,
                        email=assignment.email,
                        error=error,
                    )
                )

        schedule.refresh_email_summary(now)
        sent = sum(1 for r in results if r.success)
        logger.info(
            "notification summary",
            extra={
                "schedule_id": schedule.schedule_id,
                "total": len(results),
                "successful": sent,
                "failed": len(results) - sent,
            },
        )
        return results
