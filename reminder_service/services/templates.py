"""Reminder message templates."""

from dataclasses import dataclass
from html import escape

from reminder_service.schemas.notifications import ReminderJob, SlotKind


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    text: str
    html: str


def render_reminder_email(job: ReminderJob) -> RenderedEmail:
    """Render subject, plain text and HTML bodies for an email reminder."""
    near = job.slot_kind == SlotKind.T_MINUS_2H
    subject = (
        "Appointment reminder (in ~2 hours)" if near else "Appointment reminder (tomorrow)"
    )
    lines = [
        "Hello,",
        "",
        (
            "This is a reminder: your appointment is in about 2 hours."
            if near
            else "This is a reminder: your appointment is tomorrow."
        ),
        "",
        f"Clinic: {job.clinic_id}",
        f"Planned send time (local): {job.planned_local}",
        "",
        "If you need to reschedule, please contact the clinic.",
    ]
    html = "".join(f"<p>{escape(line) if line else '&nbsp;'}</p>" for line in lines)
    return RenderedEmail(subject=subject, text="\n".join(lines), html=html)


def render_reminder_sms(job: ReminderJob) -> str:
    """Short SMS body for a reminder."""
    if job.slot_kind == SlotKind.T_MINUS_2H:
        return "Reminder: your appointment is in ~2 hours."
    return "Reminder: your appointment is tomorrow."
