import logging
from datetime import datetime, timedelta
from typing import Protocol

from ..config import FRONTEND_URL

logger = logging.getLogger(__name__)

REMINDER_LEAD = timedelta(hours=1)
REMINDER_TOLERANCE = timedelta(minutes=5)


class Mailer(Protocol):
    async def send(self, to: str, subject: str, html: str) -> None:
        ...


class LoggingMailer:
    """Stand-in dispatcher that only logs. Real delivery is wired in by the deployment."""

    async def send(self, to: str, subject: str, html: str) -> None:
        logger.info("Mail to %s: %s", to, subject)


def render_exam_reminder(name: str, start_time: datetime) -> str:
    return (
        '<div style="font-family: sans-serif; max-width: 600px; margin: auto; padding: 20px;">'
        "<h2>Exam Reminder</h2>"
        f"<p>Hello <strong>{name}</strong>,</p>"
        "<p>Your exam is scheduled to start in about 1 hour.</p>"
        f"<p><strong>Start Time:</strong> {start_time.strftime('%H:%M')} UTC</p>"
        f'<p><strong>Portal:</strong> <a href="{FRONTEND_URL}/exam">{FRONTEND_URL}/exam</a></p>'
        "<p>Best of luck!</p>"
        "</div>"
    )


def reminder_due(start_time: datetime, now: datetime) -> bool:
    """True when the window start is REMINDER_LEAD away, give or take REMINDER_TOLERANCE."""
    diff = start_time - now
    return REMINDER_LEAD - REMINDER_TOLERANCE < diff < REMINDER_LEAD + REMINDER_TOLERANCE


async def send_exam_reminder_if_due(config_store, mailer: Mailer, now: datetime) -> int:
    """
    Called by the periodic sweep. Sends the one-hour reminder to every eligible allowlisted
    candidate, at most once per exam window. Returns the number of mails sent.
    """
    window = await config_store.get_window()
    start_time = window["start_time"]
    if start_time is None or not reminder_due(start_time, now):
        return 0

    # the flag is claimed before sending so two sweeps cannot both mail
    if not await config_store.claim_flag(f"exam_reminder_sent:{start_time.isoformat()}"):
        return 0

    # the flag means "attempted": one failed delivery must not cost the others their reminder
    sent = 0
    for candidate in await config_store.list_allowlist(only_eligible=True):
        try:
            await mailer.send(
                candidate.email,
                "Exam Reminder: your exam starts in 1 hour!",
                render_exam_reminder(candidate.name, start_time),
            )
        except Exception:
            logger.exception("Failed to send exam reminder to %s", candidate.email)
            continue
        sent += 1
    logger.info("Sent %d exam reminders for window starting %s", sent, start_time.isoformat())
    return sent
