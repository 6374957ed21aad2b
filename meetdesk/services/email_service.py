import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from meetdesk.core.config import settings
from meetdesk.core.db import async_session_maker
from meetdesk.models.appointment import Appointment, AppointmentStatus
from meetdesk.services.events import AppointmentChanged

logger = logging.getLogger(__name__)

# Sends handed to the executor and not yet finished
_in_flight: set[asyncio.Future] = set()

_HEADLINES = {
    AppointmentStatus.PENDING: "Appointment Requested",
    AppointmentStatus.CONFIRMED: "Appointment Confirmed",
    AppointmentStatus.BOOKED: "Appointment Booked",
    AppointmentStatus.COMPLETED: "Appointment Completed",
    AppointmentStatus.CANCELLED: "Appointment Cancelled",
    AppointmentStatus.REJECTED: "Appointment Request Declined",
}


def _send_email_sync(to_email: str, subject: str, html_body: str) -> None:
    """Send email via SMTP (blocking). Run in an executor."""
    if not settings.email_enabled:
        logger.debug("Email disabled (SMTP not configured), skipping send")
        return
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{settings.from_name} <{settings.from_email}>"
    msg["To"] = to_email
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.from_email, [to_email], msg.as_string())
        logger.info("Email sent to %s", to_email)
    except Exception as e:
        logger.exception("Failed to send email to %s: %s", to_email, e)


def _html_escape(s: str) -> str:
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def build_status_change_html(appointment: Appointment) -> str:
    headline = _HEADLINES[appointment.status]
    date_str = appointment.appointment_date.strftime("%A, %B %d, %Y")
    teacher = _html_escape(appointment.teacher_name or "your teacher")

    note = ""
    if appointment.status == AppointmentStatus.CANCELLED and appointment.cancellation_reason:
        note = f"<p><strong>Reason:</strong> {_html_escape(appointment.cancellation_reason)}</p>"
    elif appointment.response_message and appointment.status in (
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.REJECTED,
    ):
        note = f"<p><strong>Message from {teacher}:</strong> {_html_escape(appointment.response_message)}</p>"

    contact = ""
    if settings.contact_email:
        contact = f'<p style="color:#6b7280;font-size:13px;">Questions? Contact {settings.contact_email}</p>'

    return f"""
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{headline}</title></head>
<body style="font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;background:#f3f4f6;padding:32px;">
  <div style="max-width:560px;margin:0 auto;background:#ffffff;border-radius:12px;padding:32px;">
    <h1 style="margin:0 0 8px 0;font-size:22px;color:#111827;">{headline}</h1>
    <p style="color:#6b7280;">Hi {_html_escape(appointment.student_name or 'there')},</p>
    <p>Your consultation with {teacher} on <strong>{date_str}</strong>
       at <strong>{_html_escape(appointment.time_slot)}</strong> is now <strong>{appointment.status.value}</strong>.</p>
    {note}
    {contact}
    <p style="margin-top:24px;font-size:13px;font-weight:600;">{settings.site_name}</p>
  </div>
</body>
</html>
"""


def _send_finished(future: asyncio.Future) -> None:
    _in_flight.discard(future)
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Email send crashed: %s", exc, exc_info=exc)


async def notify_status_change(event: AppointmentChanged) -> None:
    """Event subscriber: email the student about their appointment's new status.

    Sending happens in a worker thread and is not awaited, so a slow SMTP server
    never holds up the booking that triggered it.
    """
    if not settings.email_enabled:
        return
    async with async_session_maker() as session:
        appointment = await session.get(Appointment, event.appointment_id)
    if appointment is None or not appointment.student_email:
        return
    subject = f"{settings.site_name} – {_HEADLINES[appointment.status]}"
    html = build_status_change_html(appointment)
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(None, _send_email_sync, appointment.student_email, subject, html)
    _in_flight.add(future)
    future.add_done_callback(_send_finished)
