import inspect
import logging
from collections.abc import Awaitable, Callable

from pydantic import BaseModel

from meetdesk.models.appointment import Appointment, AppointmentStatus

logger = logging.getLogger(__name__)


class AppointmentChanged(BaseModel):
    appointment_id: int
    new_status: AppointmentStatus
    teacher_id: int
    student_email: str

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "AppointmentChanged":
        return cls(
            appointment_id=appointment.id,
            new_status=appointment.status,
            teacher_id=appointment.teacher_id,
            student_email=appointment.student_email,
        )


Handler = Callable[[AppointmentChanged], Awaitable[None] | None]

_subscribers: list[Handler] = []


def subscribe(handler: Handler) -> None:
    if handler not in _subscribers:
        _subscribers.append(handler)


def unsubscribe(handler: Handler) -> None:
    if handler in _subscribers:
        _subscribers.remove(handler)


async def publish(event: AppointmentChanged) -> None:
    """Deliver to every subscriber; a failing subscriber never fails the booking."""
    for handler in list(_subscribers):
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception("Event handler %r failed for appointment %s: %s", handler, event.appointment_id, e)
