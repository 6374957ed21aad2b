"""Appointment lifecycle: legal status transitions and who may trigger them."""
from enum import Enum

from meetdesk.core import errors
from meetdesk.models.appointment import Appointment, AppointmentStatus, CancelledBy, CreatedBy
from meetdesk.models.user import Caller, Role


class AppointmentEvent(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    COMPLETE = "complete"


TRANSITIONS: dict[tuple[AppointmentStatus, AppointmentEvent], AppointmentStatus] = {
    (AppointmentStatus.PENDING, AppointmentEvent.ACCEPT): AppointmentStatus.CONFIRMED,
    (AppointmentStatus.PENDING, AppointmentEvent.REJECT): AppointmentStatus.REJECTED,
    (AppointmentStatus.PENDING, AppointmentEvent.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.CONFIRMED, AppointmentEvent.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.BOOKED, AppointmentEvent.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.CONFIRMED, AppointmentEvent.COMPLETE): AppointmentStatus.COMPLETED,
    (AppointmentStatus.BOOKED, AppointmentEvent.COMPLETE): AppointmentStatus.COMPLETED,
}

# Who may trigger each event besides the owning teacher
_ADMIN_ALLOWED = {AppointmentEvent.CANCEL, AppointmentEvent.COMPLETE}
_STUDENT_ALLOWED = {AppointmentEvent.CANCEL}


def initial_status(created_by: CreatedBy) -> AppointmentStatus:
    # A teacher booking is requester and approver at once
    if created_by == CreatedBy.TEACHER:
        return AppointmentStatus.BOOKED
    return AppointmentStatus.PENDING


def allowed_events(status: AppointmentStatus) -> set[AppointmentEvent]:
    return {event for (source, event) in TRANSITIONS if source == status}


def next_status(status: AppointmentStatus, event: AppointmentEvent) -> AppointmentStatus:
    target = TRANSITIONS.get((status, event))
    if target is None:
        raise errors.InvalidTransition(
            f"Cannot {event.value} an appointment with status '{status.value}'"
        )
    return target


def is_owning_teacher(caller: Caller, appointment: Appointment) -> bool:
    return caller.role == Role.TEACHER and caller.id is not None and caller.id == appointment.teacher_id


def is_requesting_student(caller: Caller, appointment: Appointment) -> bool:
    if caller.role != Role.STUDENT:
        return False
    if caller.email:
        return caller.email.strip().lower() == (appointment.student_email or "").lower()
    if caller.name:
        return caller.name.strip().lower() == (appointment.student_name or "").strip().lower()
    return False


def authorize(event: AppointmentEvent, caller: Caller, appointment: Appointment) -> None:
    if is_owning_teacher(caller, appointment):
        return
    if caller.is_admin and event in _ADMIN_ALLOWED:
        return
    if event in _STUDENT_ALLOWED and is_requesting_student(caller, appointment):
        return
    raise errors.Forbidden(f"You are not allowed to {event.value} this appointment")


def authorize_edit(caller: Caller, appointment: Appointment) -> None:
    # Editing and rescheduling are not lifecycle events; students cancel and re-request instead
    if caller.is_admin or is_owning_teacher(caller, appointment):
        return
    raise errors.Forbidden("You can only update your own appointments")


def cancelled_by(caller: Caller) -> CancelledBy:
    return CancelledBy(caller.role.value)
