from datetime import date

import pytest

from meetdesk.core import errors
from meetdesk.models.appointment import (
    TERMINAL_STATUSES,
    Appointment,
    AppointmentStatus,
    CancelledBy,
    CreatedBy,
    Weekday,
)
from meetdesk.models.user import Caller, Role
from meetdesk.services.lifecycle import (
    AppointmentEvent,
    allowed_events,
    authorize,
    cancelled_by,
    initial_status,
    next_status,
)

OWNER = Caller(id=1, role=Role.TEACHER, email="t1@school.edu")
OTHER_TEACHER = Caller(id=2, role=Role.TEACHER, email="t2@school.edu")
ADMIN = Caller(id=3, role=Role.ADMIN, email="admin@school.edu")
STUDENT = Caller(role=Role.STUDENT, email=" Ann@Student.edu ")
OTHER_STUDENT = Caller(role=Role.STUDENT, email="bob@student.edu")


def _appointment() -> Appointment:
    return Appointment(
        id=10,
        teacher_id=1,
        student_name="Ann Student",
        student_email="ann@student.edu",
        day=Weekday.MONDAY,
        time_slot="3:00 PM",
        slot_time="3:00 PM",
        appointment_date=date(2030, 1, 7),
        status=AppointmentStatus.PENDING,
        created_by=CreatedBy.STUDENT,
    )


def test_initial_status_depends_on_creator() -> None:
    assert initial_status(CreatedBy.STUDENT) == AppointmentStatus.PENDING
    assert initial_status(CreatedBy.TEACHER) == AppointmentStatus.BOOKED


@pytest.mark.parametrize(
    ("status", "event", "expected"),
    [
        (AppointmentStatus.PENDING, AppointmentEvent.ACCEPT, AppointmentStatus.CONFIRMED),
        (AppointmentStatus.PENDING, AppointmentEvent.REJECT, AppointmentStatus.REJECTED),
        (AppointmentStatus.PENDING, AppointmentEvent.CANCEL, AppointmentStatus.CANCELLED),
        (AppointmentStatus.CONFIRMED, AppointmentEvent.CANCEL, AppointmentStatus.CANCELLED),
        (AppointmentStatus.BOOKED, AppointmentEvent.CANCEL, AppointmentStatus.CANCELLED),
        (AppointmentStatus.CONFIRMED, AppointmentEvent.COMPLETE, AppointmentStatus.COMPLETED),
        (AppointmentStatus.BOOKED, AppointmentEvent.COMPLETE, AppointmentStatus.COMPLETED),
    ],
)
def test_legal_transitions(status, event, expected) -> None:
    assert next_status(status, event) == expected


@pytest.mark.parametrize(
    ("status", "event"),
    [
        (AppointmentStatus.PENDING, AppointmentEvent.COMPLETE),
        (AppointmentStatus.CONFIRMED, AppointmentEvent.ACCEPT),
        (AppointmentStatus.BOOKED, AppointmentEvent.REJECT),
        (AppointmentStatus.CONFIRMED, AppointmentEvent.REJECT),
    ],
)
def test_illegal_transitions_raise(status, event) -> None:
    with pytest.raises(errors.InvalidTransition):
        next_status(status, event)


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
def test_terminal_states_have_no_outgoing_edges(status) -> None:
    assert allowed_events(status) == set()
    for event in AppointmentEvent:
        with pytest.raises(errors.InvalidTransition):
            next_status(status, event)


def test_owning_teacher_may_do_everything() -> None:
    appointment = _appointment()
    for event in AppointmentEvent:
        authorize(event, OWNER, appointment)


@pytest.mark.parametrize("event", list(AppointmentEvent))
def test_other_teacher_is_forbidden(event) -> None:
    with pytest.raises(errors.Forbidden):
        authorize(event, OTHER_TEACHER, _appointment())


def test_admin_may_cancel_and_complete_but_not_respond() -> None:
    appointment = _appointment()
    authorize(AppointmentEvent.CANCEL, ADMIN, appointment)
    authorize(AppointmentEvent.COMPLETE, ADMIN, appointment)
    for event in (AppointmentEvent.ACCEPT, AppointmentEvent.REJECT):
        with pytest.raises(errors.Forbidden):
            authorize(event, ADMIN, appointment)


def test_requesting_student_may_only_cancel() -> None:
    appointment = _appointment()
    authorize(AppointmentEvent.CANCEL, STUDENT, appointment)
    for event in (AppointmentEvent.ACCEPT, AppointmentEvent.REJECT, AppointmentEvent.COMPLETE):
        with pytest.raises(errors.Forbidden):
            authorize(event, STUDENT, appointment)
    with pytest.raises(errors.Forbidden):
        authorize(AppointmentEvent.CANCEL, OTHER_STUDENT, appointment)


def test_student_without_email_is_matched_by_name() -> None:
    appointment = _appointment()
    authorize(AppointmentEvent.CANCEL, Caller(role=Role.STUDENT, name="ann student"), appointment)
    with pytest.raises(errors.Forbidden):
        authorize(AppointmentEvent.CANCEL, Caller(role=Role.STUDENT, name="Someone Else"), appointment)


def test_cancelled_by_maps_role() -> None:
    assert cancelled_by(OWNER) == CancelledBy.TEACHER
    assert cancelled_by(ADMIN) == CancelledBy.ADMIN
    assert cancelled_by(STUDENT) == CancelledBy.STUDENT
