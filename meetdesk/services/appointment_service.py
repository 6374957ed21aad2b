import logging
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from meetdesk.core import errors
from meetdesk.core.config import settings
from meetdesk.core.locks import slot_locks
from meetdesk.models.appointment import (
    OCCUPYING_STATUSES,
    Appointment,
    AppointmentStatus,
    CancelledBy,
    CreatedBy,
    StudentInfo,
    Weekday,
    utc_naive_now,
)
from meetdesk.models.user import Caller, Role, User
from meetdesk.services import events, lifecycle
from meetdesk.services.lifecycle import AppointmentEvent
from meetdesk.services.slot_service import (
    SlotKey,
    find_conflict,
    is_declared,
    parse_weekday,
    weekday_of,
)

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = "This time slot is already booked or has a pending request"
SLOT_CONFLICT_MESSAGE = "Time slot conflict detected. Another appointment is already confirmed for this time."


class Decision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


def _today() -> date:
    return datetime.now(UTC).date()


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def _clean_student(student: StudentInfo, caller: Caller | None = None) -> StudentInfo:
    name = (student.name or "").strip()
    email = (student.email or "").strip().lower()
    # A signed-in student does not have to repeat who they are
    if caller is not None and caller.role == Role.STUDENT:
        name = name or (caller.name or "").strip()
        email = email or (caller.email or "").strip().lower()
    if not name or not email:
        raise errors.ValidationError("Student name and email are required")
    return StudentInfo(
        name=name,
        email=email,
        phone=(student.phone or "").strip(),
        subject=(student.subject or "").strip(),
        message=(student.message or "").strip(),
    )


def _validate_schedule(day: str | Weekday | None, on_date: date, today: date) -> Weekday:
    if on_date < today:
        raise errors.ValidationError("Appointment date cannot be in the past")
    actual = weekday_of(on_date)
    if not day:
        return actual
    weekday = parse_weekday(day)
    if weekday != actual:
        raise errors.ValidationError(f"{on_date.isoformat()} is a {actual.value}, not a {weekday.value}")
    return weekday


def _check_declared(teacher: User, weekday: Weekday, slot_time: str) -> None:
    if settings.enforce_declared_availability and teacher.availability:
        if not is_declared(teacher, weekday, slot_time):
            raise errors.SlotUnavailable(
                f"{teacher.full_name or 'Teacher'} is not available at {slot_time} on {weekday.value}"
            )


async def get_teacher(session: AsyncSession, teacher_id: int) -> User:
    result = await session.execute(select(User).where(User.id == teacher_id))
    teacher = result.scalar_one_or_none()
    if not teacher or teacher.role != Role.TEACHER or not teacher.is_active:
        raise errors.NotFound("Teacher not found")
    return teacher


async def get_appointment_or_404(session: AsyncSession, appointment_id: int) -> Appointment:
    result = await session.execute(select(Appointment).where(Appointment.id == appointment_id))
    appointment = result.scalar_one_or_none()
    if not appointment:
        raise errors.NotFound("Appointment not found")
    return appointment


async def _lock_teacher_schedule(session: AsyncSession, teacher_id: int) -> None:
    """Serialize slot checks for one teacher across processes until the transaction ends.

    Slot locks only cover this process, so every check-then-write on a teacher's slots
    also locks the teacher's row.
    """
    if session.get_bind().dialect.name == "sqlite":
        # No row locks in SQLite; any write takes the database write lock instead
        await session.execute(
            update(User)
            .where(User.id == teacher_id)
            .values(id=User.id)
            .execution_options(synchronize_session=False)
        )
    else:
        await session.execute(select(User.id).where(User.id == teacher_id).with_for_update())


async def _release_schedule_lock(session: AsyncSession) -> None:
    # Only the lock was written; commit (not rollback) keeps loaded objects usable
    await session.commit()


async def _create(
    session: AsyncSession,
    teacher: User,
    weekday: Weekday,
    time_slot: str,
    on_date: date,
    student: StudentInfo,
    created_by: CreatedBy,
    notes: str = "",
) -> Appointment:
    key = SlotKey.of(teacher.id, on_date, time_slot)
    _check_declared(teacher, weekday, key.slot_time)

    async with slot_locks.hold(key):
        await _lock_teacher_schedule(session, teacher.id)
        conflicting = await find_conflict(session, *key)
        if conflicting:
            await _release_schedule_lock(session)
            logger.info(
                "Slot %s taken by appointment %s (%s); rejecting new %s request",
                key, conflicting.id, conflicting.status.value, created_by.value,
            )
            raise errors.SlotUnavailable(SLOT_TAKEN_MESSAGE)
        now = utc_naive_now()
        appointment = Appointment(
            teacher_id=teacher.id,
            teacher_name=teacher.full_name or "",
            student_name=student.name,
            student_email=student.email,
            student_phone=student.phone,
            student_subject=student.subject,
            student_message=student.message,
            day=weekday,
            time_slot=time_slot.strip(),
            slot_time=key.slot_time,
            appointment_date=key.date,
            status=lifecycle.initial_status(created_by),
            created_by=created_by,
            notes=(notes or "").strip(),
            created_at=now,
            updated_at=now,
        )
        session.add(appointment)
        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            raise errors.SlotUnavailable(SLOT_TAKEN_MESSAGE) from exc

    logger.info(
        "Appointment %s created as %s for teacher %s on %s at %s",
        appointment.id, appointment.status.value, teacher.id, key.date, key.slot_time,
    )
    await events.publish(events.AppointmentChanged.from_appointment(appointment))
    return appointment


async def request_appointment(
    session: AsyncSession,
    teacher_id: int,
    day: str | Weekday | None,
    time_slot: str,
    on_date: date | datetime,
    student: StudentInfo,
    caller: Caller | None = None,
    today: date | None = None,
) -> Appointment:
    """Student asks for a slot; the appointment waits as pending for the teacher's answer."""
    student = _clean_student(student, caller)
    on_date = _as_date(on_date)
    weekday = _validate_schedule(day, on_date, today or _today())
    teacher = await get_teacher(session, teacher_id)
    return await _create(session, teacher, weekday, time_slot, on_date, student, CreatedBy.STUDENT)


async def direct_book(
    session: AsyncSession,
    caller: Caller,
    teacher_id: int,
    day: str | Weekday | None,
    time_slot: str,
    on_date: date | datetime,
    student: StudentInfo,
    notes: str | None = None,
    today: date | None = None,
) -> Appointment:
    """Teacher books one of their own slots; no approval step."""
    if caller.role != Role.TEACHER or caller.id != teacher_id:
        raise errors.Forbidden("Only the teacher being booked can book appointments directly")
    student = _clean_student(student)
    on_date = _as_date(on_date)
    weekday = _validate_schedule(day, on_date, today or _today())
    teacher = await get_teacher(session, teacher_id)
    return await _create(session, teacher, weekday, time_slot, on_date, student, CreatedBy.TEACHER, notes or "")


async def _write_if_unchanged(
    session: AsyncSession,
    appointment: Appointment,
    current: AppointmentStatus,
    values: dict[str, Any],
    stamp: tuple[str, ...],
    on_duplicate: errors.BookingError,
) -> None:
    """Write ``values`` only if the row still has status ``current``, then commit."""
    now = max(utc_naive_now(), appointment.updated_at)
    stmt = (
        update(Appointment)
        .where(Appointment.id == appointment.id, Appointment.status == current)
        .values(updated_at=now, **values, **{field: now for field in stamp})
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        await session.rollback()
        raise errors.InvalidTransition("Appointment was changed by another request; reload and retry")
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise on_duplicate from exc
    await session.refresh(appointment)


async def _transition(
    session: AsyncSession,
    appointment_id: int,
    caller: Caller,
    event: AppointmentEvent,
    values: dict[str, Any],
    stamp: tuple[str, ...] = (),
    today: date | None = None,
    require_elapsed: bool = False,
) -> Appointment:
    """Apply one lifecycle edge as a single read-check-write unit under the slot lock.

    ``stamp`` names timestamp columns set to the write time alongside ``updated_at``.
    """
    appointment = await get_appointment_or_404(session, appointment_id)
    lifecycle.authorize(event, caller, appointment)

    async with slot_locks.hold(SlotKey.for_appointment(appointment)):
        await _lock_teacher_schedule(session, appointment.teacher_id)
        try:
            await session.refresh(appointment)
            current = appointment.status
            target = lifecycle.next_status(current, event)

            if event == AppointmentEvent.COMPLETE and require_elapsed:
                if appointment.appointment_date > (today or _today()):
                    raise errors.InvalidTransition("Appointment cannot be completed before its date")

            if target in OCCUPYING_STATUSES:
                # Another request for this slot may have been confirmed while this one was pending
                conflicting = await find_conflict(
                    session,
                    appointment.teacher_id,
                    appointment.appointment_date,
                    appointment.slot_time,
                    exclude_id=appointment.id,
                    statuses=OCCUPYING_STATUSES,
                )
                if conflicting:
                    logger.warning(
                        "Cannot %s appointment %s: slot held by appointment %s",
                        event.value, appointment.id, conflicting.id,
                    )
                    raise errors.Conflict(SLOT_CONFLICT_MESSAGE)
        except errors.BookingError:
            await _release_schedule_lock(session)
            raise

        await _write_if_unchanged(
            session, appointment, current, {"status": target, **values}, stamp,
            on_duplicate=errors.Conflict(SLOT_CONFLICT_MESSAGE),
        )

    logger.info(
        "Appointment %s %s -> %s by %s %s",
        appointment.id, current.value, target.value, caller.role.value, caller.id or caller.email,
    )
    await events.publish(events.AppointmentChanged.from_appointment(appointment))
    return appointment


async def respond_to_request(
    session: AsyncSession,
    appointment_id: int,
    caller: Caller,
    decision: Decision | str,
    message: str | None = None,
) -> Appointment:
    try:
        decision = Decision(decision)
    except ValueError:
        raise errors.ValidationError("Decision must be 'accept' or 'reject'") from None
    if decision == Decision.ACCEPT:
        event, default_message = AppointmentEvent.ACCEPT, "Request accepted"
    else:
        event, default_message = AppointmentEvent.REJECT, "Request rejected"
    values = {"response_message": (message or "").strip() or default_message}
    return await _transition(session, appointment_id, caller, event, values, stamp=("responded_at",))


async def cancel_appointment(
    session: AsyncSession,
    appointment_id: int,
    caller: Caller,
    reason: str | None = None,
) -> Appointment:
    values = {
        "cancellation_reason": (reason or "").strip() or "No reason provided",
        "cancelled_by": lifecycle.cancelled_by(caller),
    }
    return await _transition(
        session, appointment_id, caller, AppointmentEvent.CANCEL, values, stamp=("cancelled_at",)
    )


async def complete_appointment(
    session: AsyncSession,
    appointment_id: int,
    caller: Caller,
    today: date | None = None,
    require_elapsed: bool | None = None,
) -> Appointment:
    if require_elapsed is None:
        require_elapsed = settings.completion_requires_elapsed_date
    return await _transition(
        session, appointment_id, caller, AppointmentEvent.COMPLETE, {},
        stamp=("completed_at",), today=today, require_elapsed=require_elapsed,
    )


async def update_appointment(
    session: AsyncSession,
    appointment_id: int,
    caller: Caller,
    notes: str | None = None,
    student: StudentInfo | None = None,
    day: str | Weekday | None = None,
    time_slot: str | None = None,
    on_date: date | datetime | None = None,
    today: date | None = None,
) -> Appointment:
    """Owning teacher or admin edits notes and student details, or moves the appointment.

    A move re-normalizes the time and must land on a slot with no other active
    appointment. Status never changes here, and finished appointments can't be edited.
    """
    appointment = await get_appointment_or_404(session, appointment_id)
    lifecycle.authorize_edit(caller, appointment)

    values: dict[str, Any] = {}
    if notes is not None:
        values["notes"] = notes.strip()
    if student is not None:
        cleaned = _clean_student(student)
        values.update(
            student_name=cleaned.name,
            student_email=cleaned.email,
            student_phone=cleaned.phone,
            student_subject=cleaned.subject,
            student_message=cleaned.message,
        )

    old_key = SlotKey.for_appointment(appointment)
    new_key = old_key
    moving = day is not None or time_slot is not None or on_date is not None
    if moving:
        target_date = _as_date(on_date) if on_date is not None else appointment.appointment_date
        weekday = _validate_schedule(day, target_date, today or _today())
        raw_slot = time_slot.strip() if time_slot is not None else appointment.time_slot
        new_key = SlotKey.of(appointment.teacher_id, target_date, raw_slot)
        if new_key != old_key:
            _check_declared(await get_teacher(session, appointment.teacher_id), weekday, new_key.slot_time)
        values.update(day=weekday, time_slot=raw_slot, slot_time=new_key.slot_time, appointment_date=new_key.date)
    if not values:
        raise errors.ValidationError("Nothing to update")

    async with slot_locks.hold_many(old_key, new_key):
        await _lock_teacher_schedule(session, appointment.teacher_id)
        try:
            await session.refresh(appointment)
            current = appointment.status
            if appointment.is_terminal:
                raise errors.InvalidTransition(f"Cannot edit an appointment with status '{current.value}'")
            if new_key != SlotKey.for_appointment(appointment):
                conflicting = await find_conflict(session, *new_key, exclude_id=appointment.id)
                if conflicting:
                    logger.info(
                        "Cannot move appointment %s to %s: slot taken by appointment %s",
                        appointment.id, new_key, conflicting.id,
                    )
                    raise errors.SlotUnavailable(SLOT_TAKEN_MESSAGE)
        except errors.BookingError:
            await _release_schedule_lock(session)
            raise

        await _write_if_unchanged(
            session, appointment, current, values, (), on_duplicate=errors.SlotUnavailable(SLOT_TAKEN_MESSAGE)
        )

    if new_key != old_key:
        logger.info("Appointment %s moved from %s to %s", appointment.id, old_key, new_key)
    else:
        logger.info("Appointment %s details updated by %s %s", appointment.id, caller.role.value, caller.id)
    return appointment


async def expire_stale_requests(
    session: AsyncSession,
    today: date | None = None,
    expiry_days: int | None = None,
) -> int:
    """Cancel pending requests whose date is more than ``expiry_days`` in the past.

    Falls back to settings.pending_expiry_days; does nothing when that is unset.
    Returns count expired.
    """
    if expiry_days is None:
        expiry_days = settings.pending_expiry_days
    if expiry_days is None:
        return 0
    cutoff = (today or _today()) - timedelta(days=expiry_days)
    result = await session.execute(
        select(Appointment.id).where(
            Appointment.status == AppointmentStatus.PENDING,
            Appointment.appointment_date < cutoff,
        )
    )
    stale_ids = [row[0] for row in result.all()]
    if not stale_ids:
        return 0

    now = utc_naive_now()
    expired: list[int] = []
    for appointment_id in stale_ids:
        # A request answered meanwhile no longer matches and is left alone
        res = await session.execute(
            update(Appointment)
            .where(Appointment.id == appointment_id, Appointment.status == AppointmentStatus.PENDING)
            .values(
                status=AppointmentStatus.CANCELLED,
                cancelled_by=CancelledBy.SYSTEM,
                cancelled_at=now,
                cancellation_reason="Request expired",
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            expired.append(appointment_id)
    await session.commit()
    if not expired:
        return 0

    result = await session.execute(
        select(Appointment)
        .where(Appointment.id.in_(expired))
        .order_by(Appointment.id)
        .execution_options(populate_existing=True)
    )
    for appointment in result.scalars().all():
        logger.info("Appointment %s expired (date %s)", appointment.id, appointment.appointment_date)
        await events.publish(events.AppointmentChanged.from_appointment(appointment))
    return len(expired)
