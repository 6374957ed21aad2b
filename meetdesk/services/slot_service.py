import re
from collections.abc import Iterable
from datetime import date, datetime
from typing import NamedTuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from meetdesk.core import errors
from meetdesk.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus, Weekday
from meetdesk.models.user import User

# Hour-long windows offered on teacher profiles
STANDARD_SLOTS = [
    "9:00 AM - 10:00 AM",
    "10:00 AM - 11:00 AM",
    "11:00 AM - 12:00 PM",
    "12:00 PM - 1:00 PM",
    "2:00 PM - 3:00 PM",
    "3:00 PM - 4:00 PM",
    "4:00 PM - 5:00 PM",
    "5:00 PM - 6:00 PM",
]

_RANGE_SEPARATOR = re.compile(r"\s*[-–—]\s*|\s+to\s+", re.IGNORECASE)
_TIME_12H = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*([AP])\.?\s*M\.?$", re.IGNORECASE)
_TIME_24H = re.compile(r"^(\d{1,2}):(\d{2})$")


def normalize_time(text: str | None) -> str:
    """Canonical slot start time, "H:MM AM|PM".

    Accepts "3:00 PM", "3 pm", "15:00" or a range such as "3:00 PM - 4:00 PM", in which
    case the start of the range is used.
    """
    if not text or not text.strip():
        raise errors.InvalidTimeFormat("Time is required")
    start = _RANGE_SEPARATOR.split(text.strip(), maxsplit=1)[0].strip()

    match = _TIME_12H.match(start)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        meridiem = match.group(3).upper() + "M"
        if not 1 <= hour <= 12 or minute > 59:
            raise errors.InvalidTimeFormat(f"Invalid time: {text!r}")
        return f"{hour}:{minute:02d} {meridiem}"

    match = _TIME_24H.match(start)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            raise errors.InvalidTimeFormat(f"Invalid time: {text!r}")
        meridiem = "PM" if hour >= 12 else "AM"
        display_hour = hour % 12 or 12
        return f"{display_hour}:{minute:02d} {meridiem}"

    raise errors.InvalidTimeFormat(
        f'Invalid time format {text!r}. Use formats like "2:00 PM" or "2:00 PM - 3:00 PM"'
    )


def parse_weekday(label: str | Weekday) -> Weekday:
    if isinstance(label, Weekday):
        return label
    cleaned = (label or "").strip().capitalize()
    try:
        return Weekday(cleaned)
    except ValueError:
        raise errors.ValidationError(f"Invalid day {label!r}") from None


def weekday_of(d: date) -> Weekday:
    return list(Weekday)[d.weekday()]


class SlotKey(NamedTuple):
    """(teacher, calendar date, canonical start time): the unit conflict detection keys on."""

    teacher_id: int
    date: date
    slot_time: str

    @classmethod
    def of(cls, teacher_id: int, when: date | datetime, time_text: str) -> "SlotKey":
        if isinstance(when, datetime):
            when = when.date()
        return cls(teacher_id, when, normalize_time(time_text))

    @classmethod
    def for_appointment(cls, appointment: Appointment) -> "SlotKey":
        return cls(appointment.teacher_id, appointment.appointment_date, appointment.slot_time)


async def find_conflict(
    session: AsyncSession,
    teacher_id: int,
    on_date: date,
    slot_time: str,
    exclude_id: int | None = None,
    statuses: Iterable[AppointmentStatus] = ACTIVE_STATUSES,
) -> Appointment | None:
    q = select(Appointment).where(
        Appointment.teacher_id == teacher_id,
        Appointment.appointment_date == on_date,
        Appointment.slot_time == slot_time,
        Appointment.status.in_(list(statuses)),
    )
    if exclude_id is not None:
        q = q.where(Appointment.id != exclude_id)
    result = await session.execute(q.limit(1))
    return result.scalars().first()


async def has_conflict(
    session: AsyncSession,
    teacher_id: int,
    on_date: date,
    slot_time: str,
    exclude_id: int | None = None,
    statuses: Iterable[AppointmentStatus] = ACTIVE_STATUSES,
) -> bool:
    return await find_conflict(session, teacher_id, on_date, slot_time, exclude_id, statuses) is not None


def declared_slots(teacher: User, day: Weekday) -> list[str]:
    """Time windows the teacher declared for ``day``.

    Entries may be prefixed with a weekday ("Monday 3:00 PM - 4:00 PM"); unprefixed
    entries apply to every day.
    """
    out: list[str] = []
    for entry in teacher.availability or []:
        first, _, rest = entry.strip().partition(" ")
        try:
            entry_day = parse_weekday(first)
        except errors.ValidationError:
            out.append(entry.strip())
            continue
        if entry_day == day and rest.strip():
            out.append(rest.strip())
    return out


def is_declared(teacher: User, day: Weekday, slot_time: str) -> bool:
    for window in declared_slots(teacher, day):
        try:
            if normalize_time(window) == slot_time:
                return True
        except errors.InvalidTimeFormat:
            continue
    return False


async def get_occupied_slot_times(session: AsyncSession, teacher_id: int, on_date: date) -> set[str]:
    result = await session.execute(
        select(Appointment.slot_time).where(
            Appointment.teacher_id == teacher_id,
            Appointment.appointment_date == on_date,
            Appointment.status.in_(list(ACTIVE_STATUSES)),
        )
    )
    return {row[0] for row in result.all()}


async def get_available_slots_for_date(
    session: AsyncSession, teacher: User, on_date: date
) -> list[tuple[str, bool]]:
    """Returns (time window, available) for the teacher's windows on that date.

    Falls back to the standard hour-long windows when the teacher declared nothing.
    """
    windows = declared_slots(teacher, weekday_of(on_date)) if teacher.availability else list(STANDARD_SLOTS)
    occupied = await get_occupied_slot_times(session, teacher.id, on_date)
    out: list[tuple[str, bool]] = []
    for window in windows:
        try:
            canonical = normalize_time(window)
        except errors.InvalidTimeFormat:
            continue
        out.append((window, canonical not in occupied))
    return out
