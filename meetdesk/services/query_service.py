"""Read-only views over appointments, filtered by what the caller may see."""
from datetime import UTC, date, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from meetdesk.core import errors
from meetdesk.core.config import settings
from meetdesk.models.appointment import (
    OCCUPYING_STATUSES,
    Appointment,
    AppointmentStats,
    AppointmentStatus,
    CreatedBy,
)
from meetdesk.models.user import Caller, Role
from meetdesk.services.appointment_service import get_appointment_or_404
from meetdesk.services.lifecycle import is_owning_teacher, is_requesting_student


def _scoped(q: Select, caller: Caller, teacher_id: int | None = None) -> Select:
    """Restrict a query to the caller's own appointments (admins see everything)."""
    if caller.role == Role.ADMIN:
        if teacher_id is not None:
            q = q.where(Appointment.teacher_id == teacher_id)
        return q
    if caller.role == Role.TEACHER:
        if teacher_id is not None and teacher_id != caller.id:
            raise errors.Forbidden("You can only view your own appointments")
        return q.where(Appointment.teacher_id == caller.id)
    # Same identity rule as cancelling: email first, name only when there is no email
    if caller.email:
        q = q.where(Appointment.student_email == caller.email.strip().lower())
    elif caller.name and caller.name.strip():
        q = q.where(func.lower(Appointment.student_name) == caller.name.strip().lower())
    else:
        raise errors.Forbidden("Student email or name is required to view appointments")
    if teacher_id is not None:
        q = q.where(Appointment.teacher_id == teacher_id)
    return q


async def get_appointment(session: AsyncSession, appointment_id: int, caller: Caller) -> Appointment:
    appointment = await get_appointment_or_404(session, appointment_id)
    if caller.role == Role.ADMIN or is_owning_teacher(caller, appointment) or is_requesting_student(caller, appointment):
        return appointment
    raise errors.Forbidden("You can only view your own appointments")


async def list_pending_for_teacher(
    session: AsyncSession, teacher_id: int, caller: Caller
) -> list[Appointment]:
    if caller.role != Role.ADMIN and (caller.role != Role.TEACHER or caller.id != teacher_id):
        raise errors.Forbidden("You can only view your own pending requests")
    result = await session.execute(
        select(Appointment)
        .where(
            Appointment.teacher_id == teacher_id,
            Appointment.status == AppointmentStatus.PENDING,
            Appointment.created_by == CreatedBy.STUDENT,
        )
        .order_by(Appointment.created_at.desc(), Appointment.id.desc())
    )
    return list(result.scalars().all())


async def list_appointments(
    session: AsyncSession,
    caller: Caller,
    status: AppointmentStatus | None = None,
    created_by: CreatedBy | None = None,
    teacher_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    limit: int | None = None,
) -> tuple[list[Appointment], int]:
    """Returns (page of appointments ordered by date and time, total matching)."""
    limit = min(limit or settings.default_page_size, settings.max_page_size)
    page = max(page, 1)

    q = _scoped(select(Appointment), caller, teacher_id)
    if status is not None:
        q = q.where(Appointment.status == status)
    if created_by is not None:
        q = q.where(Appointment.created_by == created_by)
    if date_from is not None:
        q = q.where(Appointment.appointment_date >= date_from)
    if date_to is not None:
        q = q.where(Appointment.appointment_date <= date_to)

    total = (await session.execute(select(func.count()).select_from(q.subquery()))).scalar_one()
    result = await session.execute(
        q.order_by(Appointment.appointment_date, Appointment.created_at, Appointment.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def appointment_stats(
    session: AsyncSession,
    caller: Caller,
    teacher_id: int | None = None,
    today: date | None = None,
) -> AppointmentStats:
    """Counts derived from stored appointments; no running counters are kept."""
    today = today or datetime.now(UTC).date()
    base = _scoped(select(Appointment), caller, teacher_id).subquery()

    rows = await session.execute(
        select(base.c.status, base.c.created_by, func.count()).group_by(base.c.status, base.c.created_by)
    )
    stats = AppointmentStats()
    for status, created_by, count in rows.all():
        status = AppointmentStatus(status)
        stats.total += count
        setattr(stats, status.value, getattr(stats, status.value) + count)
        if status == AppointmentStatus.PENDING and created_by == CreatedBy.STUDENT:
            stats.pending_requests += count
        if status == AppointmentStatus.BOOKED and created_by == CreatedBy.TEACHER:
            stats.direct_bookings += count

    week_ago = datetime(today.year, today.month, today.day) - timedelta(days=7)
    stats.recent = (
        await session.execute(select(func.count()).select_from(base).where(base.c.created_at >= week_ago))
    ).scalar_one()
    stats.upcoming = (
        await session.execute(
            select(func.count())
            .select_from(base)
            .where(
                base.c.appointment_date >= today,
                base.c.appointment_date <= today + timedelta(days=7),
                base.c.status.in_(list(OCCUPYING_STATUSES)),
            )
        )
    ).scalar_one()
    return stats
