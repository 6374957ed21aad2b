from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from meetdesk.api.deps import get_current_caller, get_optional_caller, get_session
from meetdesk.api.schemas.appointment import (
    AppointmentListResponse,
    CancelBody,
    DirectBookBody,
    RequestAppointmentBody,
    RespondBody,
    UpdateAppointmentBody,
)
from meetdesk.core.config import settings
from meetdesk.models.appointment import (
    Appointment,
    AppointmentPublic,
    AppointmentStats,
    AppointmentStatus,
    CreatedBy,
    StudentInfo,
)
from meetdesk.models.user import Caller
from meetdesk.services import appointment_service, query_service
from meetdesk.services.appointment_service import Decision

router = APIRouter(prefix="/appointments", tags=["appointments"])


def to_public(a: Appointment) -> AppointmentPublic:
    return AppointmentPublic(
        id=a.id,
        teacher_id=a.teacher_id,
        teacher_name=a.teacher_name,
        student=a.student,
        day=a.day,
        time_slot=a.time_slot,
        slot_time=a.slot_time,
        date=a.appointment_date,
        status=a.status,
        created_by=a.created_by,
        notes=a.notes,
        response_message=a.response_message,
        responded_at=a.responded_at,
        cancellation_reason=a.cancellation_reason,
        cancelled_by=a.cancelled_by,
        cancelled_at=a.cancelled_at,
        completed_at=a.completed_at,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


@router.post("/request", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def request_appointment(
    body: RequestAppointmentBody,
    session: AsyncSession = Depends(get_session),
    caller: Caller | None = Depends(get_optional_caller),
) -> AppointmentPublic:
    """Student asks a teacher for a slot. Works without an account."""
    student = StudentInfo(
        name=body.student.name,
        email=body.student.email or "",
        phone=body.student.phone,
        subject=body.student.subject,
        message=body.student.message,
    )
    appointment = await appointment_service.request_appointment(
        session, body.teacher_id, body.day, body.time_slot, body.date, student, caller=caller
    )
    return to_public(appointment)


@router.post("/book", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def direct_book(
    body: DirectBookBody,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> AppointmentPublic:
    student = StudentInfo(**body.student.model_dump())
    appointment = await appointment_service.direct_book(
        session, caller, body.teacher_id, body.day, body.time_slot, body.date, student, notes=body.notes
    )
    return to_public(appointment)


@router.put("/{appointment_id}", response_model=AppointmentPublic)
async def update_appointment(
    appointment_id: int,
    body: UpdateAppointmentBody,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> AppointmentPublic:
    """Owning teacher or admin edits notes/student details or reschedules."""
    student = StudentInfo(**body.student.model_dump()) if body.student else None
    appointment = await appointment_service.update_appointment(
        session,
        appointment_id,
        caller,
        notes=body.notes,
        student=student,
        day=body.day,
        time_slot=body.time_slot,
        on_date=body.on_date,
    )
    return to_public(appointment)


@router.put("/{appointment_id}/accept", response_model=AppointmentPublic)
async def accept_request(
    appointment_id: int,
    body: RespondBody | None = None,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> AppointmentPublic:
    message = body.message if body else None
    appointment = await appointment_service.respond_to_request(
        session, appointment_id, caller, Decision.ACCEPT, message
    )
    return to_public(appointment)


@router.put("/{appointment_id}/reject", response_model=AppointmentPublic)
async def reject_request(
    appointment_id: int,
    body: RespondBody | None = None,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> AppointmentPublic:
    message = body.message if body else None
    appointment = await appointment_service.respond_to_request(
        session, appointment_id, caller, Decision.REJECT, message
    )
    return to_public(appointment)


@router.put("/{appointment_id}/cancel", response_model=AppointmentPublic)
async def cancel_appointment(
    appointment_id: int,
    body: CancelBody | None = None,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> AppointmentPublic:
    reason = body.reason if body else None
    appointment = await appointment_service.cancel_appointment(session, appointment_id, caller, reason)
    return to_public(appointment)


@router.put("/{appointment_id}/complete", response_model=AppointmentPublic)
async def complete_appointment(
    appointment_id: int,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> AppointmentPublic:
    appointment = await appointment_service.complete_appointment(session, appointment_id, caller)
    return to_public(appointment)


@router.get("/teacher/{teacher_id}/pending", response_model=list[AppointmentPublic])
async def list_pending_requests(
    teacher_id: int,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> list[AppointmentPublic]:
    appointments = await query_service.list_pending_for_teacher(session, teacher_id, caller)
    return [to_public(a) for a in appointments]


@router.get("/stats", response_model=AppointmentStats)
async def appointment_stats(
    teacher_id: int | None = Query(None),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> AppointmentStats:
    return await query_service.appointment_stats(session, caller, teacher_id=teacher_id)


@router.get("", response_model=AppointmentListResponse)
async def list_appointments(
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    created_by: CreatedBy | None = Query(None),
    teacher_id: int | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> AppointmentListResponse:
    items, total = await query_service.list_appointments(
        session,
        caller,
        status=status_filter,
        created_by=created_by,
        teacher_id=teacher_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    effective_limit = min(limit or settings.default_page_size, settings.max_page_size)
    return AppointmentListResponse(
        items=[to_public(a) for a in items], total=total, page=page, limit=effective_limit
    )


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def get_appointment(
    appointment_id: int,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_current_caller),
) -> AppointmentPublic:
    appointment = await query_service.get_appointment(session, appointment_id, caller)
    return to_public(appointment)
