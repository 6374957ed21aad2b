from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from meetdesk.api.deps import get_session
from meetdesk.api.schemas.appointment import AvailableSlotsResponse, SlotInfo
from meetdesk.services.appointment_service import get_teacher
from meetdesk.services.slot_service import get_available_slots_for_date, weekday_of

router = APIRouter(prefix="/slots", tags=["slots"])


@router.get("/available", response_model=AvailableSlotsResponse)
async def available_slots(
    teacher_id: int = Query(...),
    date_param: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
) -> AvailableSlotsResponse:
    """Teacher's time windows for the given date; taken windows come back with available=false."""
    teacher = await get_teacher(session, teacher_id)
    windows = await get_available_slots_for_date(session, teacher, date_param)
    return AvailableSlotsResponse(
        teacher_id=teacher_id,
        date=date_param.isoformat(),
        day=weekday_of(date_param),
        slots=[SlotInfo(time_slot=w, available=avail) for w, avail in windows],
    )
