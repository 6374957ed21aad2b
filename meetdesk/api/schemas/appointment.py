from datetime import date

from pydantic import BaseModel, EmailStr, Field

from meetdesk.models.appointment import AppointmentPublic, Weekday


class StudentInfoIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: str = ""
    subject: str = ""
    message: str = Field("", max_length=2000)


class StudentInfoOptional(BaseModel):
    """Student details for a request; a signed-in student may omit name/email."""

    name: str = Field("", max_length=200)
    email: EmailStr | None = None
    phone: str = ""
    subject: str = ""
    message: str = Field("", max_length=2000)


class RequestAppointmentBody(BaseModel):
    teacher_id: int
    day: Weekday | None = None
    time_slot: str = Field(..., min_length=1)
    date: date
    student: StudentInfoOptional


class DirectBookBody(BaseModel):
    teacher_id: int
    day: Weekday | None = None
    time_slot: str = Field(..., min_length=1)
    date: date
    student: StudentInfoIn
    notes: str | None = Field(None, max_length=2000)


class UpdateAppointmentBody(BaseModel):
    """Fields left out stay as they are. Any of day/time_slot/date moves the appointment."""

    notes: str | None = Field(None, max_length=2000)
    student: StudentInfoIn | None = None
    day: Weekday | None = None
    time_slot: str | None = Field(None, min_length=1)
    on_date: date | None = Field(None, alias="date")


class RespondBody(BaseModel):
    message: str | None = Field(None, max_length=500)


class CancelBody(BaseModel):
    reason: str | None = Field(None, max_length=500)


class AppointmentListResponse(BaseModel):
    items: list[AppointmentPublic]
    total: int
    page: int
    limit: int


class SlotInfo(BaseModel):
    time_slot: str
    available: bool


class AvailableSlotsResponse(BaseModel):
    teacher_id: int
    date: str  # YYYY-MM-DD
    day: Weekday
    slots: list[SlotInfo]
