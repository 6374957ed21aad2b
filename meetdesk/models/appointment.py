from datetime import UTC, date, datetime
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


def utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle status.

    Flow: pending -> confirmed -> completed   (student request)
          booked -> completed                 (teacher direct booking)
          pending -> rejected
          pending | confirmed | booked -> cancelled
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    BOOKED = "booked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, AppointmentStatus.BOOKED})
OCCUPYING_STATUSES = frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.BOOKED})
TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.REJECTED})


class CreatedBy(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"


class CancelledBy(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"
    SYSTEM = "system"


class Weekday(str, Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"


def enum_column(enum_cls: type[Enum], nullable: bool = False, index: bool = False) -> sa.Column:
    # Store enum values ("pending"), not member names ("PENDING")
    return sa.Column(
        sa.Enum(
            enum_cls,
            values_callable=lambda members: [m.value for m in members],
            native_enum=False,
            length=20,
            validate_strings=True,
        ),
        nullable=nullable,
        index=index,
    )


class StudentInfo(SQLModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    subject: str = ""
    message: str = ""


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    __table_args__ = (
        sa.Index("ix_appointments_slot", "teacher_id", "appointment_date", "slot_time"),
        # At most one confirmed/booked occupant per slot, even across processes
        sa.Index(
            "uq_appointments_slot_occupied",
            "teacher_id",
            "appointment_date",
            "slot_time",
            unique=True,
            sqlite_where=sa.text("status IN ('confirmed', 'booked')"),
            postgresql_where=sa.text("status IN ('confirmed', 'booked')"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    teacher_id: int = Field(foreign_key="users.id", index=True)
    teacher_name: str = ""

    student_name: str
    student_email: str = Field(index=True)
    student_phone: str = ""
    student_subject: str = ""
    student_message: str = ""

    day: Weekday = Field(sa_column=enum_column(Weekday))
    time_slot: str  # as submitted, e.g. "3:00 PM - 4:00 PM"
    slot_time: str  # canonical start, e.g. "3:00 PM"
    appointment_date: date

    status: AppointmentStatus = Field(sa_column=enum_column(AppointmentStatus, index=True))
    created_by: CreatedBy = Field(sa_column=enum_column(CreatedBy))
    notes: str = ""

    response_message: str | None = None
    responded_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: CancelledBy | None = Field(default=None, sa_column=enum_column(CancelledBy, nullable=True))
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    created_at: datetime = Field(default_factory=utc_naive_now)
    updated_at: datetime = Field(default_factory=utc_naive_now)

    @property
    def student(self) -> StudentInfo:
        return StudentInfo(
            name=self.student_name,
            email=self.student_email,
            phone=self.student_phone,
            subject=self.student_subject,
            message=self.student_message,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class AppointmentPublic(SQLModel):
    id: int
    teacher_id: int
    teacher_name: str
    student: StudentInfo
    day: Weekday
    time_slot: str
    slot_time: str
    date: date
    status: AppointmentStatus
    created_by: CreatedBy
    notes: str = ""
    response_message: str | None = None
    responded_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: CancelledBy | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class AppointmentStats(SQLModel):
    total: int = 0
    pending: int = 0
    confirmed: int = 0
    booked: int = 0
    completed: int = 0
    cancelled: int = 0
    rejected: int = 0
    pending_requests: int = 0
    direct_bookings: int = 0
    recent: int = 0
    upcoming: int = 0
