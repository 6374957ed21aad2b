from meetdesk.models.user import Caller, Role, User, UserPublic
from meetdesk.models.appointment import (
    Appointment,
    AppointmentPublic,
    AppointmentStats,
    AppointmentStatus,
    CancelledBy,
    CreatedBy,
    StudentInfo,
    Weekday,
)

__all__ = [
    "Caller",
    "Role",
    "User",
    "UserPublic",
    "Appointment",
    "AppointmentPublic",
    "AppointmentStats",
    "AppointmentStatus",
    "CancelledBy",
    "CreatedBy",
    "StudentInfo",
    "Weekday",
]
