from enum import Enum

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from meetdesk.models.appointment import enum_column


class Role(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


class UserBase(SQLModel):
    email: str = Field(unique=True, index=True)
    full_name: str | None = None
    is_active: bool = True


class User(UserBase, table=True):
    __tablename__ = "users"
    id: int | None = Field(default=None, primary_key=True)
    role: Role = Field(default=Role.STUDENT, sa_column=enum_column(Role, index=True))
    # Teacher's declared availability, e.g. ["Monday 3:00 PM - 4:00 PM", "10:00 AM - 11:00 AM"].
    # Owned by the profile service; read-only here.
    availability: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False, default=list))


class UserPublic(SQLModel):
    id: int
    email: str
    full_name: str | None = None
    role: Role


class Caller(SQLModel):
    """Already-authenticated identity acting on the booking engine.

    Students may be only weakly identified (no account), so ``id`` is optional and
    ownership of student appointments is decided by email, then name.
    """

    id: int | None = None
    role: Role
    email: str | None = None
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Caller":
        return cls(id=user.id, role=user.role, email=user.email, name=user.full_name)
