"""Initial schema: users, appointments.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_OCCUPIED = sa.text("status IN ('confirmed', 'booked')")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="student"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("availability", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    op.create_index(op.f("ix_users_role"), "users", ["role"], unique=False)

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("teacher_id", sa.Integer(), nullable=False),
        sa.Column("teacher_name", sa.String(), nullable=False),
        sa.Column("student_name", sa.String(), nullable=False),
        sa.Column("student_email", sa.String(), nullable=False),
        sa.Column("student_phone", sa.String(), nullable=False),
        sa.Column("student_subject", sa.String(), nullable=False),
        sa.Column("student_message", sa.String(), nullable=False),
        sa.Column("day", sa.String(length=20), nullable=False),
        sa.Column("time_slot", sa.String(), nullable=False),
        sa.Column("slot_time", sa.String(), nullable=False),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_by", sa.String(length=20), nullable=False),
        sa.Column("notes", sa.String(), nullable=False),
        sa.Column("response_message", sa.String(), nullable=True),
        sa.Column("responded_at", sa.DateTime(), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("cancelled_by", sa.String(length=20), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["teacher_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_appointments_teacher_id"), "appointments", ["teacher_id"], unique=False)
    op.create_index(op.f("ix_appointments_student_email"), "appointments", ["student_email"], unique=False)
    op.create_index(op.f("ix_appointments_status"), "appointments", ["status"], unique=False)
    op.create_index(
        "ix_appointments_slot", "appointments", ["teacher_id", "appointment_date", "slot_time"], unique=False
    )
    op.create_index(
        "uq_appointments_slot_occupied",
        "appointments",
        ["teacher_id", "appointment_date", "slot_time"],
        unique=True,
        sqlite_where=_OCCUPIED,
        postgresql_where=_OCCUPIED,
    )


def downgrade() -> None:
    op.drop_index("uq_appointments_slot_occupied", table_name="appointments")
    op.drop_index("ix_appointments_slot", table_name="appointments")
    op.drop_index(op.f("ix_appointments_status"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_student_email"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_teacher_id"), table_name="appointments")
    op.drop_table("appointments")
    op.drop_index(op.f("ix_users_role"), table_name="users")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
