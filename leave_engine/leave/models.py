"""Leave ORM models: LeaveRequest, LeaveBalance, LeaveLedgerEntry."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_engine.common.constants import LeaveStatus, LeaveType, LedgerEntryType
from leave_engine.database import Base
from leave_engine.org.models import Employee


def _enum(enum_cls, name: str, length: int) -> sa.Enum:
    return sa.Enum(enum_cls, name=name, native_enum=False, length=length)


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_request_range"),
        sa.Index("ix_leave_requests_employee", "employee_id"),
        sa.Index("ix_leave_requests_status", "status"),
        sa.Index("ix_leave_requests_dates", "start_date", "end_date"),
        sa.Index("ix_leave_requests_lead", "lead_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        _enum(LeaveType, "leave_type", 10), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    transition_plan: Mapped[Optional[str]] = mapped_column(sa.Text)
    cover_person_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    additional_notify_ids: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    # Routing, fixed at submission
    lead_approval_required: Mapped[bool] = mapped_column(sa.Boolean, nullable=False)
    lead_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    # Lead track
    lead_approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    lead_approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    lead_comment: Mapped[Optional[str]] = mapped_column(sa.Text)

    # HR track
    hr_approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    hr_approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    hr_comment: Mapped[Optional[str]] = mapped_column(sa.Text)

    # Terminal markers
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    # Cache of compute_status(); rewritten with every flag change
    status: Mapped[LeaveStatus] = mapped_column(
        _enum(LeaveStatus, "leave_status", 20),
        nullable=False,
        default=LeaveStatus.PENDING,
    )

    submitted_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    employee: Mapped[Employee] = relationship(foreign_keys=[employee_id])
    cover_person: Mapped[Optional[Employee]] = relationship(foreign_keys=[cover_person_id])

    def __repr__(self) -> str:
        return (
            f"<LeaveRequest {self.id} {self.leave_type.value} "
            f"{self.start_date}..{self.end_date} {self.status.value}>"
        )


class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "leave_type", "year", name="uq_leave_balance"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        _enum(LeaveType, "leave_type", 10), nullable=False
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    allocated_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    used_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    @property
    def remaining_days(self) -> Decimal:
        # Not clamped: an allowed overage shows as a negative balance.
        return self.allocated_days - self.used_days


class LeaveLedgerEntry(Base):
    """One debit and at most one credit per request.

    ``request_id`` deliberately has no foreign key: the entries outlive an HR
    removal of the request they account for.
    """

    __tablename__ = "leave_ledger_entries"
    __table_args__ = (
        sa.UniqueConstraint("request_id", "entry_type", name="uq_ledger_request_entry"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        _enum(LeaveType, "leave_type", 10), nullable=False
    )
    entry_type: Mapped[LedgerEntryType] = mapped_column(
        _enum(LedgerEntryType, "ledger_entry_type", 10), nullable=False
    )
    total_days: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    # Per-year split actually applied, e.g. {"2026": "3", "2027": "2"}
    days_by_year: Mapped[dict] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
