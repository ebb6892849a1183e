"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update / *Request  → request bodies (write)
  - *Out / *Result                → response bodies (read)
  - *Brief                        → compact embedded representations
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from leave_engine.common.constants import (
    ALL_DEPARTMENTS,
    MAX_REMINDER_WINDOW_DAYS,
    ApproverRole,
    LeaveStatus,
    LeaveType,
)
from leave_engine.config import settings
from leave_engine.leave.dates import inclusive_day_count, weekday_count
from leave_engine.leave.state_machine import outstanding_tracks


# ═════════════════════════════════════════════════════════════════════
# Embedded / shared
# ═════════════════════════════════════════════════════════════════════


class EmployeeBrief(BaseModel):
    """Minimal employee info embedded in leave responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_code: str
    name: str
    department_name: Optional[str] = None


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Write
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for submitting a leave request.

    ``employee_id`` is only honoured for HR submitting on someone's behalf.
    """

    leave_type: LeaveType
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    reason: str = Field(..., max_length=2000)
    transition_plan: Optional[str] = Field(None, max_length=5000)
    cover_person_id: Optional[uuid.UUID] = None
    additional_notify_ids: list[uuid.UUID] = Field(
        default_factory=list, max_length=settings.LEAVE_MAX_NOTIFY_IDS,
    )
    employee_id: Optional[uuid.UUID] = None


class LeaveRequestUpdate(BaseModel):
    """Partial update of a non-terminal request. Omitted fields are untouched."""

    leave_type: Optional[LeaveType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    reason: Optional[str] = Field(None, max_length=2000)
    transition_plan: Optional[str] = Field(None, max_length=5000)
    cover_person_id: Optional[uuid.UUID] = None
    additional_notify_ids: Optional[list[uuid.UUID]] = Field(
        None, max_length=settings.LEAVE_MAX_NOTIFY_IDS,
    )


class TransitionPlanUpdate(BaseModel):
    transition_plan: str = Field(..., max_length=5000)


class ApproveRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=1000)


class RejectRequest(BaseModel):
    reason: str = Field(..., max_length=1000)
    as_role: Optional[ApproverRole] = Field(
        None, description="Track to reject on; defaults to HR for HR users, else LEAD",
    )


class BalanceAllocationUpdate(BaseModel):
    """HR change to a yearly allocation."""

    employee_id: uuid.UUID
    leave_type: LeaveType
    year: int = Field(..., ge=2000, le=2100)
    allocated_days: Decimal = Field(..., ge=0, max_digits=5, decimal_places=1)


class ReminderBatchRequest(BaseModel):
    window_days: Optional[int] = Field(None, ge=0, le=MAX_REMINDER_WINDOW_DAYS)
    dry_run: bool = False
    today: Optional[date] = Field(
        None, description="Reference date; defaults to the server's current date",
    )


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Read
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request representation with both approval tracks."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str
    transition_plan: Optional[str] = None
    cover_person_id: Optional[uuid.UUID] = None
    additional_notify_ids: list[uuid.UUID] = []
    status: LeaveStatus

    lead_approval_required: bool
    lead_id: Optional[uuid.UUID] = None
    lead_approved_by: Optional[uuid.UUID] = None
    lead_approved_at: Optional[datetime] = None
    lead_comment: Optional[str] = None
    hr_approved_by: Optional[uuid.UUID] = None
    hr_approved_at: Optional[datetime] = None
    hr_comment: Optional[str] = None

    rejected_by: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[uuid.UUID] = None
    cancelled_at: Optional[datetime] = None

    submitted_by: Optional[uuid.UUID] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    employee: Optional[EmployeeBrief] = None
    cover_person: Optional[EmployeeBrief] = None

    @field_validator("additional_notify_ids", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return v or []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def working_days(self) -> int:
        """Weekdays in the range; what the balance is charged."""
        return weekday_count(self.start_date, self.end_date)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def calendar_days(self) -> int:
        return inclusive_day_count(self.start_date, self.end_date)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def awaiting(self) -> list[ApproverRole]:
        """Approval tracks still waiting on an approver; empty once decided."""
        return sorted(outstanding_tracks(self), key=lambda role: role.value)


# ═════════════════════════════════════════════════════════════════════
# Balances
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: uuid.UUID
    leave_type: LeaveType
    year: int
    allocated_days: Decimal
    used_days: Decimal
    remaining_days: Decimal


class LeaveBalanceSummary(BaseModel):
    employee_id: uuid.UUID
    year: int
    balances: list[LeaveBalanceOut]


# ═════════════════════════════════════════════════════════════════════
# Calendar / Reminders
# ═════════════════════════════════════════════════════════════════════


class CalendarEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    request_id: uuid.UUID
    employee_id: uuid.UUID
    employee_name: str
    department_id: Optional[uuid.UUID] = None
    department_name: Optional[str] = None
    leave_type: LeaveType
    status: LeaveStatus
    start_date: date
    end_date: date
    working_days: int
    is_current_user: bool


class CalendarOut(BaseModel):
    year: int
    month: int
    department: str = ALL_DEPARTMENTS
    events: list[CalendarEventOut]


class ReminderBatchResult(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    dry_run: bool
    window_days: int
    eligible: int
    request_ids: list[uuid.UUID]
    sent: int
    failed: int
    errors: list[str]

