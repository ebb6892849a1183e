"""Enums and constants for the leave engine."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    system_admin = "system_admin"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveType(str, enum.Enum):
    CASUAL = "CASUAL"
    SICK = "SICK"
    ANNUAL = "ANNUAL"


class LeaveStatus(str, enum.Enum):
    PENDING = "PENDING"
    LEAD_APPROVED = "LEAD_APPROVED"
    HR_APPROVED = "HR_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class ApproverRole(str, enum.Enum):
    """The two approval tracks a request can be waiting on."""

    LEAD = "LEAD"
    HR = "HR"


class LedgerEntryType(str, enum.Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


# Non-terminal statuses: the owner may still edit or cancel.
EDITABLE_STATUSES: frozenset[LeaveStatus] = frozenset({
    LeaveStatus.PENDING,
    LeaveStatus.LEAD_APPROVED,
    LeaveStatus.HR_APPROVED,
})

TERMINAL_STATUSES: frozenset[LeaveStatus] = frozenset({
    LeaveStatus.APPROVED,
    LeaveStatus.REJECTED,
    LeaveStatus.CANCELLED,
})

# Requests that occupy the calendar and can receive reminders.
ACTIVE_STATUSES: frozenset[LeaveStatus] = EDITABLE_STATUSES | {LeaveStatus.APPROVED}

# Statuses in which each track is still outstanding.
LEAD_ACTIONABLE_STATUSES: frozenset[LeaveStatus] = frozenset({
    LeaveStatus.PENDING,
    LeaveStatus.HR_APPROVED,
})
HR_ACTIONABLE_STATUSES: frozenset[LeaveStatus] = frozenset({
    LeaveStatus.PENDING,
    LeaveStatus.LEAD_APPROVED,
})


# ── Notifications ───────────────────────────────────────────────────

class NotificationKind(str, enum.Enum):
    leave_submitted = "leave_submitted"
    leave_approval_requested = "leave_approval_requested"
    leave_lead_approved = "leave_lead_approved"
    leave_hr_approved = "leave_hr_approved"
    leave_approved = "leave_approved"
    leave_rejected = "leave_rejected"
    leave_cancelled = "leave_cancelled"
    leave_removed = "leave_removed"
    leave_cover_assigned = "leave_cover_assigned"
    transition_plan_reminder = "transition_plan_reminder"


# ── Misc constants ──────────────────────────────────────────────────

ALL_DEPARTMENTS = "ALL"
MAX_REMINDER_WINDOW_DAYS = 30
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
