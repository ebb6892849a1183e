"""Approval state machine — status is derived from approval facts, never set.

A request carries two independent approval tracks (lead, HR) as optional
"approved by" stamps plus two terminal markers (rejected, cancelled).
``compute_status`` folds those facts into a ``LeaveStatus``; the persisted
``status`` column is only a queryable copy of its result.

The guard functions raise ``InvalidTransitionError`` when an action is not
allowed from the request's current status or by the given actor. They do not
mutate anything.
"""

from __future__ import annotations

import uuid
from typing import Any, NamedTuple, Optional

from leave_engine.common.constants import (
    EDITABLE_STATUSES,
    HR_ACTIONABLE_STATUSES,
    LEAD_ACTIONABLE_STATUSES,
    TERMINAL_STATUSES,
    ApproverRole,
    LeaveStatus,
)
from leave_engine.common.exceptions import InvalidTransitionError


class ApprovalFacts(NamedTuple):
    lead_approved: bool
    hr_approved: bool
    lead_approval_required: bool
    rejected: bool
    cancelled: bool


def facts_of(request: Any) -> ApprovalFacts:
    """Read the approval facts off a request-like object."""
    return ApprovalFacts(
        lead_approved=request.lead_approved_by is not None,
        hr_approved=request.hr_approved_by is not None,
        lead_approval_required=bool(request.lead_approval_required),
        rejected=request.rejected_by is not None,
        cancelled=request.cancelled_at is not None,
    )


def derive_status(facts: ApprovalFacts) -> LeaveStatus:
    if facts.rejected:
        return LeaveStatus.REJECTED
    if facts.cancelled:
        return LeaveStatus.CANCELLED
    if facts.hr_approved and (facts.lead_approved or not facts.lead_approval_required):
        return LeaveStatus.APPROVED
    if facts.hr_approved:
        return LeaveStatus.HR_APPROVED
    if facts.lead_approved:
        return LeaveStatus.LEAD_APPROVED
    return LeaveStatus.PENDING


def compute_status(request: Any) -> LeaveStatus:
    """Status of *request* as a pure function of its approval facts."""
    return derive_status(facts_of(request))


def outstanding_tracks(request: Any) -> set[ApproverRole]:
    """Approval tracks still waiting on an approver."""
    status = compute_status(request)
    if status in TERMINAL_STATUSES:
        return set()
    tracks: set[ApproverRole] = set()
    if request.hr_approved_by is None:
        tracks.add(ApproverRole.HR)
    if request.lead_approval_required and request.lead_approved_by is None:
        tracks.add(ApproverRole.LEAD)
    return tracks


# ── Guards ──────────────────────────────────────────────────────────

def _status_label(status: LeaveStatus) -> str:
    return status.value.lower().replace("_", " ")


def ensure_lead_can_approve(request: Any, approver_id: uuid.UUID) -> None:
    status = compute_status(request)
    if status not in LEAD_ACTIONABLE_STATUSES:
        raise InvalidTransitionError(
            f"Cannot record a lead approval on a {_status_label(status)} request.",
            status=status.value,
        )
    if not request.lead_approval_required:
        raise InvalidTransitionError(
            "This request does not require a lead approval.",
            status=status.value,
        )
    if request.lead_approved_by is not None:
        raise InvalidTransitionError(
            "The lead approval has already been recorded.",
            status=status.value,
        )
    if request.lead_id != approver_id:
        raise InvalidTransitionError(
            "Only the employee's lead can approve on the lead track.",
            status=status.value,
        )


def ensure_hr_can_approve(request: Any) -> None:
    status = compute_status(request)
    if status not in HR_ACTIONABLE_STATUSES:
        raise InvalidTransitionError(
            f"Cannot record an HR approval on a {_status_label(status)} request.",
            status=status.value,
        )


def ensure_can_reject(
    request: Any,
    rejector_id: uuid.UUID,
    role: ApproverRole,
) -> None:
    status = compute_status(request)
    if status in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Cannot reject a {_status_label(status)} request.",
            status=status.value,
        )
    if role == ApproverRole.LEAD and request.lead_id != rejector_id:
        raise InvalidTransitionError(
            "Only the employee's lead or HR can reject this request.",
            status=status.value,
        )


def ensure_owner_can_modify(
    request: Any,
    actor_id: uuid.UUID,
    action: str,
    *,
    allowed: Optional[frozenset[LeaveStatus]] = None,
) -> None:
    """Owner-only actions (cancel, edit, transition plan) on permitted statuses."""
    status = compute_status(request)
    if request.employee_id != actor_id:
        raise InvalidTransitionError(
            f"You can only {action} your own leave requests.",
            status=status.value,
        )
    if status not in (allowed or EDITABLE_STATUSES):
        raise InvalidTransitionError(
            f"Cannot {action} a {_status_label(status)} request.",
            status=status.value,
        )
