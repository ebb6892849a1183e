"""Leave service layer — submission, two-track approvals, cancellation, balances.

Business logic:
  - Submission resolves the lead track once from the org hierarchy
  - Lead and HR approvals are independent; whichever lands last completes
    the rendezvous and debits the balance in the same transaction
  - Rejection from any non-terminal status, never touching balances
  - Owner edits/cancellation while the request is still open
  - HR removal credits back whatever was debited

Status is never assigned directly: every mutation sets approval facts and then
rewrites ``status`` from ``compute_status``. Notifications are handed to the
dispatcher after the state change and can never fail an operation.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leave_engine.common.audit import create_audit_entry
from leave_engine.common.constants import (
    ACTIVE_STATUSES,
    ApproverRole,
    LeaveStatus,
    LeaveType,
    NotificationKind,
)
from leave_engine.common.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from leave_engine.config import settings
from leave_engine.leave.dates import weekday_count
from leave_engine.leave.ledger import BalanceLedger
from leave_engine.leave.models import LeaveBalance, LeaveRequest
from leave_engine.leave.state_machine import (
    compute_status,
    derive_status,
    ensure_can_reject,
    ensure_hr_can_approve,
    ensure_lead_can_approve,
    ensure_owner_can_modify,
    facts_of,
)
from leave_engine.leave.store import LeaveRequestStore
from leave_engine.notifications.dispatcher import NotificationDispatcher, dispatch_safely
from leave_engine.org.hierarchy import EmployeeHierarchyProvider, HierarchyProvider
from leave_engine.org.models import Employee

logger = logging.getLogger(__name__)

_ENTITY = "leave_request"

EDITABLE_FIELDS = frozenset({
    "leave_type",
    "start_date",
    "end_date",
    "reason",
    "transition_plan",
    "cover_person_id",
    "additional_notify_ids",
})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _clean(value: Optional[str]) -> Optional[str]:
    return None if _blank(value) else value.strip()


def _jsonable(value: Any) -> Any:
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (LeaveType, LeaveStatus)):
        return value.value
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


class LeaveService:
    """Leave lifecycle operations bound to one unit of work (session).

    Every operation takes the acting employee explicitly. Role checks (who is
    HR) belong to the caller; the service enforces ownership and the lead
    identity recorded on the request.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        dispatcher: NotificationDispatcher,
        hierarchy: Optional[HierarchyProvider] = None,
        store: Optional[LeaveRequestStore] = None,
        ledger: Optional[BalanceLedger] = None,
        allow_overage: Optional[bool] = None,
        max_notify_ids: Optional[int] = None,
        hr_notify_ids: Optional[Iterable[uuid.UUID]] = None,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.hierarchy = hierarchy or EmployeeHierarchyProvider(db)
        self.store = store or LeaveRequestStore(db)
        self.allow_overage = (
            settings.LEAVE_ALLOW_OVERAGE if allow_overage is None else allow_overage
        )
        self.ledger = ledger or BalanceLedger(db, allow_overage=self.allow_overage)
        self.max_notify_ids = max_notify_ids or settings.LEAVE_MAX_NOTIFY_IDS
        self.hr_notify_ids = list(
            settings.LEAVE_HR_NOTIFY_IDS if hr_notify_ids is None else hr_notify_ids
        )

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    async def _load_employee(self, employee_id: uuid.UUID) -> Optional[Employee]:
        result = await self.db.execute(
            select(Employee)
            .where(Employee.id == employee_id)
            .options(selectinload(Employee.department))
        )
        return result.scalar_one_or_none()

    def _validate_fields(
        self,
        *,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
        reason: Optional[str],
        cover_person_id: Optional[uuid.UUID],
        notify_ids: list[uuid.UUID],
    ) -> None:
        errors: dict[str, list[str]] = {}
        if _blank(reason):
            errors["reason"] = ["Reason is required."]
        if end_date < start_date:
            errors["end_date"] = ["End date must be on or after start date."]
        if cover_person_id is not None and cover_person_id == employee_id:
            errors["cover_person_id"] = ["You cannot be your own cover person."]
        if len(notify_ids) > self.max_notify_ids:
            errors["additional_notify_ids"] = [
                f"At most {self.max_notify_ids} additional recipients are allowed."
            ]
        if errors:
            raise ValidationException(errors)

    async def _check_recipients(self, notify_ids: Iterable[Any]) -> None:
        """Reject additional recipients that are not known employees."""
        wanted = {uuid.UUID(str(v)) for v in notify_ids}
        if not wanted:
            return
        result = await self.db.execute(select(Employee.id).where(Employee.id.in_(wanted)))
        unknown = wanted - set(result.scalars().all())
        if unknown:
            raise ValidationException({
                "additional_notify_ids": [
                    f"Employee {emp_id} does not exist." for emp_id in sorted(unknown, key=str)
                ]
            })

    @staticmethod
    def _payload(request: LeaveRequest, **extra: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "request_id": str(request.id),
            "leave_type": request.leave_type.value.lower(),
            "start_date": request.start_date.isoformat(),
            "end_date": request.end_date.isoformat(),
            "days": weekday_count(request.start_date, request.end_date),
            "employee_name": request.employee.name,
        }
        payload.update(extra)
        return payload

    async def _notify(
        self,
        recipients: Iterable[Optional[uuid.UUID]],
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None:
        await dispatch_safely(self.dispatcher, recipients, kind, payload)

    @staticmethod
    def _notify_ids(request: LeaveRequest) -> list[uuid.UUID]:
        return [uuid.UUID(str(v)) for v in (request.additional_notify_ids or [])]

    async def _apply_transition(
        self,
        request: LeaveRequest,
        *,
        action: str,
        actor_id: uuid.UUID,
        old_status: LeaveStatus,
        extra: Optional[dict[str, Any]] = None,
    ) -> LeaveRequest:
        """Rewrite the status cache from the flags, flush, and audit."""
        request.status = compute_status(request)
        request.updated_at = _now()
        await self.store.save(request)

        new_values = {"status": request.status.value}
        if extra:
            new_values.update({k: _jsonable(v) for k, v in extra.items()})
        await create_audit_entry(
            self.db,
            action=action,
            entity_type=_ENTITY,
            entity_id=request.id,
            actor_id=actor_id,
            old_values={"status": old_status.value},
            new_values=new_values,
        )
        logger.info(
            "Leave request %s: %s by %s (%s -> %s)",
            request.id, action, actor_id, old_status.value, request.status.value,
        )
        return request

    async def _debit_on_approval(self, request: LeaveRequest) -> None:
        """Balance movement for the transition into APPROVED.

        Runs before any flag is touched, so a refused debit leaves the
        request exactly as it was.
        """
        sufficient = await self.ledger.check_available(
            request.employee_id, request.leave_type, request.start_date, request.end_date,
        )
        if not sufficient:
            logger.warning(
                "Approving leave request %s beyond the remaining %s balance of %s",
                request.id, request.leave_type.value, request.employee_id,
            )
        await self.ledger.debit(request)

    # ─────────────────────────────────────────────────────────────────
    # Submit
    # ─────────────────────────────────────────────────────────────────

    async def submit(
        self,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        start_date: date,
        end_date: date,
        reason: str,
        *,
        transition_plan: Optional[str] = None,
        cover_person_id: Optional[uuid.UUID] = None,
        notify_ids: Optional[list[uuid.UUID]] = None,
        submitted_by: Optional[uuid.UUID] = None,
    ) -> LeaveRequest:
        """Create a PENDING request and route it to its approvers."""
        notify_ids = list(dict.fromkeys(notify_ids or []))
        self._validate_fields(
            employee_id=employee_id,
            start_date=start_date,
            end_date=end_date,
            reason=reason,
            cover_person_id=cover_person_id,
            notify_ids=notify_ids,
        )

        employee = await self._load_employee(employee_id)
        if employee is None:
            raise NotFoundException("Employee", employee_id)
        cover = None
        if cover_person_id is not None:
            cover = await self._load_employee(cover_person_id)
            if cover is None:
                raise ValidationException(
                    {"cover_person_id": ["Cover person does not exist."]}
                )
        await self._check_recipients(notify_ids)

        if not self.allow_overage:
            await self.ledger.check_available(employee_id, leave_type, start_date, end_date)

        lead_id = await self.hierarchy.get_lead(employee_id)

        request = LeaveRequest(
            employee_id=employee_id,
            leave_type=leave_type,
            start_date=start_date,
            end_date=end_date,
            reason=reason.strip(),
            transition_plan=_clean(transition_plan),
            cover_person_id=cover_person_id,
            additional_notify_ids=[str(v) for v in notify_ids],
            lead_approval_required=lead_id is not None,
            lead_id=lead_id,
            submitted_by=submitted_by or employee_id,
        )
        request.status = compute_status(request)
        request.employee = employee
        request.cover_person = cover
        await self.store.create(request)

        await create_audit_entry(
            self.db,
            action="submit",
            entity_type=_ENTITY,
            entity_id=request.id,
            actor_id=request.submitted_by,
            new_values={
                "leave_type": leave_type.value,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "working_days": weekday_count(start_date, end_date),
                "lead_approval_required": request.lead_approval_required,
                "status": request.status.value,
            },
        )
        logger.info(
            "Leave request %s submitted for %s (%s %s..%s, lead=%s)",
            request.id, employee_id, leave_type.value, start_date, end_date, lead_id,
        )

        payload = self._payload(request)
        await self._notify([employee_id], NotificationKind.leave_submitted, payload)
        await self._notify(
            [lead_id, *self.hr_notify_ids, *notify_ids],
            NotificationKind.leave_approval_requested,
            payload,
        )
        await self._notify([cover_person_id], NotificationKind.leave_cover_assigned, payload)
        return request

    # ─────────────────────────────────────────────────────────────────
    # Approvals
    # ─────────────────────────────────────────────────────────────────

    async def approve_as_lead(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        comment: Optional[str] = None,
    ) -> LeaveRequest:
        request = await self.store.get_for_update(request_id)
        ensure_lead_can_approve(request, approver_id)
        old_status = request.status

        completes = derive_status(facts_of(request)._replace(lead_approved=True))
        if completes == LeaveStatus.APPROVED:
            await self._debit_on_approval(request)

        request.lead_approved_by = approver_id
        request.lead_approved_at = _now()
        request.lead_comment = _clean(comment)
        await self._apply_transition(
            request, action="approve_lead", actor_id=approver_id,
            old_status=old_status, extra={"comment": request.lead_comment},
        )
        await self._notify_approval(request, NotificationKind.leave_lead_approved)
        return request

    async def approve_as_hr(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        comment: Optional[str] = None,
    ) -> LeaveRequest:
        request = await self.store.get_for_update(request_id)
        ensure_hr_can_approve(request)
        old_status = request.status

        completes = derive_status(facts_of(request)._replace(hr_approved=True))
        if completes == LeaveStatus.APPROVED:
            await self._debit_on_approval(request)

        request.hr_approved_by = approver_id
        request.hr_approved_at = _now()
        request.hr_comment = _clean(comment)
        await self._apply_transition(
            request, action="approve_hr", actor_id=approver_id,
            old_status=old_status, extra={"comment": request.hr_comment},
        )
        await self._notify_approval(request, NotificationKind.leave_hr_approved)
        return request

    async def _notify_approval(
        self, request: LeaveRequest, partial_kind: NotificationKind,
    ) -> None:
        payload = self._payload(request)
        if request.status == LeaveStatus.APPROVED:
            await self._notify(
                [request.employee_id, request.cover_person_id, *self._notify_ids(request)],
                NotificationKind.leave_approved,
                payload,
            )
        else:
            # Whichever track is still open hears about the other one.
            if partial_kind == NotificationKind.leave_hr_approved:
                waiting = [request.lead_id]
            else:
                waiting = self.hr_notify_ids
            await self._notify([request.employee_id, *waiting], partial_kind, payload)

    async def reject(
        self,
        request_id: uuid.UUID,
        rejector_id: uuid.UUID,
        reason: str,
        as_role: ApproverRole,
    ) -> LeaveRequest:
        if _blank(reason):
            raise ValidationException({"reason": ["A rejection reason is required."]})

        request = await self.store.get_for_update(request_id)
        ensure_can_reject(request, rejector_id, as_role)
        old_status = request.status

        request.rejected_by = rejector_id
        request.rejected_at = _now()
        request.rejection_reason = reason.strip()
        await self._apply_transition(
            request, action="reject", actor_id=rejector_id, old_status=old_status,
            extra={"reason": request.rejection_reason, "as_role": as_role.value},
        )
        await self._notify(
            [request.employee_id, *self._notify_ids(request)],
            NotificationKind.leave_rejected,
            self._payload(request, reason=request.rejection_reason),
        )
        return request

    # ─────────────────────────────────────────────────────────────────
    # Owner actions
    # ─────────────────────────────────────────────────────────────────

    async def cancel(self, request_id: uuid.UUID, actor_id: uuid.UUID) -> LeaveRequest:
        request = await self.store.get_for_update(request_id)
        ensure_owner_can_modify(request, actor_id, "cancel")
        old_status = request.status

        request.cancelled_by = actor_id
        request.cancelled_at = _now()
        await self._apply_transition(
            request, action="cancel", actor_id=actor_id, old_status=old_status,
        )
        await self._notify(
            [request.lead_id, request.cover_person_id, *self._notify_ids(request)],
            NotificationKind.leave_cancelled,
            self._payload(request),
        )
        return request

    async def edit(
        self,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        patch: dict[str, Any],
    ) -> LeaveRequest:
        """Change the owner-editable fields of an open request.

        Approvals already recorded on either track are kept.
        """
        unknown = set(patch) - EDITABLE_FIELDS
        if unknown:
            raise ValidationException(
                {name: ["This field cannot be edited."] for name in sorted(unknown)}
            )
        missing = [
            name for name in ("leave_type", "start_date", "end_date")
            if name in patch and patch[name] is None
        ]
        if missing:
            raise ValidationException({name: ["This field cannot be empty."] for name in missing})

        request = await self.store.get_for_update(request_id)
        ensure_owner_can_modify(request, actor_id, "edit")

        changes = {
            k: v for k, v in patch.items()
            if k != "additional_notify_ids" and getattr(request, k) != v
        }
        if "additional_notify_ids" in patch:
            ids = [str(v) for v in dict.fromkeys(patch["additional_notify_ids"] or [])]
            if ids != list(request.additional_notify_ids or []):
                changes["additional_notify_ids"] = ids
        if not changes:
            return request

        merged = {
            name: changes.get(name, getattr(request, name))
            for name in ("start_date", "end_date", "reason", "cover_person_id", "leave_type")
        }
        self._validate_fields(
            employee_id=request.employee_id,
            start_date=merged["start_date"],
            end_date=merged["end_date"],
            reason=merged["reason"],
            cover_person_id=merged["cover_person_id"],
            notify_ids=changes.get("additional_notify_ids", request.additional_notify_ids or []),
        )
        if "cover_person_id" in changes and changes["cover_person_id"] is not None:
            cover = await self._load_employee(changes["cover_person_id"])
            if cover is None:
                raise ValidationException(
                    {"cover_person_id": ["Cover person does not exist."]}
                )
            request.cover_person = cover
        elif "cover_person_id" in changes:
            request.cover_person = None
        if "additional_notify_ids" in changes:
            await self._check_recipients(changes["additional_notify_ids"])

        if not self.allow_overage and {"start_date", "end_date", "leave_type"} & set(changes):
            await self.ledger.check_available(
                request.employee_id, merged["leave_type"],
                merged["start_date"], merged["end_date"],
            )

        old_values = {k: _jsonable(getattr(request, k)) for k in changes}
        for name, value in changes.items():
            if name == "reason":
                value = value.strip()
            elif name == "transition_plan":
                value = _clean(value)
            setattr(request, name, value)
        request.status = compute_status(request)
        request.updated_at = _now()
        await self.store.save(request)

        await create_audit_entry(
            self.db,
            action="edit",
            entity_type=_ENTITY,
            entity_id=request.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values={k: _jsonable(getattr(request, k)) for k in changes},
        )
        logger.info("Leave request %s edited by %s: %s", request.id, actor_id, sorted(changes))
        return request

    async def update_transition_plan(
        self,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        plan: Optional[str],
    ) -> LeaveRequest:
        """Fill in the hand-over plan, also allowed once the leave is approved."""
        request = await self.store.get_for_update(request_id)
        ensure_owner_can_modify(
            request, actor_id, "update the transition plan of", allowed=ACTIVE_STATUSES,
        )
        old_plan = request.transition_plan
        request.transition_plan = _clean(plan)
        request.updated_at = _now()
        await self.store.save(request)

        await create_audit_entry(
            self.db,
            action="transition_plan",
            entity_type=_ENTITY,
            entity_id=request.id,
            actor_id=actor_id,
            old_values={"transition_plan": old_plan},
            new_values={"transition_plan": request.transition_plan},
        )
        return request

    # ─────────────────────────────────────────────────────────────────
    # HR removal
    # ─────────────────────────────────────────────────────────────────

    async def remove(self, request_id: uuid.UUID, actor_id: uuid.UUID) -> None:
        """Hard-delete a request in any status, crediting back any debit."""
        request = await self.store.get_for_update(request_id)
        snapshot = {
            "employee_id": str(request.employee_id),
            "leave_type": request.leave_type.value,
            "start_date": request.start_date.isoformat(),
            "end_date": request.end_date.isoformat(),
            "status": request.status.value,
        }
        payload = self._payload(request)
        employee_id = request.employee_id

        credit = await self.ledger.credit(request)
        await self.store.delete(request)

        if credit is not None:
            snapshot["credited_days"] = str(credit.total_days)
        await create_audit_entry(
            self.db,
            action="remove",
            entity_type=_ENTITY,
            entity_id=request_id,
            actor_id=actor_id,
            old_values=snapshot,
        )
        logger.info(
            "Leave request %s removed by %s (credited=%s)",
            request_id, actor_id, credit is not None,
        )
        await self._notify([employee_id], NotificationKind.leave_removed, payload)

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    async def get_request(
        self,
        request_id: uuid.UUID,
        viewer_id: Optional[uuid.UUID] = None,
        *,
        privileged: bool = False,
    ) -> LeaveRequest:
        """Fetch one request; non-privileged viewers must be involved in it."""
        request = await self.store.get_by_id(request_id)
        if request is None:
            raise NotFoundException("LeaveRequest", request_id)
        if viewer_id is not None and not privileged:
            involved = {request.employee_id, request.lead_id, request.cover_person_id}
            involved.update(self._notify_ids(request))
            if viewer_id not in involved:
                raise ForbiddenException("You cannot view this leave request.")
        return request

    async def list_my_requests(
        self,
        employee_id: uuid.UUID,
        *,
        statuses: Optional[Iterable[LeaveStatus]] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[LeaveRequest], int]:
        return await self.store.list_by_employee(
            employee_id, statuses=statuses, offset=offset, limit=limit,
        )

    async def list_for_approver(
        self,
        approver_id: uuid.UUID,
        role: ApproverRole,
        *,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[LeaveRequest], int]:
        return await self.store.list_for_approver(
            approver_id, role, offset=offset, limit=limit,
        )

    async def list_by_status(
        self,
        statuses: Optional[Iterable[LeaveStatus]] = None,
        *,
        employee_id: Optional[uuid.UUID] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[LeaveRequest], int]:
        return await self.store.list_by_status(
            statuses, employee_id=employee_id, offset=offset, limit=limit,
        )

    # ─────────────────────────────────────────────────────────────────
    # Balances
    # ─────────────────────────────────────────────────────────────────

    async def get_balances(
        self, employee_id: uuid.UUID, year: Optional[int] = None,
    ) -> list[LeaveBalance]:
        return await self.ledger.list_balances(employee_id, year or date.today().year)

    async def set_allocation(
        self,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        allocated_days: Decimal,
        actor_id: uuid.UUID,
    ) -> LeaveBalance:
        if await self._load_employee(employee_id) is None:
            raise NotFoundException("Employee", employee_id)

        balance = await self.ledger.get_or_create_balance(employee_id, leave_type, year)
        old_allocated = balance.allocated_days
        balance = await self.ledger.set_allocation(
            employee_id, leave_type, year, allocated_days,
        )
        await create_audit_entry(
            self.db,
            action="set_allocation",
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=actor_id,
            old_values={"allocated_days": str(old_allocated)},
            new_values={
                "allocated_days": str(balance.allocated_days),
                "leave_type": leave_type.value,
                "year": year,
            },
        )
        logger.info(
            "Allocation for %s %s/%d set to %s by %s",
            employee_id, leave_type.value, year, balance.allocated_days, actor_id,
        )
        return balance
