"""Leave router — submit, two-track approvals, owner actions, balances, calendar.

All endpoints require authentication. HR-specific endpoints enforce role checks;
the lead track is checked against the lead recorded on each request.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.auth.dependencies import (
    HR_ROLES,
    bearer_matches_cron_secret,
    get_current_user,
    is_hr,
    require_role,
)
from leave_engine.common.constants import ApproverRole, LeaveStatus
from leave_engine.common.exceptions import ForbiddenException
from leave_engine.common.pagination import PaginatedResponse, PaginationMeta, PaginationParams
from leave_engine.common.rate_limit import REMINDER_BATCH_LIMIT, limiter
from leave_engine.database import async_session_factory, get_db
from leave_engine.leave import calendar, reminders
from leave_engine.leave.models import LeaveRequest
from leave_engine.leave.schemas import (
    ApproveRequest,
    BalanceAllocationUpdate,
    CalendarEventOut,
    CalendarOut,
    LeaveBalanceOut,
    LeaveBalanceSummary,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveRequestUpdate,
    RejectRequest,
    ReminderBatchRequest,
    ReminderBatchResult,
    TransitionPlanUpdate,
)
from leave_engine.leave.service import LeaveService
from leave_engine.leave.store import LeaveRequestStore
from leave_engine.notifications.dispatcher import (
    BackgroundNotificationDispatcher,
    InAppNotificationDispatcher,
    NotificationDispatcher,
)
from leave_engine.org.models import Employee

router = APIRouter(prefix="", tags=["leave"])


# ── Dependencies ────────────────────────────────────────────────────

def get_notification_dispatcher(background_tasks: BackgroundTasks) -> NotificationDispatcher:
    """In-app notifications, delivered after the response in their own session."""
    return BackgroundNotificationDispatcher(
        background_tasks, InAppNotificationDispatcher(async_session_factory),
    )


def get_reminder_dispatcher() -> NotificationDispatcher:
    """Synchronous delivery, so the batch can report sent/failed counts."""
    return InAppNotificationDispatcher(async_session_factory)


def get_leave_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> LeaveService:
    return LeaveService(db, dispatcher=dispatcher)


async def require_reminder_caller(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Optional[Employee]:
    """HR users, or an external scheduler holding the cron secret (returns None)."""
    if bearer_matches_cron_secret(request):
        return None
    employee = await get_current_user(request, db)
    if not is_hr(request):
        raise ForbiddenException("Only HR can trigger transition-plan reminders.")
    return employee


def _page(items: list[LeaveRequest], total: int, pagination: PaginationParams):
    return PaginatedResponse[LeaveRequestOut](
        data=[LeaveRequestOut.model_validate(r) for r in items],
        meta=PaginationMeta.build(
            page=pagination.page, page_size=pagination.page_size, total=total,
        ),
    )


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut, status_code=201)
async def submit_leave(
    body: LeaveRequestCreate,
    request: Request,
    employee: Employee = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """Submit a leave request. HR may submit on behalf of another employee."""
    target_id = body.employee_id or employee.id
    if target_id != employee.id and not is_hr(request):
        raise ForbiddenException("Only HR can submit leave on behalf of another employee.")
    return await service.submit(
        target_id,
        body.leave_type,
        body.start_date,
        body.end_date,
        body.reason,
        transition_plan=body.transition_plan,
        cover_person_id=body.cover_person_id,
        notify_ids=body.additional_notify_ids,
        submitted_by=employee.id,
    )


# ── GET /requests/me ────────────────────────────────────────────────

@router.get("/requests/me", response_model=PaginatedResponse[LeaveRequestOut])
async def my_requests(
    status: Optional[list[LeaveStatus]] = Query(None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """The authenticated employee's own requests, newest start date first."""
    items, total = await service.list_my_requests(
        employee.id, statuses=status, offset=pagination.offset, limit=pagination.page_size,
    )
    return _page(items, total, pagination)


# ── GET /requests/pending-approvals ─────────────────────────────────

@router.get("/requests/pending-approvals", response_model=PaginatedResponse[LeaveRequestOut])
async def pending_approvals(
    request: Request,
    role: Optional[ApproverRole] = Query(None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """Requests waiting on the caller, as HR or as the recorded lead."""
    if role is None:
        role = ApproverRole.HR if is_hr(request) else ApproverRole.LEAD
    if role == ApproverRole.HR and not is_hr(request):
        raise ForbiddenException("Only HR can list the HR approval queue.")
    items, total = await service.list_for_approver(
        employee.id, role, offset=pagination.offset, limit=pagination.page_size,
    )
    return _page(items, total, pagination)


# ── GET /requests ───────────────────────────────────────────────────

@router.get("/requests", response_model=PaginatedResponse[LeaveRequestOut])
async def list_requests(
    status: Optional[list[LeaveStatus]] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(require_role(*HR_ROLES)),
    service: LeaveService = Depends(get_leave_service),
):
    """All requests filtered by status and employee (HR)."""
    items, total = await service.list_by_status(
        status, employee_id=employee_id,
        offset=pagination.offset, limit=pagination.page_size,
    )
    return _page(items, total, pagination)


# ── GET /requests/{id} ──────────────────────────────────────────────

@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    request: Request,
    employee: Employee = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    return await service.get_request(request_id, employee.id, privileged=is_hr(request))


# ── PATCH /requests/{id} ────────────────────────────────────────────

@router.patch("/requests/{request_id}", response_model=LeaveRequestOut)
async def edit_leave_request(
    request_id: uuid.UUID,
    body: LeaveRequestUpdate,
    employee: Employee = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """Edit an open request. Recorded approvals are kept."""
    return await service.edit(request_id, employee.id, body.model_dump(exclude_unset=True))


# ── PUT /requests/{id}/transition-plan ──────────────────────────────

@router.put("/requests/{request_id}/transition-plan", response_model=LeaveRequestOut)
async def update_transition_plan(
    request_id: uuid.UUID,
    body: TransitionPlanUpdate,
    employee: Employee = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    return await service.update_transition_plan(request_id, employee.id, body.transition_plan)


# ── PUT /requests/{id}/approve/lead ─────────────────────────────────

@router.put("/requests/{request_id}/approve/lead", response_model=LeaveRequestOut)
async def approve_as_lead(
    request_id: uuid.UUID,
    body: ApproveRequest,
    employee: Employee = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """Record the lead approval. Only the request's lead may call this."""
    return await service.approve_as_lead(request_id, employee.id, body.comment)


# ── PUT /requests/{id}/approve/hr ───────────────────────────────────

@router.put("/requests/{request_id}/approve/hr", response_model=LeaveRequestOut)
async def approve_as_hr(
    request_id: uuid.UUID,
    body: ApproveRequest,
    employee: Employee = Depends(require_role(*HR_ROLES)),
    service: LeaveService = Depends(get_leave_service),
):
    """Record the HR approval. Debits the balance when it completes approval."""
    return await service.approve_as_hr(request_id, employee.id, body.comment)


# ── PUT /requests/{id}/reject ───────────────────────────────────────

@router.put("/requests/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave(
    request_id: uuid.UUID,
    body: RejectRequest,
    request: Request,
    employee: Employee = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """Reject a non-terminal request as HR or as the request's lead."""
    hr = is_hr(request)
    as_role = body.as_role or (ApproverRole.HR if hr else ApproverRole.LEAD)
    if as_role == ApproverRole.HR and not hr:
        raise ForbiddenException("Only HR can reject on the HR track.")
    return await service.reject(request_id, employee.id, body.reason, as_role)


# ── PUT /requests/{id}/cancel ───────────────────────────────────────

@router.put("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """Cancel your own request while it is still open."""
    return await service.cancel(request_id, employee.id)


# ── DELETE /requests/{id} ───────────────────────────────────────────

@router.delete("/requests/{request_id}", status_code=204)
async def remove_leave(
    request_id: uuid.UUID,
    employee: Employee = Depends(require_role(*HR_ROLES)),
    service: LeaveService = Depends(get_leave_service),
):
    """Hard-delete a request in any status, crediting back any debit (HR)."""
    await service.remove(request_id, employee.id)
    return Response(status_code=204)


# ── GET /balances ───────────────────────────────────────────────────

@router.get("/balances", response_model=LeaveBalanceSummary)
async def get_balances(
    request: Request,
    employee_id: Optional[uuid.UUID] = Query(None),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    employee: Employee = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """Yearly balances per leave type. Other employees' balances are HR-only."""
    target_id = employee_id or employee.id
    if target_id != employee.id and not is_hr(request):
        raise ForbiddenException("You can only view your own leave balances.")
    year = year or date.today().year
    balances = await service.get_balances(target_id, year)
    return LeaveBalanceSummary(
        employee_id=target_id,
        year=year,
        balances=[LeaveBalanceOut.model_validate(b) for b in balances],
    )


# ── PUT /balances ───────────────────────────────────────────────────

@router.put("/balances", response_model=LeaveBalanceOut)
async def set_allocation(
    body: BalanceAllocationUpdate,
    employee: Employee = Depends(require_role(*HR_ROLES)),
    service: LeaveService = Depends(get_leave_service),
):
    return await service.set_allocation(
        body.employee_id, body.leave_type, body.year, body.allocated_days, employee.id,
    )


# ── GET /calendar ───────────────────────────────────────────────────

@router.get("/calendar", response_model=CalendarOut)
async def leave_calendar(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    department: str = Query("ALL", description="Department id, name or code; ALL for everyone"),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Active leave (open or approved) intersecting a month."""
    today = date.today()
    year = year or today.year
    month = month or today.month
    events = await calendar.events_for_month(
        LeaveRequestStore(db), employee.id, year, month, department,
    )
    return CalendarOut(
        year=year,
        month=month,
        department=department,
        events=[CalendarEventOut.model_validate(e) for e in events],
    )


# ── POST /reminders/transition-plan ─────────────────────────────────

@router.post("/reminders/transition-plan", response_model=ReminderBatchResult)
@limiter.limit(REMINDER_BATCH_LIMIT)
async def transition_plan_reminders(
    request: Request,
    body: ReminderBatchRequest,
    caller: Optional[Employee] = Depends(require_reminder_caller),
    dispatcher: NotificationDispatcher = Depends(get_reminder_dispatcher),
    db: AsyncSession = Depends(get_db),
):
    """Remind owners of leave starting soon that still lacks a transition plan."""
    outcome = await reminders.send_transition_plan_reminders(
        LeaveRequestStore(db),
        dispatcher,
        body.today or date.today(),
        window_days=body.window_days,
        dry_run=body.dry_run,
    )
    return ReminderBatchResult.model_validate(outcome)
