"""Team leave calendar — month projection of active requests."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from leave_engine.common.constants import ALL_DEPARTMENTS, LeaveStatus, LeaveType
from leave_engine.leave.dates import (
    DateLike,
    as_calendar_date,
    month_bounds,
    ranges_intersect,
    weekday_count,
)
from leave_engine.leave.models import LeaveRequest
from leave_engine.leave.store import LeaveRequestStore


@dataclass(frozen=True)
class CalendarEvent:
    request_id: uuid.UUID
    employee_id: uuid.UUID
    employee_name: str
    department_id: Optional[uuid.UUID]
    department_name: Optional[str]
    leave_type: LeaveType
    status: LeaveStatus
    start_date: date
    end_date: date
    working_days: int
    is_current_user: bool


def _matches_department(request: LeaveRequest, department_filter: str) -> bool:
    department = request.employee.department
    if department is None:
        return False
    wanted = department_filter.strip().lower()
    return wanted in {str(department.id).lower(), department.name.lower(), (department.code or "").lower()}


def project_month(
    requests: Iterable[LeaveRequest],
    viewer_id: uuid.UUID,
    year: int,
    month: int,
    department_filter: Optional[str] = None,
) -> list[CalendarEvent]:
    """Events for every request intersecting the month.

    A department filter (id, name or code; ``"ALL"`` disables it) never hides
    the viewer's own leave.
    """
    first, last = month_bounds(year, month)
    filtering = bool(department_filter) and department_filter.upper() != ALL_DEPARTMENTS

    events: list[CalendarEvent] = []
    for request in requests:
        if not ranges_intersect(request.start_date, request.end_date, first, last):
            continue
        is_current_user = request.employee_id == viewer_id
        if filtering and not is_current_user and not _matches_department(request, department_filter):
            continue
        employee = request.employee
        events.append(
            CalendarEvent(
                request_id=request.id,
                employee_id=request.employee_id,
                employee_name=employee.name,
                department_id=employee.department_id,
                department_name=employee.department_name,
                leave_type=request.leave_type,
                status=request.status,
                start_date=as_calendar_date(request.start_date),
                end_date=as_calendar_date(request.end_date),
                working_days=weekday_count(request.start_date, request.end_date),
                is_current_user=is_current_user,
            )
        )
    events.sort(key=lambda e: (e.start_date, e.employee_name))
    return events


def events_for_date(events: Iterable[CalendarEvent], day: DateLike) -> list[CalendarEvent]:
    """Events covering *day*, both endpoints inclusive."""
    return [e for e in events if ranges_intersect(e.start_date, e.end_date, day, day)]


async def events_for_month(
    store: LeaveRequestStore,
    viewer_id: uuid.UUID,
    year: int,
    month: int,
    department_filter: Optional[str] = None,
) -> list[CalendarEvent]:
    first, last = month_bounds(year, month)
    requests = await store.list_active_in_range(first, last)
    return project_month(requests, viewer_id, year, month, department_filter)
