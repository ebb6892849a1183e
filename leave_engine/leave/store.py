"""Leave request persistence — the only module that queries ``leave_requests``."""

from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from leave_engine.common.constants import (
    ACTIVE_STATUSES,
    HR_ACTIONABLE_STATUSES,
    LEAD_ACTIONABLE_STATUSES,
    ApproverRole,
    LeaveStatus,
)
from leave_engine.common.exceptions import ConcurrentModificationError, NotFoundException
from leave_engine.leave.models import LeaveRequest
from leave_engine.org.models import Employee

logger = logging.getLogger(__name__)

_ENTITY = "LeaveRequest"


def _with_people(query):
    return query.options(
        selectinload(LeaveRequest.employee).selectinload(Employee.department),
        selectinload(LeaveRequest.cover_person).selectinload(Employee.department),
    )


class LeaveRequestStore:
    """Async repository over ``LeaveRequest`` rows bound to one session."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ── Single rows ─────────────────────────────────────────────────

    async def create(self, request: LeaveRequest) -> LeaveRequest:
        self.db.add(request)
        await self.db.flush()
        # Reload so server defaults and relationships are populated for async access.
        result = await self.db.execute(
            _with_people(select(LeaveRequest).where(LeaveRequest.id == request.id))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def get_by_id(self, request_id: uuid.UUID) -> Optional[LeaveRequest]:
        result = await self.db.execute(
            _with_people(select(LeaveRequest).where(LeaveRequest.id == request_id))
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, request_id: uuid.UUID) -> LeaveRequest:
        """Lock the row and refresh its flags from the database.

        ``populate_existing`` discards whatever an earlier read left in the
        identity map, so guards always see the committed approval facts.
        """
        result = await self.db.execute(
            _with_people(
                select(LeaveRequest)
                .where(LeaveRequest.id == request_id)
                .with_for_update(of=LeaveRequest)
            ).execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundException(_ENTITY, str(request_id))
        return request

    async def save(self, request: LeaveRequest) -> LeaveRequest:
        """Flush pending changes; a lost version race becomes a 409."""
        try:
            await self.db.flush()
        except StaleDataError as exc:
            logger.warning("Version conflict writing leave request %s", request.id)
            raise ConcurrentModificationError(_ENTITY, str(request.id)) from exc
        return request

    async def delete(self, request: LeaveRequest) -> None:
        await self.db.delete(request)
        try:
            await self.db.flush()
        except StaleDataError as exc:
            raise ConcurrentModificationError(_ENTITY, str(request.id)) from exc

    # ── Lists ───────────────────────────────────────────────────────

    async def _page(
        self, query, *, offset: int, limit: int,
    ) -> tuple[list[LeaveRequest], int]:
        total = (
            await self.db.execute(select(func.count()).select_from(query.subquery()))
        ).scalar() or 0
        result = await self.db.execute(
            _with_people(query)
            .order_by(LeaveRequest.start_date.desc(), LeaveRequest.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def list_by_employee(
        self,
        employee_id: uuid.UUID,
        *,
        statuses: Optional[Iterable[LeaveStatus]] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[LeaveRequest], int]:
        query = select(LeaveRequest).where(LeaveRequest.employee_id == employee_id)
        if statuses:
            query = query.where(LeaveRequest.status.in_(list(statuses)))
        return await self._page(query, offset=offset, limit=limit)

    async def list_for_approver(
        self,
        approver_id: uuid.UUID,
        role: ApproverRole,
        *,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[LeaveRequest], int]:
        """Requests still waiting on *approver_id* in the given role.

        HR sees everything without an HR stamp. A lead sees only requests
        routed to them that still lack the lead stamp.
        """
        if role == ApproverRole.HR:
            query = select(LeaveRequest).where(
                LeaveRequest.status.in_(list(HR_ACTIONABLE_STATUSES))
            )
        else:
            query = select(LeaveRequest).where(
                LeaveRequest.lead_id == approver_id,
                LeaveRequest.lead_approval_required.is_(True),
                LeaveRequest.lead_approved_by.is_(None),
                LeaveRequest.status.in_(list(LEAD_ACTIONABLE_STATUSES)),
            )
        return await self._page(query, offset=offset, limit=limit)

    async def list_by_status(
        self,
        statuses: Optional[Iterable[LeaveStatus]] = None,
        *,
        employee_id: Optional[uuid.UUID] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[LeaveRequest], int]:
        query = select(LeaveRequest)
        if statuses:
            query = query.where(LeaveRequest.status.in_(list(statuses)))
        if employee_id:
            query = query.where(LeaveRequest.employee_id == employee_id)
        return await self._page(query, offset=offset, limit=limit)

    async def list_active_in_range(self, start: date, end: date) -> Sequence[LeaveRequest]:
        """Active requests whose inclusive range touches [start, end]."""
        result = await self.db.execute(
            _with_people(
                select(LeaveRequest).where(
                    LeaveRequest.status.in_(list(ACTIVE_STATUSES)),
                    LeaveRequest.start_date <= end,
                    LeaveRequest.end_date >= start,
                )
            ).order_by(LeaveRequest.start_date, LeaveRequest.created_at)
        )
        return result.scalars().all()

    async def list_reminder_window(
        self, today: date, window_days: int,
    ) -> Sequence[LeaveRequest]:
        """Active requests starting between today and today + window_days."""
        result = await self.db.execute(
            _with_people(
                select(LeaveRequest).where(
                    LeaveRequest.status.in_(list(ACTIVE_STATUSES)),
                    LeaveRequest.start_date >= today,
                    LeaveRequest.start_date <= today + timedelta(days=window_days),
                )
            ).order_by(LeaveRequest.start_date)
        )
        return result.scalars().all()
