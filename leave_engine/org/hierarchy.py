"""Hierarchy provider — answers "does this employee have a lead, and who"."""

from __future__ import annotations

import logging
import uuid
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.org.models import Employee

logger = logging.getLogger(__name__)


class HierarchyProvider(Protocol):
    async def get_lead(self, employee_id: uuid.UUID) -> Optional[uuid.UUID]:
        """Return the employee's distinct lead, or None when there is none."""
        ...


class EmployeeHierarchyProvider:
    """Reads the lead edge from ``Employee.reporting_manager_id``.

    An employee recorded as their own manager (top of the chart) and a
    manager who is no longer active both count as "no lead".
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_lead(self, employee_id: uuid.UUID) -> Optional[uuid.UUID]:
        result = await self.db.execute(
            select(Employee.reporting_manager_id).where(Employee.id == employee_id)
        )
        lead_id = result.scalar()
        if lead_id is None or lead_id == employee_id:
            return None

        active = await self.db.execute(
            select(Employee.id).where(
                Employee.id == lead_id,
                Employee.is_active.is_(True),
            )
        )
        if active.scalar() is None:
            logger.warning(
                "Lead %s of employee %s is inactive; no lead track", lead_id, employee_id,
            )
            return None
        return lead_id
