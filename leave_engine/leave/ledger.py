"""Leave balance ledger.

Balances move only when a request enters or leaves APPROVED. Each movement is
recorded as a ``LeaveLedgerEntry`` (one DEBIT, at most one CREDIT per request)
holding the per-year split that was actually applied, so:

* replaying ``debit`` for the same request is a no-op;
* ``credit`` returns exactly what was taken, even if the request's dates
  were changed afterwards or the request row is gone;
* a range crossing Dec 31 charges each year's balance for its own weekdays.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import LeaveType, LedgerEntryType
from leave_engine.common.exceptions import (
    ConcurrentModificationError,
    InsufficientBalanceError,
    ValidationException,
)
from leave_engine.config import settings
from leave_engine.leave.dates import weekday_count_by_year
from leave_engine.leave.models import LeaveBalance, LeaveLedgerEntry, LeaveRequest

logger = logging.getLogger(__name__)


class BalanceLedger:
    def __init__(
        self,
        db: AsyncSession,
        *,
        allow_overage: Optional[bool] = None,
        default_allocations: Optional[dict[str, Decimal]] = None,
    ) -> None:
        self.db = db
        self.allow_overage = (
            settings.LEAVE_ALLOW_OVERAGE if allow_overage is None else allow_overage
        )
        self.default_allocations = default_allocations or settings.default_allocations

    async def _flush_unique(
        self, table: str, constraint: str, entity: str, entity_id: str,
    ) -> None:
        """Flush; a lost race on *constraint* surfaces as a 409 after rollback."""
        try:
            await self.db.flush()
        except IntegrityError as exc:
            await self.db.rollback()
            err = str(exc.orig)
            if constraint in err or (table in err and "UNIQUE" in err.upper()):
                logger.warning("Concurrent insert into %s for %s", table, entity_id)
                raise ConcurrentModificationError(entity, entity_id)
            raise

    # ── Balances ────────────────────────────────────────────────────

    async def get_or_create_balance(
        self,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        *,
        for_update: bool = False,
    ) -> LeaveBalance:
        """Fetch the (employee, type, year) row, creating it with the default allocation."""
        query = select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type == leave_type,
            LeaveBalance.year == year,
        )
        if for_update:
            query = query.with_for_update()
        balance = (await self.db.execute(query)).scalar_one_or_none()
        if balance is not None:
            return balance

        balance = LeaveBalance(
            employee_id=employee_id,
            leave_type=leave_type,
            year=year,
            allocated_days=Decimal(self.default_allocations.get(leave_type.value, 0)),
            used_days=Decimal("0"),
        )
        self.db.add(balance)
        await self._flush_unique(
            "leave_balances", "uq_leave_balance",
            "LeaveBalance", f"{employee_id}/{leave_type.value}/{year}",
        )
        logger.debug(
            "Created %s balance for %s/%d with %s day(s)",
            leave_type.value, employee_id, year, balance.allocated_days,
        )
        return balance

    async def list_balances(self, employee_id: uuid.UUID, year: int) -> list[LeaveBalance]:
        return [
            await self.get_or_create_balance(employee_id, leave_type, year)
            for leave_type in LeaveType
        ]

    async def remaining(
        self, employee_id: uuid.UUID, leave_type: LeaveType, year: int,
    ) -> Decimal:
        balance = await self.get_or_create_balance(employee_id, leave_type, year)
        return balance.remaining_days

    async def set_allocation(
        self,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        allocated_days: Decimal,
    ) -> LeaveBalance:
        if allocated_days < 0:
            raise ValidationException(
                {"allocated_days": ["Allocation cannot be negative."]}
            )
        balance = await self.get_or_create_balance(
            employee_id, leave_type, year, for_update=True,
        )
        balance.allocated_days = Decimal(allocated_days)
        await self.db.flush()
        return balance

    async def check_available(
        self,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        start_date: date,
        end_date: date,
    ) -> bool:
        """True when every touched year covers its share of the range.

        Under the no-overage policy a shortfall raises
        ``InsufficientBalanceError`` instead of returning False.
        """
        for year, days in weekday_count_by_year(start_date, end_date).items():
            available = await self.remaining(employee_id, leave_type, year)
            if available >= days:
                continue
            if not self.allow_overage:
                raise InsufficientBalanceError(leave_type.value, available, days)
            return False
        return True

    # ── Movements ───────────────────────────────────────────────────

    async def _entry(
        self, request_id: uuid.UUID, entry_type: LedgerEntryType,
    ) -> Optional[LeaveLedgerEntry]:
        result = await self.db.execute(
            select(LeaveLedgerEntry).where(
                LeaveLedgerEntry.request_id == request_id,
                LeaveLedgerEntry.entry_type == entry_type,
            )
        )
        return result.scalar_one_or_none()

    async def is_debited(self, request_id: uuid.UUID) -> bool:
        debit = await self._entry(request_id, LedgerEntryType.DEBIT)
        if debit is None:
            return False
        return await self._entry(request_id, LedgerEntryType.CREDIT) is None

    async def debit(self, request: LeaveRequest) -> Optional[LeaveLedgerEntry]:
        """Charge the request's weekdays to its balances, once.

        Returns the new entry, or None when the request was already debited.
        """
        if await self._entry(request.id, LedgerEntryType.DEBIT) is not None:
            logger.info("Leave request %s already debited; skipping", request.id)
            return None

        split = weekday_count_by_year(request.start_date, request.end_date)
        for year, days in split.items():
            balance = await self.get_or_create_balance(
                request.employee_id, request.leave_type, year, for_update=True,
            )
            balance.used_days = balance.used_days + Decimal(days)

        entry = LeaveLedgerEntry(
            request_id=request.id,
            employee_id=request.employee_id,
            leave_type=request.leave_type,
            entry_type=LedgerEntryType.DEBIT,
            total_days=Decimal(sum(split.values())),
            days_by_year={str(year): str(days) for year, days in split.items()},
        )
        self.db.add(entry)
        await self._flush_unique(
            "leave_ledger_entries", "uq_ledger_request_entry",
            "LeaveLedgerEntry", str(request.id),
        )
        logger.info(
            "Debited %s %s day(s) for request %s",
            entry.total_days, request.leave_type.value, request.id,
        )
        return entry

    async def credit(self, request: LeaveRequest) -> Optional[LeaveLedgerEntry]:
        """Return exactly what the request's debit took, once.

        A request that was never debited (or already credited) is a no-op.
        """
        debit = await self._entry(request.id, LedgerEntryType.DEBIT)
        if debit is None:
            return None
        if await self._entry(request.id, LedgerEntryType.CREDIT) is not None:
            logger.info("Leave request %s already credited; skipping", request.id)
            return None

        for year, days in debit.days_by_year.items():
            balance = await self.get_or_create_balance(
                debit.employee_id, debit.leave_type, int(year), for_update=True,
            )
            balance.used_days = balance.used_days - Decimal(days)

        entry = LeaveLedgerEntry(
            request_id=request.id,
            employee_id=debit.employee_id,
            leave_type=debit.leave_type,
            entry_type=LedgerEntryType.CREDIT,
            total_days=debit.total_days,
            days_by_year=dict(debit.days_by_year),
        )
        self.db.add(entry)
        await self._flush_unique(
            "leave_ledger_entries", "uq_ledger_request_entry",
            "LeaveLedgerEntry", str(request.id),
        )
        logger.info(
            "Credited %s %s day(s) for request %s",
            entry.total_days, debit.leave_type.value, request.id,
        )
        return entry
