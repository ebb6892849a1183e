"""Transition-plan reminders.

An open or approved leave that starts within the next few days and still has
no transition plan gets a reminder to its owner. The batch is triggered
externally (HR or a cron job); nothing here schedules itself.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from leave_engine.common.constants import (
    ACTIVE_STATUSES,
    MAX_REMINDER_WINDOW_DAYS,
    NotificationKind,
)
from leave_engine.common.exceptions import ValidationException
from leave_engine.config import settings
from leave_engine.leave.dates import as_calendar_date, weekday_count
from leave_engine.leave.store import LeaveRequestStore
from leave_engine.notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class ReminderBatchOutcome:
    dry_run: bool
    window_days: int
    eligible: int = 0
    request_ids: list[uuid.UUID] = field(default_factory=list)
    sent: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


def needs_transition_plan_reminder(request: Any, today: date, window_days: int) -> bool:
    if request.status not in ACTIVE_STATUSES:
        return False
    if request.transition_plan and request.transition_plan.strip():
        return False
    days_until = (as_calendar_date(request.start_date) - today).days
    return 0 <= days_until <= window_days


def resolve_window(window_days: Optional[int]) -> int:
    window = settings.LEAVE_REMINDER_WINDOW_DAYS if window_days is None else window_days
    if not 0 <= window <= MAX_REMINDER_WINDOW_DAYS:
        raise ValidationException(
            {"window_days": [f"Must be between 0 and {MAX_REMINDER_WINDOW_DAYS}."]}
        )
    return window


async def select_reminder_candidates(
    store: LeaveRequestStore,
    today: date,
    window_days: Optional[int] = None,
) -> list:
    window = resolve_window(window_days)
    requests = await store.list_reminder_window(today, window)
    return [r for r in requests if needs_transition_plan_reminder(r, today, window)]


async def send_transition_plan_reminders(
    store: LeaveRequestStore,
    dispatcher: NotificationDispatcher,
    today: date,
    window_days: Optional[int] = None,
    dry_run: bool = False,
) -> ReminderBatchOutcome:
    """Remind every eligible owner; one failed send never stops the batch."""
    window = resolve_window(window_days)
    candidates = await select_reminder_candidates(store, today, window)
    outcome = ReminderBatchOutcome(
        dry_run=dry_run,
        window_days=window,
        eligible=len(candidates),
        request_ids=[r.id for r in candidates],
    )
    if dry_run:
        logger.info("Transition-plan reminders (dry run): %d eligible", outcome.eligible)
        return outcome

    for request in candidates:
        payload = {
            "request_id": str(request.id),
            "leave_type": request.leave_type.value.lower(),
            "start_date": request.start_date.isoformat(),
            "end_date": request.end_date.isoformat(),
            "days": weekday_count(request.start_date, request.end_date),
            "employee_name": request.employee.name,
        }
        try:
            await dispatcher.notify(
                [request.employee_id], NotificationKind.transition_plan_reminder, payload,
            )
        except Exception as exc:
            outcome.failed += 1
            outcome.errors.append(f"{request.id}: {exc}")
            logger.warning("Transition-plan reminder for %s failed: %s", request.id, exc)
            continue
        outcome.sent += 1

    logger.info(
        "Transition-plan reminders: %d eligible, %d sent, %d failed",
        outcome.eligible, outcome.sent, outcome.failed,
    )
    return outcome
