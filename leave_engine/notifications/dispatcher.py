"""Notification dispatchers — fire-and-forget delivery of leave messages.

The leave engine only knows the ``NotificationDispatcher`` protocol. The HTTP
layer wraps the in-app dispatcher in ``BackgroundNotificationDispatcher`` so
that delivery happens after the response is sent, in its own session, and a
delivery failure can never undo a committed transition.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, Optional, Protocol

from fastapi import BackgroundTasks
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leave_engine.common.constants import NotificationKind
from leave_engine.notifications.models import Notification

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    async def notify(
        self,
        employee_ids: Iterable[uuid.UUID],
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None:
        ...


# ── Templates ───────────────────────────────────────────────────────

_RANGE = "from {start_date} to {end_date}"

TEMPLATES: dict[NotificationKind, tuple[str, str]] = {
    NotificationKind.leave_submitted: (
        "Leave Request Submitted",
        "Your {leave_type} leave request " + _RANGE
        + " ({days} working day(s)) has been submitted.",
    ),
    NotificationKind.leave_approval_requested: (
        "New Leave Request",
        "{employee_name} requested {leave_type} leave " + _RANGE
        + " ({days} working day(s)). Your approval is required.",
    ),
    NotificationKind.leave_cover_assigned: (
        "Cover Requested",
        "{employee_name} named you as cover for their leave " + _RANGE + ".",
    ),
    NotificationKind.leave_lead_approved: (
        "Lead Approval Recorded",
        "The leave request " + _RANGE + " was approved by the lead and is awaiting HR.",
    ),
    NotificationKind.leave_hr_approved: (
        "HR Approval Recorded",
        "The leave request " + _RANGE + " was approved by HR and is awaiting the lead.",
    ),
    NotificationKind.leave_approved: (
        "Leave Request Approved",
        "The {leave_type} leave request " + _RANGE + " has been approved.",
    ),
    NotificationKind.leave_rejected: (
        "Leave Request Rejected",
        "The leave request " + _RANGE + " was rejected. Reason: {reason}",
    ),
    NotificationKind.leave_cancelled: (
        "Leave Cancelled",
        "{employee_name} cancelled their leave request " + _RANGE + ".",
    ),
    NotificationKind.leave_removed: (
        "Leave Request Removed",
        "The leave request " + _RANGE + " was removed by HR.",
    ),
    NotificationKind.transition_plan_reminder: (
        "Transition Plan Needed",
        "Your leave starting {start_date} has no transition plan yet. "
        "Please add one before you go.",
    ),
}


class _Blank(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render(kind: NotificationKind, payload: dict[str, Any]) -> tuple[str, str]:
    """Return (title, message) for a notification kind."""
    title, body = TEMPLATES[kind]
    return title, body.format_map(_Blank({k: v for k, v in payload.items() if v is not None}))


def unique_recipients(employee_ids: Iterable[Optional[uuid.UUID]]) -> list[uuid.UUID]:
    """Drop None and duplicates while keeping first-seen order."""
    seen: list[uuid.UUID] = []
    for emp_id in employee_ids:
        if emp_id is not None and emp_id not in seen:
            seen.append(emp_id)
    return seen


# ── Implementations ─────────────────────────────────────────────────

class NotificationDeliveryError(Exception):
    """Some recipients could not be written; the others were delivered."""

    def __init__(self, kind: NotificationKind, failed: list[uuid.UUID]) -> None:
        self.kind = kind
        self.failed = failed
        super().__init__(
            f"{kind.value} could not be delivered to {len(failed)} recipient(s)"
        )


class InAppNotificationDispatcher:
    """Writes one ``Notification`` row per recipient, each in its own transaction.

    A recipient whose row cannot be written (e.g. an id with no employee
    behind it) is logged and skipped; the rest are still delivered and the
    failures are reported afterwards as ``NotificationDeliveryError``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def notify(
        self,
        employee_ids: Iterable[uuid.UUID],
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None:
        recipients = unique_recipients(employee_ids)
        if not recipients:
            return

        title, message = render(kind, payload)
        request_id = payload.get("request_id")
        failed: list[uuid.UUID] = []
        for recipient_id in recipients:
            try:
                async with self.session_factory() as session:
                    session.add(
                        Notification(
                            recipient_id=recipient_id,
                            kind=kind,
                            title=title,
                            message=message,
                            action_url=f"/leave/requests/{request_id}" if request_id else None,
                            entity_type="leave_request" if request_id else None,
                            entity_id=uuid.UUID(str(request_id)) if request_id else None,
                        )
                    )
                    await session.commit()
            except SQLAlchemyError as exc:
                logger.warning(
                    "Skipping %s for recipient %s: %s", kind.value, recipient_id, exc,
                )
                failed.append(recipient_id)

        logger.debug(
            "Delivered %s to %d of %d recipient(s)",
            kind.value, len(recipients) - len(failed), len(recipients),
        )
        if failed:
            raise NotificationDeliveryError(kind, failed)


class BackgroundNotificationDispatcher:
    """Queues deliveries on FastAPI ``BackgroundTasks`` (run after the response)."""

    def __init__(
        self,
        background_tasks: BackgroundTasks,
        delegate: NotificationDispatcher,
    ) -> None:
        self.background_tasks = background_tasks
        self.delegate = delegate

    async def notify(
        self,
        employee_ids: Iterable[uuid.UUID],
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None:
        self.background_tasks.add_task(
            dispatch_safely, self.delegate, list(employee_ids), kind, dict(payload),
        )


async def dispatch_safely(
    dispatcher: NotificationDispatcher,
    employee_ids: Iterable[Optional[uuid.UUID]],
    kind: NotificationKind,
    payload: dict[str, Any],
) -> bool:
    """Deliver through *dispatcher*, logging instead of raising on failure."""
    recipients = unique_recipients(employee_ids)
    if not recipients:
        return True
    try:
        await dispatcher.notify(recipients, kind, payload)
    except Exception:
        logger.exception(
            "Failed to dispatch %s for request %s", kind.value, payload.get("request_id"),
        )
        return False
    return True
