"""Transition-plan reminder tests — window selection, dry run, partial failure."""

from __future__ import annotations

from datetime import date
from types import SimpleNamespace

import pytest

from leave_engine.common.constants import LeaveStatus, LeaveType, NotificationKind
from leave_engine.common.exceptions import ValidationException
from leave_engine.leave.reminders import (
    needs_transition_plan_reminder,
    resolve_window,
    select_reminder_candidates,
    send_transition_plan_reminders,
)
from leave_engine.leave.store import LeaveRequestStore
from tests.conftest import RecordingDispatcher

TODAY = date(2024, 3, 1)


def _stub(start: date, plan=None, status=LeaveStatus.PENDING):
    return SimpleNamespace(start_date=start, transition_plan=plan, status=status)


class TestEligibility:
    def test_starting_today_without_plan(self):
        assert needs_transition_plan_reminder(_stub(TODAY), TODAY, 3)

    def test_window_edge_is_inclusive(self):
        assert needs_transition_plan_reminder(_stub(date(2024, 3, 4)), TODAY, 3)
        assert not needs_transition_plan_reminder(_stub(date(2024, 3, 5)), TODAY, 3)

    def test_already_started(self):
        assert not needs_transition_plan_reminder(_stub(date(2024, 2, 29)), TODAY, 3)

    def test_blank_plan_still_needs_reminder(self):
        assert needs_transition_plan_reminder(_stub(TODAY, plan="   "), TODAY, 3)
        assert not needs_transition_plan_reminder(_stub(TODAY, plan="Sol covers"), TODAY, 3)

    @pytest.mark.parametrize("status", [LeaveStatus.REJECTED, LeaveStatus.CANCELLED])
    def test_terminal_negative_statuses_skipped(self, status):
        assert not needs_transition_plan_reminder(_stub(TODAY, status=status), TODAY, 3)

    def test_approved_leave_is_reminded(self):
        assert needs_transition_plan_reminder(_stub(TODAY, status=LeaveStatus.APPROVED), TODAY, 3)


class TestWindow:
    def test_default_window(self):
        assert resolve_window(None) == 3

    @pytest.mark.parametrize("window", [0, 30])
    def test_bounds_accepted(self, window):
        assert resolve_window(window) == window

    @pytest.mark.parametrize("window", [-1, 31])
    def test_out_of_range(self, window):
        with pytest.raises(ValidationException) as exc_info:
            resolve_window(window)
        assert "window_days" in exc_info.value.errors


async def _seed(service, org):
    """Four requests around TODAY; two of them are due a reminder."""
    due_pending = await service.submit(
        org.employee.id, LeaveType.CASUAL, date(2024, 3, 4), date(2024, 3, 5), "Trip",
    )
    due_approved = await service.submit(
        org.solo.id, LeaveType.ANNUAL, date(2024, 3, 2), date(2024, 3, 8), "Trip",
    )
    await service.approve_as_hr(due_approved.id, org.hr.id)
    await service.submit(
        org.ops_member.id, LeaveType.SICK, date(2024, 3, 1), date(2024, 3, 1), "Clinic",
        transition_plan="Hana covers",
    )
    too_far = await service.submit(
        org.lead.id, LeaveType.CASUAL, date(2024, 3, 11), date(2024, 3, 12), "Errand",
    )
    return due_pending, due_approved, too_far


class TestReminderBatch:
    async def test_candidates(self, service, db, org):
        due_pending, due_approved, _ = await _seed(service, org)
        candidates = await select_reminder_candidates(LeaveRequestStore(db), TODAY)
        assert {r.id for r in candidates} == {due_pending.id, due_approved.id}

    async def test_wider_window_picks_up_more(self, service, db, org):
        _, _, too_far = await _seed(service, org)
        candidates = await select_reminder_candidates(LeaveRequestStore(db), TODAY, 10)
        assert too_far.id in {r.id for r in candidates}

    async def test_dry_run_sends_nothing(self, service, db, org):
        await _seed(service, org)
        outbox = RecordingDispatcher()
        outcome = await send_transition_plan_reminders(
            LeaveRequestStore(db), outbox, TODAY, dry_run=True,
        )
        assert outcome.dry_run is True
        assert outcome.eligible == 2
        assert outcome.sent == 0
        assert outbox.sent == []

    async def test_sends_to_owners(self, service, db, org):
        await _seed(service, org)
        outbox = RecordingDispatcher()
        outcome = await send_transition_plan_reminders(LeaveRequestStore(db), outbox, TODAY)

        assert outcome.sent == 2
        assert outcome.failed == 0
        assert sorted(outbox.recipients(NotificationKind.transition_plan_reminder)) == sorted(
            [org.employee.id, org.solo.id]
        )

    async def test_one_failure_does_not_stop_the_batch(self, service, db, org):
        due_pending, _, _ = await _seed(service, org)
        outbox = RecordingDispatcher(fail_for=[org.employee.id])
        outcome = await send_transition_plan_reminders(LeaveRequestStore(db), outbox, TODAY)

        assert outcome.eligible == 2
        assert outcome.sent == 1
        assert outcome.failed == 1
        assert outcome.errors == [f"{due_pending.id}: mail relay unavailable"]
        assert outbox.recipients(NotificationKind.transition_plan_reminder) == [org.solo.id]

    async def test_invalid_window_rejected_before_querying(self, db):
        with pytest.raises(ValidationException):
            await send_transition_plan_reminders(
                LeaveRequestStore(db), RecordingDispatcher(), TODAY, window_days=45,
            )
