"""Leave HTTP API tests — auth, role checks, problem+json errors, full flows.

Every request goes through the real router with the DB and notification
dependencies overridden in conftest.py.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from leave_engine.common.constants import NotificationKind, UserRole
from leave_engine.config import settings
from tests.conftest import auth_headers, create_access_token

BASE = "/api/v1/leave"
PROBLEM_JSON = "application/problem+json"


def _body(**overrides):
    body = {
        "leave_type": "CASUAL",
        "start_date": "2024-03-04",
        "end_date": "2024-03-08",
        "reason": "Family trip",
    }
    body.update(overrides)
    return body


async def _submit(client, employee, **overrides):
    resp = await client.post(f"{BASE}/requests", json=_body(**overrides), headers=auth_headers(employee))
    assert resp.status_code == 201, resp.text
    return resp.json()


def _hr(org):
    return auth_headers(org.hr, UserRole.hr_admin)


def _lead(org):
    return auth_headers(org.lead, UserRole.manager)


# ═════════════════════════════════════════════════════════════════════
# System / auth
# ═════════════════════════════════════════════════════════════════════


class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


class TestAuthentication:
    async def test_missing_token(self, client, org):
        resp = await client.get(f"{BASE}/requests/me")
        assert resp.status_code == 401

    async def test_expired_token(self, client, org):
        token = create_access_token(org.employee.id, expired=True)
        resp = await client.get(f"{BASE}/requests/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_garbage_token(self, client, org):
        resp = await client.get(f"{BASE}/requests/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    async def test_unknown_employee(self, client, org):
        token = create_access_token(uuid.uuid4())
        resp = await client.get(f"{BASE}/requests/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401


# ═════════════════════════════════════════════════════════════════════
# Submission
# ═════════════════════════════════════════════════════════════════════


class TestSubmitEndpoint:
    async def test_submit(self, client, org, dispatcher):
        data = await _submit(client, org.employee, cover_person_id=str(org.solo.id))

        assert data["status"] == "PENDING"
        assert data["lead_approval_required"] is True
        assert data["lead_id"] == str(org.lead.id)
        assert data["working_days"] == 5
        assert data["calendar_days"] == 5
        assert data["version"] == 1
        assert data["awaiting"] == ["HR", "LEAD"]
        assert data["employee"]["name"] == "Emma Iyer"
        assert data["employee"]["department_name"] == "Engineering"
        assert data["cover_person"]["id"] == str(org.solo.id)
        assert NotificationKind.leave_cover_assigned in dispatcher.kinds()

    async def test_weekend_days_not_counted(self, client, org):
        data = await _submit(client, org.employee, start_date="2024-03-08", end_date="2024-03-11")
        assert data["working_days"] == 2
        assert data["calendar_days"] == 4

    async def test_inverted_range_is_problem_json(self, client, org):
        resp = await client.post(
            f"{BASE}/requests",
            json=_body(start_date="2024-03-08", end_date="2024-03-04"),
            headers=auth_headers(org.employee),
        )
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith(PROBLEM_JSON)
        problem = resp.json()
        assert problem["type"].endswith("/validation-error")
        assert "end_date" in problem["errors"]

    async def test_schema_errors_are_problem_json(self, client, org):
        body = _body()
        del body["reason"]
        resp = await client.post(f"{BASE}/requests", json=body, headers=auth_headers(org.employee))
        assert resp.status_code == 422
        assert "reason" in resp.json()["errors"]

    async def test_notify_list_capped_by_setting(self, client, org):
        ids = [str(uuid.uuid4()) for _ in range(settings.LEAVE_MAX_NOTIFY_IDS + 1)]
        resp = await client.post(
            f"{BASE}/requests",
            json=_body(additional_notify_ids=ids),
            headers=auth_headers(org.employee),
        )
        assert resp.status_code == 422
        assert "additional_notify_ids" in resp.json()["errors"]

    async def test_unknown_notify_recipient_is_problem_json(self, client, org, dispatcher):
        resp = await client.post(
            f"{BASE}/requests",
            json=_body(additional_notify_ids=[str(org.hr.id), str(uuid.uuid4())]),
            headers=auth_headers(org.employee),
        )
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith(PROBLEM_JSON)
        assert "additional_notify_ids" in resp.json()["errors"]
        assert dispatcher.sent == []

    async def test_on_behalf_requires_hr(self, client, org):
        resp = await client.post(
            f"{BASE}/requests",
            json=_body(employee_id=str(org.solo.id)),
            headers=auth_headers(org.employee),
        )
        assert resp.status_code == 403
        assert resp.json()["type"].endswith("/forbidden")

    async def test_hr_submits_on_behalf(self, client, org):
        resp = await client.post(
            f"{BASE}/requests", json=_body(employee_id=str(org.solo.id)), headers=_hr(org),
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["employee_id"] == str(org.solo.id)
        assert data["submitted_by"] == str(org.hr.id)


# ═════════════════════════════════════════════════════════════════════
# Approval flow
# ═════════════════════════════════════════════════════════════════════


class TestApprovalEndpoints:
    async def test_full_two_track_flow(self, client, org):
        request = await _submit(client, org.employee)
        rid = request["id"]

        resp = await client.put(
            f"{BASE}/requests/{rid}/approve/lead", json={"comment": "Fine by me"}, headers=_lead(org),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "LEAD_APPROVED"
        assert resp.json()["awaiting"] == ["HR"]

        resp = await client.put(f"{BASE}/requests/{rid}/approve/hr", json={}, headers=_hr(org))
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "APPROVED"
        assert data["lead_comment"] == "Fine by me"
        assert data["awaiting"] == []
        assert data["version"] == 3

        resp = await client.get(
            f"{BASE}/balances", params={"year": 2024}, headers=auth_headers(org.employee),
        )
        casual = next(b for b in resp.json()["balances"] if b["leave_type"] == "CASUAL")
        assert Decimal(str(casual["used_days"])) == Decimal("5")
        assert Decimal(str(casual["remaining_days"])) == Decimal("5")

    async def test_hr_approval_needs_hr_role(self, client, org):
        request = await _submit(client, org.employee)
        resp = await client.put(
            f"{BASE}/requests/{request['id']}/approve/hr", json={}, headers=_lead(org),
        )
        assert resp.status_code == 403

    async def test_wrong_lead_is_conflict(self, client, org):
        request = await _submit(client, org.employee)
        resp = await client.put(
            f"{BASE}/requests/{request['id']}/approve/lead",
            json={},
            headers=auth_headers(org.solo, UserRole.manager),
        )
        assert resp.status_code == 409
        assert resp.headers["content-type"].startswith(PROBLEM_JSON)
        assert resp.json()["type"].endswith("/invalid-transition")

    async def test_unknown_request_is_404(self, client, org):
        resp = await client.put(f"{BASE}/requests/{uuid.uuid4()}/approve/hr", json={}, headers=_hr(org))
        assert resp.status_code == 404
        assert resp.json()["type"].endswith("/not-found")

    async def test_lead_rejects_by_default_role(self, client, org):
        request = await _submit(client, org.employee)
        resp = await client.put(
            f"{BASE}/requests/{request['id']}/reject", json={"reason": "Release week"}, headers=_lead(org),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "REJECTED"
        assert data["rejection_reason"] == "Release week"

    async def test_non_hr_cannot_reject_on_hr_track(self, client, org):
        request = await _submit(client, org.employee)
        resp = await client.put(
            f"{BASE}/requests/{request['id']}/reject",
            json={"reason": "No", "as_role": "HR"},
            headers=_lead(org),
        )
        assert resp.status_code == 403

    async def test_blank_rejection_reason(self, client, org):
        request = await _submit(client, org.employee)
        resp = await client.put(
            f"{BASE}/requests/{request['id']}/reject", json={"reason": "  "}, headers=_hr(org),
        )
        assert resp.status_code == 422

    async def test_pending_approvals_per_role(self, client, org):
        request = await _submit(client, org.employee)
        await _submit(client, org.solo)

        resp = await client.get(f"{BASE}/requests/pending-approvals", headers=_lead(org))
        assert resp.status_code == 200
        assert [r["id"] for r in resp.json()["data"]] == [request["id"]]

        resp = await client.get(f"{BASE}/requests/pending-approvals", headers=_hr(org))
        assert resp.json()["meta"]["total"] == 2

        resp = await client.get(
            f"{BASE}/requests/pending-approvals", params={"role": "HR"}, headers=_lead(org),
        )
        assert resp.status_code == 403


# ═════════════════════════════════════════════════════════════════════
# Owner actions / HR removal
# ═════════════════════════════════════════════════════════════════════


class TestOwnerEndpoints:
    async def test_edit_and_transition_plan(self, client, org):
        request = await _submit(client, org.employee)
        rid = request["id"]

        resp = await client.patch(
            f"{BASE}/requests/{rid}", json={"end_date": "2024-03-05"}, headers=auth_headers(org.employee),
        )
        assert resp.status_code == 200
        assert resp.json()["working_days"] == 2

        resp = await client.put(
            f"{BASE}/requests/{rid}/transition-plan",
            json={"transition_plan": "Sol takes the on-call"},
            headers=auth_headers(org.employee),
        )
        assert resp.status_code == 200
        assert resp.json()["transition_plan"] == "Sol takes the on-call"

    async def test_edit_inverted_range(self, client, org):
        request = await _submit(client, org.employee)
        resp = await client.patch(
            f"{BASE}/requests/{request['id']}",
            json={"start_date": "2024-03-20"},
            headers=auth_headers(org.employee),
        )
        assert resp.status_code == 422

    async def test_cancel_then_cancel_again(self, client, org):
        request = await _submit(client, org.employee)
        url = f"{BASE}/requests/{request['id']}/cancel"

        resp = await client.put(url, headers=auth_headers(org.employee))
        assert resp.status_code == 200
        assert resp.json()["status"] == "CANCELLED"

        resp = await client.put(url, headers=auth_headers(org.employee))
        assert resp.status_code == 409

    async def test_hr_removes_request(self, client, org):
        request = await _submit(client, org.employee)
        url = f"{BASE}/requests/{request['id']}"

        resp = await client.delete(url, headers=auth_headers(org.employee))
        assert resp.status_code == 403

        resp = await client.delete(url, headers=_hr(org))
        assert resp.status_code == 204

        resp = await client.get(url, headers=_hr(org))
        assert resp.status_code == 404


# ═════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════


class TestReadEndpoints:
    async def test_my_requests(self, client, org):
        await _submit(client, org.employee)
        await _submit(client, org.employee, start_date="2024-04-01", end_date="2024-04-02")

        resp = await client.get(f"{BASE}/requests/me", headers=auth_headers(org.employee))
        assert resp.status_code == 200
        body = resp.json()
        assert body["meta"]["total"] == 2
        assert [r["start_date"] for r in body["data"]] == ["2024-04-01", "2024-03-04"]

    async def test_list_all_is_hr_only(self, client, org):
        await _submit(client, org.employee)
        resp = await client.get(f"{BASE}/requests", headers=auth_headers(org.employee))
        assert resp.status_code == 403

        resp = await client.get(f"{BASE}/requests", params={"status": "PENDING"}, headers=_hr(org))
        assert resp.status_code == 200
        assert resp.json()["meta"]["total"] == 1

    async def test_uninvolved_employee_cannot_view(self, client, org):
        request = await _submit(client, org.employee)
        url = f"{BASE}/requests/{request['id']}"

        assert (await client.get(url, headers=_lead(org))).status_code == 200
        assert (await client.get(url, headers=auth_headers(org.ops_member))).status_code == 403

    async def test_balances_of_others_are_hr_only(self, client, org):
        resp = await client.get(
            f"{BASE}/balances",
            params={"employee_id": str(org.solo.id)},
            headers=auth_headers(org.employee),
        )
        assert resp.status_code == 403

        resp = await client.get(
            f"{BASE}/balances", params={"employee_id": str(org.solo.id), "year": 2024}, headers=_hr(org),
        )
        assert resp.status_code == 200
        assert len(resp.json()["balances"]) == 3

    async def test_hr_sets_allocation(self, client, org):
        body = {
            "employee_id": str(org.employee.id),
            "leave_type": "ANNUAL",
            "year": 2024,
            "allocated_days": "18",
        }
        resp = await client.put(f"{BASE}/balances", json=body, headers=auth_headers(org.employee))
        assert resp.status_code == 403

        resp = await client.put(f"{BASE}/balances", json=body, headers=_hr(org))
        assert resp.status_code == 200
        assert Decimal(str(resp.json()["allocated_days"])) == Decimal("18")

    async def test_calendar(self, client, org):
        await _submit(client, org.employee)
        await _submit(client, org.ops_member, start_date="2024-03-11", end_date="2024-03-12")

        resp = await client.get(
            f"{BASE}/calendar",
            params={"year": 2024, "month": 3, "department": "OPS"},
            headers=auth_headers(org.employee),
        )
        assert resp.status_code == 200
        events = resp.json()["events"]
        assert [e["employee_name"] for e in events] == ["Emma Iyer", "Omar Shah"]
        assert events[0]["is_current_user"] is True


# ═════════════════════════════════════════════════════════════════════
# Reminders
# ═════════════════════════════════════════════════════════════════════


class TestReminderEndpoint:
    URL = f"{BASE}/reminders/transition-plan"

    async def test_cron_secret(self, client, org, dispatcher):
        await _submit(client, org.employee)
        resp = await client.post(
            self.URL,
            json={"today": "2024-03-01"},
            headers={"Authorization": "Bearer test-cron-secret"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["eligible"] == 1
        assert data["sent"] == 1
        assert org.employee.id in dispatcher.recipients(NotificationKind.transition_plan_reminder)

    async def test_hr_dry_run(self, client, org):
        await _submit(client, org.employee)
        resp = await client.post(
            self.URL, json={"today": "2024-03-01", "dry_run": True}, headers=_hr(org),
        )
        assert resp.status_code == 200
        assert resp.json()["sent"] == 0
        assert resp.json()["eligible"] == 1

    async def test_employee_forbidden(self, client, org):
        resp = await client.post(self.URL, json={}, headers=auth_headers(org.employee))
        assert resp.status_code == 403

    async def test_anonymous_rejected(self, client, org):
        resp = await client.post(self.URL, json={})
        assert resp.status_code == 401

    async def test_window_out_of_range(self, client, org):
        resp = await client.post(self.URL, json={"window_days": 60}, headers=_hr(org))
        assert resp.status_code == 422

    async def test_rate_limited(self, client, org):
        headers = {"Authorization": "Bearer test-cron-secret"}
        for _ in range(5):
            resp = await client.post(self.URL, json={"dry_run": True}, headers=headers)
            assert resp.status_code == 200
        resp = await client.post(self.URL, json={"dry_run": True}, headers=headers)
        assert resp.status_code == 429
