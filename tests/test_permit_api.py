"""
HTTP tests for /api/v1/permits and the app-level handlers.

Covers:
  - Create (201) and validation failures (422 / 400)
  - Action envelope end to end, error kinds mapped to status codes
  - Dashboard visibility per role binding
  - Stats, map, renewals, available actions, audit
  - Health endpoints, 404 / 415 envelopes
"""

import pytest

from conftest import APPROVER, REQUESTER, REVIEWER, permit_payload


def _create(client, **overrides):
    res = client.post("/api/v1/permits", json=permit_payload(**overrides))
    assert res.status_code == 201, res.get_json()
    return res.get_json()["permit_id"]


def _action(client, pid, role, action, actor_name="Actor", **payload):
    return client.post(f"/api/v1/permits/{pid}/actions", json={
        "role": role, "action": action, "actor_name": actor_name, "payload": payload,
    })


def _activate(client, pid):
    for role, action in [("Requester", "submit"), ("Reviewer", "review"), ("Approver", "approve")]:
        assert _action(client, pid, role, action).status_code == 200


# ═════════════════════════════════════════════════════════════════════════
# CREATE & READ
# ═════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_create(self, client):
        res = client.post("/api/v1/permits", json=permit_payload())
        assert res.status_code == 201
        body = res.get_json()
        assert body["permit_id"] == "WP-1001"
        assert body["status"] == "New"
        assert body["role_emails"]["reviewer"] == REVIEWER
        assert body["work_type"] == "Hot Work"

    def test_create_and_submit(self, client):
        res = client.post("/api/v1/permits", json=permit_payload(submit=True))
        assert res.get_json()["status"] == "Pending Review"

    def test_window_too_long(self, client):
        res = client.post("/api/v1/permits", json=permit_payload(valid_to="2024-01-09T08:00"))
        assert res.status_code == 422
        body = res.get_json()
        assert body["success"] is False
        assert body["error"] == "ValidationError"

    def test_bad_timestamp(self, client):
        res = client.post("/api/v1/permits", json=permit_payload(valid_from="next monday"))
        assert res.status_code == 422

    def test_empty_body(self, client):
        res = client.post("/api/v1/permits", json={})
        assert res.status_code == 400
        assert res.get_json()["error"] == "ERR_VALIDATION_REQUIRED"

    def test_non_json_body(self, client):
        res = client.post("/api/v1/permits", data="valid_from=x", content_type="text/plain")
        assert res.status_code == 415
        assert res.get_json()["error"] == "UnsupportedMediaType"


class TestRead:
    def test_get_permit(self, client):
        pid = _create(client)
        res = client.get(f"/api/v1/permits/{pid}")
        assert res.status_code == 200
        assert res.get_json()["document"]["ExactLocation"] == "Tank farm T-12"

    def test_get_missing(self, client):
        res = client.get("/api/v1/permits/WP-9999")
        assert res.status_code == 404
        assert res.get_json() == {
            "success": False,
            "error": "NotFoundError",
            "message": "Permit id=WP-9999 not found",
        }

    def test_unknown_route(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["success"] is False

    def test_available_actions(self, client):
        pid = _create(client, submit=True)
        res = client.get(f"/api/v1/permits/{pid}/actions?role=Reviewer")
        assert res.get_json()["actions"] == ["review", "reject"]

    def test_available_actions_needs_role(self, client):
        pid = _create(client)
        assert client.get(f"/api/v1/permits/{pid}/actions").status_code == 400

    def test_audit_trail(self, client):
        pid = _create(client, submit=True)
        res = client.get(f"/api/v1/permits/{pid}/audit")
        assert [row["action"] for row in res.get_json()] == ["permit.create", "permit.submit"]

    def test_audit_missing_permit(self, client):
        assert client.get("/api/v1/permits/WP-9999/audit").status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# ACTIONS
# ═════════════════════════════════════════════════════════════════════════


class TestActions:
    def test_full_lifecycle(self, client):
        pid = _create(client)
        _activate(client, pid)
        steps = [
            ("Requester", "initiate_closure", "Closure Pending Review"),
            ("Reviewer", "approve_closure", "Closure Pending Approval"),
            ("Approver", "approve", "Closed"),
        ]
        for role, action, expected in steps:
            res = _action(client, pid, role, action)
            assert res.status_code == 200
            assert res.get_json()["new_status"] == expected

    def test_closed_is_409(self, client):
        pid = _create(client)
        _activate(client, pid)
        for role, action in [("Requester", "initiate_closure"), ("Reviewer", "approve_closure"),
                             ("Approver", "approve")]:
            _action(client, pid, role, action)

        res = _action(client, pid, "Requester", "submit")
        assert res.status_code == 409
        assert res.get_json()["error"] == "PermitClosedError"

    def test_invalid_transition_is_409(self, client):
        pid = _create(client)
        res = _action(client, pid, "Approver", "approve")
        assert res.status_code == 409
        body = res.get_json()
        assert body["error"] == "InvalidTransitionError"
        assert body["success"] is False

    def test_missing_envelope_fields_is_422(self, client):
        pid = _create(client)
        res = client.post(f"/api/v1/permits/{pid}/actions", json={"role": "Requester"})
        assert res.status_code == 422
        assert res.get_json()["details"]["missing"] == ["actor_name", "action"]

    def test_role_binding_is_403(self, client):
        pid = _create(client, submit=True)
        res = client.post(f"/api/v1/permits/{pid}/actions", json={
            "role": "Reviewer", "action": "review", "actor_name": "Mallory",
            "actor_email": "mallory@site.test",
        })
        assert res.status_code == 403
        assert res.get_json()["error"] == "RoleBindingError"

    @pytest.mark.parametrize("window,error,status", [
        ({"from": "2024-01-01T07:00", "to": "2024-01-01T09:00"}, "OutOfBoundsError", 422),
        ({"from": "2024-01-01T09:00", "to": "2024-01-01T18:00"}, "DurationExceededError", 422),
        ({"from": "2024-01-01T10:00", "to": "2024-01-01T09:00"}, "InvalidRenewalWindowError", 422),
        ("2024-01-01T09:00", "InvalidRenewalWindowError", 422),
        (["2024-01-01T09:00", "2024-01-01T16:00"], "InvalidRenewalWindowError", 422),
    ])
    def test_renewal_errors(self, client, window, error, status):
        pid = _create(client)
        _activate(client, pid)
        res = _action(client, pid, "Requester", "propose_renewal", window=window)
        assert res.status_code == status
        assert res.get_json()["error"] == error

    def test_malformed_readings_is_422(self, client):
        pid = _create(client)
        _activate(client, pid)
        res = _action(client, pid, "Requester", "propose_renewal",
                      window={"from": "2024-01-01T09:00", "to": "2024-01-01T16:00"}, readings=["1"])
        assert res.status_code == 422
        assert res.get_json()["error"] == "ValidationError"
        assert client.get(f"/api/v1/permits/{pid}/renewals").get_json()["total"] == 0

    def test_pending_renewal_is_409(self, client):
        pid = _create(client)
        _activate(client, pid)
        window = {"from": "2024-01-01T09:00", "to": "2024-01-01T16:00"}
        assert _action(client, pid, "Requester", "propose_renewal", window=window).status_code == 200
        res = _action(client, pid, "Requester", "propose_renewal", window=window)
        assert res.status_code == 409
        assert res.get_json()["error"] == "PendingRenewalExistsError"

    def test_renewal_log(self, client):
        pid = _create(client)
        _activate(client, pid)
        _action(client, pid, "Requester", "propose_renewal", "Sita Rao",
                window={"from": "2024-01-01T09:00", "to": "2024-01-01T16:00"}, hc="0")
        res = client.get(f"/api/v1/permits/{pid}/renewals")
        body = res.get_json()
        assert body["total"] == 1
        assert body["renewals"][0]["readings"]["hc"] == "0"
        assert body["renewals"][0]["status"] == "pending_review"


# ═════════════════════════════════════════════════════════════════════════
# DASHBOARD
# ═════════════════════════════════════════════════════════════════════════


class TestDashboard:
    def test_requester_sees_own_permits_newest_first(self, client):
        _create(client)
        _create(client)
        _create(client, role_emails={"requester": "other@site.test",
                                     "reviewer": REVIEWER, "approver": APPROVER})
        res = client.get(f"/api/v1/permits?role=Requester&email={REQUESTER}")
        body = res.get_json()
        assert body["total"] == 2
        assert [p["permit_id"] for p in body["items"]] == ["WP-1002", "WP-1001"]

    def test_email_match_is_case_insensitive(self, client):
        _create(client)
        res = client.get(f"/api/v1/permits?role=Requester&email={REQUESTER.upper()}")
        assert res.get_json()["total"] == 1

    def test_reviewer_sees_only_review_states(self, client):
        draft = _create(client)
        submitted = _create(client, submit=True)
        res = client.get(f"/api/v1/permits?role=Reviewer&email={REVIEWER}")
        ids = [p["permit_id"] for p in res.get_json()["items"]]
        assert submitted in ids
        assert draft not in ids

    def test_approver_sees_all_bound(self, client):
        _create(client)
        _create(client, submit=True)
        res = client.get(f"/api/v1/permits?role=Approver&email={APPROVER}")
        assert res.get_json()["total"] == 2

    def test_unbound_email_sees_nothing(self, client):
        _create(client, submit=True)
        res = client.get("/api/v1/permits?role=Reviewer&email=someone@site.test")
        assert res.get_json()["total"] == 0

    def test_requires_role_and_email(self, client):
        assert client.get("/api/v1/permits?role=Requester").status_code == 400

    def test_unknown_role(self, client):
        res = client.get("/api/v1/permits?role=Janitor&email=x@site.test")
        assert res.status_code == 422


class TestStatsAndMap:
    def test_stats(self, client):
        _create(client)
        _create(client, submit=True)
        no_type = permit_payload()
        no_type["document"] = {k: v for k, v in no_type["document"].items() if k != "WorkType"}
        client.post("/api/v1/permits", json=no_type)

        body = client.get("/api/v1/permits/stats").get_json()
        assert body["total"] == 3
        assert body["status_counts"] == {"New": 2, "Pending Review": 1}
        assert body["type_counts"] == {"Hot Work": 2, "Unspecified": 1}

    def test_map_lists_active_with_coordinates(self, client):
        active = _create(client)
        _activate(client, active)
        _create(client, submit=True)
        no_coords = permit_payload()
        no_coords["document"] = {**no_coords["document"], "Latitude": "", "Longitude": ""}
        other = client.post("/api/v1/permits", json=no_coords).get_json()["permit_id"]
        _activate(client, other)

        points = client.get("/api/v1/permits/map").get_json()
        assert [p["permit_id"] for p in points] == [active]
        assert points[0]["lat"] == pytest.approx(22.3072)
        assert points[0]["location"] == "Tank farm T-12"


# ═════════════════════════════════════════════════════════════════════════
# HEALTH
# ═════════════════════════════════════════════════════════════════════════


class TestHealth:
    def test_health(self, client):
        assert client.get("/api/v1/health").get_json()["status"] == "ok"

    def test_ready(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        body = res.get_json()
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["app"]["site_timezone"] == "Asia/Kolkata"
