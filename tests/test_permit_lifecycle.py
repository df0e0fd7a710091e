"""
Permit lifecycle engine tests.

Covers:
  - Happy path New → Pending Review → Pending Approval → Active
  - Closure chain Active → Closure Pending Review → Closure Pending Approval → Closed
  - Closed is absorbing, checked before role and binding
  - Exhaustive (status, role, action) grid: illegal combinations change nothing
  - Field locking on submit and closure payloads
  - Rejection remarks, closure rejection, role binding
  - Available actions and audit trail
"""

import pytest

from permit_tracker.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PermitClosedError,
    RoleBindingError,
    ValidationError,
)
from permit_tracker.models import db
from permit_tracker.models.audit import AuditLog, audit_trail
from permit_tracker.models.permit import PERMIT_STATUSES, ROLES
from permit_tracker.services.permit_lifecycle import (
    PERMIT_TRANSITIONS,
    available_actions,
    execute_action,
)
from permit_tracker.services.record_store import permit_store

from conftest import APPROVER, REVIEWER


def _stored(pid: str) -> dict:
    db.session.expire_all()
    return permit_store.get_row(pid).to_dict()


def _force_status(pid: str, status: str) -> None:
    row = permit_store.get_row(pid)
    row.status = status
    db.session.commit()


def _close(act, pid: str) -> None:
    act(pid, "Requester", "initiate_closure", "Sita Rao", Closure_Requestor_Remarks="Work complete")
    act(pid, "Reviewer", "approve_closure", "Ravi Iyer", Closure_Reviewer_Remarks="Site clean")
    act(pid, "Approver", "approve", "Anil Mehta", Closure_Approver_Remarks="Closed out")


# ═════════════════════════════════════════════════════════════════════════
# HAPPY PATH
# ═════════════════════════════════════════════════════════════════════════


class TestIssuance:
    def test_create_starts_new_with_first_id(self, make_permit):
        permit = make_permit()
        assert permit["permit_id"] == "WP-1001"
        assert permit["status"] == "New"
        assert permit["valid_from"] == "2024-01-01T08:00:00"
        assert permit["valid_to"] == "2024-01-03T08:00:00"

    def test_ids_are_sequential(self, make_permit):
        ids = [make_permit()["permit_id"] for _ in range(3)]
        assert ids == ["WP-1001", "WP-1002", "WP-1003"]

    def test_submit_moves_to_pending_review(self, make_permit, act):
        pid = make_permit()["permit_id"]
        result = act(pid, "Requester", "submit", "Sita Rao")
        assert result == {
            "success": True,
            "permit_id": pid,
            "previous_status": "New",
            "new_status": "Pending Review",
            "action": "submit",
        }

    def test_review_then_approve(self, make_permit, act):
        pid = make_permit(submit=True)["permit_id"]

        act(pid, "Reviewer", "review", "Ravi Iyer", comment="Gas test OK")
        stored = _stored(pid)
        assert stored["status"] == "Pending Approval"
        assert stored["document"]["Reviewer_Sig"]["name"] == "Ravi Iyer"
        assert stored["document"]["Reviewer_Sig"]["timestamp"]
        assert stored["document"]["Reviewer_Remarks"] == "Gas test OK"

        act(pid, "Approver", "approve", "Anil Mehta", comment="Proceed")
        stored = _stored(pid)
        assert stored["status"] == "Active"
        assert stored["document"]["Approver_Sig"]["name"] == "Anil Mehta"
        assert stored["document"]["Approver_Remarks"] == "Proceed"

    def test_window_longer_than_seven_days_rejected(self, make_permit):
        with pytest.raises(ValidationError):
            make_permit(valid_from="2024-01-01T08:00", valid_to="2024-01-08T08:01")

    def test_inverted_window_rejected(self, make_permit):
        with pytest.raises(ValidationError):
            make_permit(valid_from="2024-01-02T08:00", valid_to="2024-01-01T08:00")

    def test_missing_role_email_rejected(self, make_permit):
        with pytest.raises(ValidationError):
            make_permit(role_emails={"requester": "a@x", "reviewer": "b@x"})


class TestClosure:
    def test_full_closure_chain(self, active_permit, act):
        pid = active_permit
        r1 = act(pid, "Requester", "initiate_closure", "Sita Rao",
                 Closure_Requestor_Remarks="Work complete")
        assert r1["new_status"] == "Closure Pending Review"
        doc = _stored(pid)["document"]
        assert doc["Closure_Receiver_Sig"]["name"] == "Sita Rao"
        assert doc["Site_Restored_Check"] == "Yes"
        assert doc["Closure_Requestor_Remarks"] == "Work complete"
        assert doc["Closure_Requestor_Date"]

        r2 = act(pid, "Reviewer", "approve_closure", "Ravi Iyer",
                 Closure_Reviewer_Remarks="Site clean")
        assert r2["new_status"] == "Closure Pending Approval"
        doc = _stored(pid)["document"]
        assert doc["Closure_Reviewer_Sig"]["name"] == "Ravi Iyer"
        assert doc["Closure_Reviewer_Remarks"] == "Site clean"

        r3 = act(pid, "Approver", "approve", "Anil Mehta",
                 comment="Good job", Closure_Approver_Remarks="Closed out")
        assert r3["new_status"] == "Closed"
        doc = _stored(pid)["document"]
        assert doc["Closure_Issuer_Sig"]["name"] == "Anil Mehta"
        assert doc["Closure_Issuer_Remarks"] == "Good job"
        assert doc["Closure_Approver_Remarks"] == "Closed out"
        assert doc["Closure_Approver_Date"]

    @pytest.mark.parametrize("role,field", [
        ("Reviewer", "Closure_Reviewer_Remarks"),
        ("Approver", "Closure_Approver_Remarks"),
    ])
    def test_reject_closure_reopens(self, active_permit, act, role, field):
        pid = active_permit
        act(pid, "Requester", "initiate_closure", "Sita Rao")
        if role == "Approver":
            act(pid, "Reviewer", "approve_closure", "Ravi Iyer")

        result = act(pid, role, "reject_closure", "Checker", **{field: "Scaffold still up"})
        assert result["new_status"] == "Active"
        assert _stored(pid)["document"][field] == "[REJECTED by Checker]: Scaffold still up"

    def test_reject_closure_reads_only_own_remarks(self, active_permit, act):
        pid = active_permit
        act(pid, "Requester", "initiate_closure", "Sita Rao")
        act(pid, "Reviewer", "reject_closure", "Ravi Iyer",
            comment="Barricades missing", Closure_Approver_Remarks="forged", Closure_Issuer_Sig="forged")
        doc = _stored(pid)["document"]
        assert doc["Closure_Reviewer_Remarks"] == "[REJECTED by Ravi Iyer]: Barricades missing"
        assert "Closure_Approver_Remarks" not in doc
        assert "Closure_Issuer_Sig" not in doc
        assert doc["Closure_Reviewer_Date"]


# ═════════════════════════════════════════════════════════════════════════
# CLOSED IS ABSORBING
# ═════════════════════════════════════════════════════════════════════════


class TestClosedIsAbsorbing:
    @pytest.mark.parametrize("role", ROLES)
    @pytest.mark.parametrize("action", list(PERMIT_TRANSITIONS) + [
        "propose_renewal", "approve_renewal", "reject_renewal",
    ])
    def test_every_action_fails_and_nothing_changes(self, active_permit, act, role, action):
        pid = active_permit
        _close(act, pid)
        before = _stored(pid)

        with pytest.raises(PermitClosedError):
            act(pid, role, action, "Anyone", comment="again",
                window={"from": "2024-01-02T08:00", "to": "2024-01-02T10:00"})

        assert _stored(pid) == before

    def test_closed_checked_before_unknown_role(self, active_permit, act):
        _close(act, active_permit)
        with pytest.raises(PermitClosedError):
            act(active_permit, "Janitor", "approve")

    def test_closed_checked_before_role_binding(self, active_permit, act):
        _close(act, active_permit)
        with pytest.raises(PermitClosedError):
            execute_action({
                "permit_id": active_permit, "role": "Approver", "actor_name": "X",
                "action": "approve", "payload": {}, "actor_email": "intruder@site.test",
            })

    def test_no_audit_row_for_rejected_action(self, active_permit, act):
        _close(act, active_permit)
        count = AuditLog.query.count()
        with pytest.raises(PermitClosedError):
            act(active_permit, "Requester", "submit")
        assert AuditLog.query.count() == count


# ═════════════════════════════════════════════════════════════════════════
# TRANSITION GRID
# ═════════════════════════════════════════════════════════════════════════

LEGAL = {
    ("New", "Requester", "submit"),
    ("Pending Review", "Requester", "submit"),
    ("Pending Review", "Reviewer", "review"),
    ("Pending Review", "Reviewer", "reject"),
    ("Pending Review", "Approver", "reject"),
    ("Pending Approval", "Reviewer", "reject"),
    ("Pending Approval", "Approver", "reject"),
    ("Pending Approval", "Approver", "approve"),
    ("Active", "Requester", "initiate_closure"),
    ("Closure Pending Review", "Reviewer", "approve_closure"),
    ("Closure Pending Approval", "Approver", "approve"),
    ("Closure Pending Review", "Reviewer", "reject_closure"),
    ("Closure Pending Review", "Approver", "reject_closure"),
    ("Closure Pending Approval", "Reviewer", "reject_closure"),
    ("Closure Pending Approval", "Approver", "reject_closure"),
}

ILLEGAL = [
    (status, role, action)
    for status in PERMIT_STATUSES
    for role in ROLES
    for action in PERMIT_TRANSITIONS
    if (status, role, action) not in LEGAL
]


class TestTransitionGrid:
    @pytest.mark.parametrize("status,role,action", sorted(LEGAL))
    def test_legal_transition_commits(self, make_permit, act, status, role, action):
        pid = make_permit()["permit_id"]
        _force_status(pid, status)
        result = act(pid, role, action, "Actor")
        assert result["previous_status"] == status
        assert _stored(pid)["status"] == result["new_status"]

    @pytest.mark.parametrize("status,role,action", ILLEGAL)
    def test_illegal_transition_changes_nothing(self, make_permit, act, status, role, action):
        pid = make_permit()["permit_id"]
        _force_status(pid, status)
        before = _stored(pid)

        expected = PermitClosedError if status == "Closed" else InvalidTransitionError
        with pytest.raises(expected):
            act(pid, role, action, "Actor", comment="x", Closure_Reviewer_Remarks="x")

        assert _stored(pid) == before

    def test_unknown_role(self, make_permit, act):
        pid = make_permit()["permit_id"]
        with pytest.raises(InvalidTransitionError):
            act(pid, "Contractor", "submit")

    def test_unknown_action(self, make_permit, act):
        pid = make_permit()["permit_id"]
        with pytest.raises(InvalidTransitionError):
            act(pid, "Requester", "teleport")

    def test_missing_permit(self, act):
        with pytest.raises(NotFoundError):
            act("WP-9999", "Requester", "submit")

    def test_envelope_requires_fields(self):
        with pytest.raises(ValidationError) as exc:
            execute_action({"permit_id": "WP-1001", "role": "Requester"})
        assert exc.value.details["missing"] == ["actor_name", "action"]


# ═════════════════════════════════════════════════════════════════════════
# FIELD LOCKING
# ═════════════════════════════════════════════════════════════════════════


class TestFieldLocking:
    def test_submit_overlays_requester_fields(self, make_permit, act):
        pid = make_permit()["permit_id"]
        act(pid, "Requester", "submit", "Sita Rao", ExactLocation="Pump house 3", WorkType="Excavation")
        stored = _stored(pid)
        assert stored["document"]["ExactLocation"] == "Pump house 3"
        assert stored["work_type"] == "Excavation"

    def test_submit_drops_reserved_fields(self, make_permit, act):
        pid = make_permit()["permit_id"]
        act(pid, "Requester", "submit", "Sita Rao",
            Reviewer_Sig="forged", Approver_Remarks="ok", Status="Active", ValidTo="2030-01-01")
        stored = _stored(pid)
        assert stored["status"] == "Pending Review"
        assert "Reviewer_Sig" not in stored["document"]
        assert "Approver_Remarks" not in stored["document"]
        assert "ValidTo" not in stored["document"]
        assert stored["valid_to"] == "2024-01-03T08:00:00"

    def test_submit_coerces_indexed_columns(self, make_permit, act):
        pid = make_permit()["permit_id"]
        act(pid, "Requester", "submit", "Sita Rao", Latitude=22.5, Longitude=73, WorkType=" Confined Space ")
        stored = _stored(pid)
        assert stored["latitude"] == "22.5"
        assert stored["longitude"] == "73"
        assert stored["work_type"] == "Confined Space"
        assert stored["document"]["Latitude"] == 22.5

    @pytest.mark.parametrize("field,value", [
        ("WorkType", "W" * 101),
        ("Latitude", "1" * 41),
        ("Longitude", {"deg": 73}),
    ])
    def test_submit_rejects_bad_indexed_values(self, make_permit, act, field, value):
        pid = make_permit()["permit_id"]
        with pytest.raises(ValidationError) as exc:
            act(pid, "Requester", "submit", "Sita Rao", **{field: value})
        assert field in exc.value.details
        stored = _stored(pid)
        assert stored["status"] == "New"
        assert stored["document"][field] != value

    def test_create_rejects_overlong_work_type(self, make_permit):
        with pytest.raises(ValidationError):
            make_permit(document={"WorkType": "W" * 101})
        assert db.session.query(AuditLog).count() == 0

    def test_create_rejects_non_object_document(self, make_permit):
        with pytest.raises(ValidationError):
            make_permit(document=["WorkType", "Hot Work"])

    def test_resubmit_after_review_cannot_clobber_signatures(self, make_permit, act):
        pid = make_permit(submit=True)["permit_id"]
        act(pid, "Reviewer", "review", "Ravi Iyer", comment="OK")
        before = _stored(pid)

        with pytest.raises(InvalidTransitionError):
            act(pid, "Requester", "submit", "Sita Rao", Reviewer_Sig="stale", ExactLocation="Elsewhere")

        after = _stored(pid)
        assert after == before
        assert after["document"]["Reviewer_Sig"]["name"] == "Ravi Iyer"

    def test_closure_payload_merges_only_allowed_field(self, active_permit, act):
        pid = active_permit
        approver_sig = _stored(pid)["document"]["Approver_Sig"]

        act(pid, "Requester", "initiate_closure", "Sita Rao",
            Closure_Requestor_Remarks="Done", Approver_Sig="mine now", ExactLocation="Moved")

        doc = _stored(pid)["document"]
        assert doc["Closure_Requestor_Remarks"] == "Done"
        assert doc["Approver_Sig"] == approver_sig
        assert doc["ExactLocation"] == "Tank farm T-12"

    def test_reviewer_closure_cannot_write_approver_remarks(self, active_permit, act):
        pid = active_permit
        act(pid, "Requester", "initiate_closure", "Sita Rao")
        act(pid, "Reviewer", "approve_closure", "Ravi Iyer",
            Closure_Reviewer_Remarks="fine", Closure_Approver_Remarks="pre-filled")
        doc = _stored(pid)["document"]
        assert doc["Closure_Reviewer_Remarks"] == "fine"
        assert "Closure_Approver_Remarks" not in doc


# ═════════════════════════════════════════════════════════════════════════
# REJECTION & ROLE BINDING
# ═════════════════════════════════════════════════════════════════════════


class TestRejection:
    def test_reviewer_reject_appends_remark(self, make_permit, act):
        pid = make_permit(submit=True)["permit_id"]
        act(pid, "Reviewer", "reject", "Ravi Iyer", comment="missing isolation")
        stored = _stored(pid)
        assert stored["status"] == "Rejected"
        assert stored["document"]["Reviewer_Remarks"] == "[Rejected by Ravi Iyer: missing isolation]"
        assert stored["document"]["Rejection"]["by"] == "Ravi Iyer"
        assert stored["document"]["Rejection"]["role"] == "Reviewer"
        assert stored["document"]["Rejection"]["reason"] == "missing isolation"

    def test_approver_reject_keeps_reviewer_remarks(self, make_permit, act):
        pid = make_permit(submit=True)["permit_id"]
        act(pid, "Reviewer", "review", "Ravi Iyer", comment="looks fine")
        act(pid, "Approver", "reject", "Anil Mehta", comment="no fire watch")
        doc = _stored(pid)["document"]
        assert doc["Reviewer_Remarks"] == "looks fine"
        assert doc["Approver_Remarks"] == "[Rejected by Anil Mehta: no fire watch]"

    def test_rejected_is_final_for_submit(self, make_permit, act):
        pid = make_permit(submit=True)["permit_id"]
        act(pid, "Reviewer", "reject", "Ravi Iyer", comment="no")
        with pytest.raises(InvalidTransitionError):
            act(pid, "Requester", "submit", "Sita Rao")


class TestRoleBinding:
    def _envelope(self, pid, role, action, email):
        return {"permit_id": pid, "role": role, "actor_name": "X", "action": action,
                "payload": {}, "actor_email": email}

    def test_bound_email_accepted(self, make_permit):
        pid = make_permit(submit=True)["permit_id"]
        result = execute_action(self._envelope(pid, "Reviewer", "review", REVIEWER.upper()))
        assert result["new_status"] == "Pending Approval"

    def test_other_email_refused(self, make_permit):
        pid = make_permit(submit=True)["permit_id"]
        before = _stored(pid)
        with pytest.raises(RoleBindingError):
            execute_action(self._envelope(pid, "Reviewer", "review", APPROVER))
        assert _stored(pid) == before


# ═════════════════════════════════════════════════════════════════════════
# AVAILABLE ACTIONS & AUDIT
# ═════════════════════════════════════════════════════════════════════════


class TestAvailableActions:
    def test_active_requester(self, active_permit):
        record = permit_store.get(active_permit)
        assert available_actions(record, "Requester") == ["initiate_closure", "propose_renewal"]

    def test_pending_review_reviewer(self, make_permit):
        record = permit_store.get(make_permit(submit=True)["permit_id"])
        assert available_actions(record, "Reviewer") == ["review", "reject"]

    def test_closed_has_none(self, active_permit, act):
        _close(act, active_permit)
        record = permit_store.get(active_permit)
        for role in ROLES:
            assert available_actions(record, role) == []


class TestAudit:
    def test_trail_follows_lifecycle(self, active_permit):
        actions = [log.action for log in audit_trail("permit", active_permit)]
        assert actions == ["permit.create", "permit.submit", "permit.review", "permit.approve"]

    def test_audit_diff_records_status_change(self, active_permit):
        last = audit_trail("permit", active_permit)[-1]
        assert last.actor == "Anil Mehta"
        assert last.actor_role == "Approver"
        assert last.diff["status"] == {"old": "Pending Approval", "new": "Active"}
