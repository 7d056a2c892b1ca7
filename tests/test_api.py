from datetime import date, time

import pytest

from app.core.database import SessionLocal
from app.core.security import create_access_token
from app.crud import approval as engine
from app.models import AttendanceRecord, LeaveRequest


def auth(user, role):
    return {"Authorization": f"Bearer {create_access_token(user, role)}"}


ALICE = auth("u-alice", "employee")
CAROL = auth("u-carol", "employee")
BOB = auth("u-bob", "manager")
HANA = auth("u-hana", "hr")
ADAM = auth("u-adam", "admin")


@pytest.fixture
def time_off(client, people, workflows, make_request):
    rid = make_request("time_off", people["alice"])
    r = client.post("/api/approvals/initiate", headers=ALICE,
                    json={"request_id": rid, "request_type": "time_off", "employee_id": people["alice"]})
    assert r.status_code == 200, r.text
    return rid


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert "approval_steps" in r.json()["tables"]


def test_metrics_exposed(client):
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "approval_decisions_total" in r.text


def test_requires_bearer_token(client):
    assert client.get("/api/approvals/pending").status_code == 401
    assert client.get("/api/approvals/pending", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_decision_flow(client, time_off):
    steps = client.get(f"/api/approvals/time_off/{time_off}/steps", headers=ALICE).json()
    assert [(s["step_number"], s["status"]) for s in steps] == [(1, "pending"), (2, "queued")]

    assert [s["request_id"] for s in client.get("/api/approvals/pending", headers=BOB).json()] == [time_off]

    r = client.post(f"/api/approvals/time_off/{time_off}/decision", headers=CAROL, json={"outcome": "approved"})
    assert r.status_code == 403

    r = client.post(f"/api/approvals/time_off/{time_off}/decision", headers=BOB,
                    json={"outcome": "approved", "step_number": 1})
    assert r.status_code == 200
    assert [s["status"] for s in r.json()] == ["approved", "pending"]

    # a stale screen still showing step 1
    r = client.post(f"/api/approvals/time_off/{time_off}/decision", headers=HANA,
                    json={"outcome": "approved", "step_number": 1})
    assert r.status_code == 409

    r = client.post(f"/api/approvals/time_off/{time_off}/decision", headers=HANA,
                    json={"outcome": "approved", "step_number": 2})
    assert r.status_code == 200

    r = client.post(f"/api/approvals/time_off/{time_off}/decision", headers=HANA, json={"outcome": "approved"})
    assert r.status_code == 404


def test_bad_request_type_and_outcome(client, time_off):
    r = client.post(f"/api/approvals/sabbatical/{time_off}/decision", headers=BOB, json={"outcome": "approved"})
    assert r.status_code == 400
    r = client.post(f"/api/approvals/time_off/{time_off}/decision", headers=BOB, json={"outcome": "maybe"})
    assert r.status_code == 422


def test_initiate_without_workflow(client, people, make_request):
    rid = make_request("loan", people["alice"])
    r = client.post("/api/approvals/initiate", headers=ALICE,
                    json={"request_id": rid, "request_type": "loan", "employee_id": people["alice"]})
    assert r.status_code == 422


def test_initiate_twice(client, time_off, people):
    r = client.post("/api/approvals/initiate", headers=ALICE,
                    json={"request_id": time_off, "request_type": "time_off", "employee_id": people["alice"]})
    assert r.status_code == 409


def test_override(client, time_off):
    url = f"/api/approvals/time_off/{time_off}/override"
    assert client.post(url, headers=BOB, json={"outcome": "approved"}).status_code == 403
    assert client.post(url, headers=HANA, json={"outcome": "rejected"}).status_code == 400

    outstanding = client.get("/api/approvals/outstanding", headers=HANA).json()
    assert [s["request_id"] for s in outstanding] == [time_off]
    assert client.get("/api/approvals/outstanding", headers=ALICE).status_code == 403

    r = client.post(url, headers=HANA, json={"outcome": "rejected", "comment": "blackout period"})
    assert r.status_code == 200
    assert [s["status"] for s in r.json()] == ["rejected", "cancelled"]
    assert client.post(url, headers=HANA, json={"outcome": "approved"}).status_code == 404


def test_email_action_links(client, db, time_off):
    from app.models import ApprovalActionToken
    tok = db.query(ApprovalActionToken).filter(ApprovalActionToken.action == "approve").one().token

    r = client.get("/api/approvals/email-action", params={"token": tok, "action": "approve"})
    assert r.status_code == 200
    assert r.json()["processed"] is True
    assert client.get("/api/approvals/email-action", params={"token": tok, "action": "approve"}).status_code == 409

    hana_reject = (
        db.query(ApprovalActionToken)
        .filter(ApprovalActionToken.user_id == "u-hana", ApprovalActionToken.action == "reject")
        .one().token
    )
    r = client.post("/api/approvals/email-action", json={"token": hana_reject, "action": "reject"})
    assert r.status_code == 400
    r = client.post("/api/approvals/email-action",
                    json={"token": hana_reject, "action": "reject", "reason": "coverage gap"})
    assert r.status_code == 200
    assert [s["status"] for s in r.json()["steps"]] == ["approved", "rejected"]


def test_workflow_admin(client, workflows):
    assert [w["request_type"] for w in client.get("/api/workflows", headers=ALICE).json()] == [
        "business_trip", "loan", "time_off"]

    body = {"steps": [{"step": 1, "approver": "specific_user", "specific_user_id": "u-cfo"}]}
    assert client.put("/api/workflows/loan", headers=HANA, json=body).status_code == 403

    r = client.put("/api/workflows/loan", headers=ADAM, json={"steps": [{"step": 1, "approver": "specific_user"}]})
    assert r.status_code == 422

    r = client.put("/api/workflows/loan", headers=ADAM, json={**body, "default_hr_approver_id": "u-hana"})
    assert r.status_code == 200
    assert r.json()["updated_by"] == "u-adam"

    r = client.put("/api/workflows/loan", headers=ADAM, json={"default_hr_approver_id": None})
    assert r.json()["default_hr_approver_id"] is None
    assert r.json()["steps"] == body["steps"]

    assert client.get("/api/workflows/loan", headers=ALICE).json()["steps"] == body["steps"]


def test_correction_flow(client, db, people):
    rec = AttendanceRecord(employee_id=people["alice"], date=date(2026, 3, 2), check_in=time(11, 0))
    db.add(rec); db.commit(); db.refresh(rec)

    r = client.post("/api/corrections", headers=ALICE, json={
        "attendance_record_id": rec.id, "corrected_check_in": "09:00:00",
        "corrected_check_out": "17:30:00", "reason": "forgot to badge in",
    })
    assert r.status_code == 200, r.text
    cid = r.json()["id"]

    assert [c["id"] for c in client.get("/api/corrections", headers=ALICE).json()] == [cid]
    assert client.get("/api/corrections", headers=CAROL).json() == []

    not_her_manager = auth("u-carol", "manager")
    url = f"/api/corrections/{cid}/manager-review"
    assert client.post(url, headers=not_her_manager, json={"approved": True}).status_code == 403
    assert client.post(f"/api/corrections/{cid}/hr-review", headers=HANA, json={"approved": True}).status_code == 409

    assert client.post(url, headers=BOB, json={"approved": True}).json()["status"] == "pending_hr"
    r = client.post(f"/api/corrections/{cid}/hr-review", headers=HANA, json={"approved": True})
    assert r.json()["status"] == "approved"

    db.expire_all()
    assert db.get(AttendanceRecord, rec.id).work_hours == 8.5


def test_notify_webhook_config(client):
    r = client.post("/config/notify-webhook", headers=HANA, json={"webhook_url": "https://x.test/h"})
    assert r.status_code == 403
    r = client.post("/config/notify-webhook", headers=ADAM, json={"webhook_url": "ftp://nope"})
    assert r.status_code == 400
    r = client.post("/config/notify-webhook", headers=ADAM, json={"webhook_url": "https://hooks.example.test/hr"})
    assert r.json() == {"saved": True}
    assert client.get("/config/notify-webhook", headers=ADAM).json()["configured"] is True
    client.post("/config/notify-webhook", headers=ADAM, json={"webhook_url": ""})


def test_repeated_click_cannot_settle_the_next_step(client, db, time_off, monkeypatch):
    real = engine.get_pending_step
    state = {"raced": False}

    def first_click_lands_meanwhile(db, request_id, request_type):
        step = real(db, request_id, request_type)
        if not state["raced"]:
            state["raced"] = True
            other = SessionLocal()
            try:
                engine.decide(other, request_id, request_type, "u-bob", "approved")
            finally:
                other.close()
        return step

    monkeypatch.setattr(engine, "get_pending_step", first_click_lands_meanwhile)
    r = client.post(f"/api/approvals/time_off/{time_off}/decision", headers=BOB, json={"outcome": "approved"})
    assert r.status_code == 409

    monkeypatch.setattr(engine, "get_pending_step", real)
    steps = client.get(f"/api/approvals/time_off/{time_off}/steps", headers=ALICE).json()
    assert [(s["status"], s["acted_by"]) for s in steps] == [("approved", "u-bob"), ("pending", None)]
    db.expire_all()
    assert db.get(LeaveRequest, time_off).status == "pending"


def test_decision_for_a_step_other_than_the_pending_one(client, time_off):
    r = client.post(f"/api/approvals/time_off/{time_off}/decision", headers=BOB,
                    json={"outcome": "approved", "step_number": 2})
    assert r.status_code == 409
    steps = client.get(f"/api/approvals/time_off/{time_off}/steps", headers=ALICE).json()
    assert [s["status"] for s in steps] == ["pending", "queued"]


def test_only_the_requester_or_hr_submits(client, db, people, set_workflow, make_request):
    set_workflow("time_off", [{"step": 1, "approver": "manager"}])
    rid = make_request("time_off", people["alice"])

    r = client.post("/api/approvals/initiate", headers=CAROL, json={"request_id": rid, "request_type": "time_off"})
    assert r.status_code == 403

    # naming an employee without a manager must not buy an auto-approval
    r = client.post("/api/approvals/initiate", headers=ALICE,
                    json={"request_id": rid, "request_type": "time_off", "employee_id": people["carol"]})
    assert r.status_code == 400
    db.expire_all()
    assert db.get(LeaveRequest, rid).status == "draft"

    r = client.post("/api/approvals/initiate", headers=HANA, json={"request_id": rid, "request_type": "time_off"})
    assert r.status_code == 200
    assert r.json()["auto_approved"] is False
    assert [s["approver_user_id"] for s in r.json()["steps"]] == ["u-bob"]
