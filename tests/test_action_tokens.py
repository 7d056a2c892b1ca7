from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from app.core.errors import ConflictError, NotFoundError
from app.crud import approval as engine
from app.models import ApprovalActionToken, LeaveRequest


def _token_from(url):
    return parse_qs(urlparse(url).query)["token"][0]


@pytest.fixture
def started(db, people, workflows, make_request, sent):
    rid = make_request("time_off", people["alice"])
    engine.initiate(db, rid, "time_off", people["alice"])
    event, payload = sent[-1]
    assert event == "approval.step_pending"
    return rid, _token_from(payload["approve_url"]), _token_from(payload["reject_url"])


def test_links_are_issued_to_the_step_approver(db, started):
    rid, approve, reject = started
    rows = db.query(ApprovalActionToken).all()
    assert {r.token for r in rows} == {approve, reject}
    assert {r.user_id for r in rows} == {"u-bob"}
    assert all(r.expires_at > datetime.utcnow() for r in rows)


def test_approve_link_advances_the_chain(db, started, sent):
    rid, approve, _ = started
    steps = engine.redeem_action_token(db, approve, "approve")
    assert [(s.status, s.acted_by) for s in steps] == [("approved", "u-bob"), ("pending", None)]
    # the next approver gets fresh links
    assert sent[-1][0] == "approval.step_pending"
    assert sent[-1][1]["approver_user_id"] == "u-hana"


def test_links_are_single_use(db, started):
    rid, approve, reject = started
    engine.redeem_action_token(db, approve, "approve")
    with pytest.raises(ConflictError):
        engine.redeem_action_token(db, approve, "approve")
    # the sibling link died with the decision
    with pytest.raises(ConflictError):
        engine.redeem_action_token(db, reject, "reject", "changed my mind")


def test_reject_link_requires_reason(db, started):
    rid, _, reject = started
    with pytest.raises(ValueError):
        engine.redeem_action_token(db, reject, "reject")
    steps = engine.redeem_action_token(db, reject, "reject", "overlaps release week")
    assert [s.status for s in steps] == ["rejected", "cancelled"]
    db.expire_all()
    assert db.get(LeaveRequest, rid).rejection_reason == "overlaps release week"


def test_expired_link(db, started):
    rid, approve, _ = started
    row = db.query(ApprovalActionToken).filter(ApprovalActionToken.token == approve).one()
    row.expires_at = datetime.utcnow() - timedelta(minutes=1)
    db.commit()
    with pytest.raises(ConflictError):
        engine.redeem_action_token(db, approve, "approve")


def test_unknown_or_mismatched_link(db, started):
    rid, approve, _ = started
    with pytest.raises(NotFoundError):
        engine.redeem_action_token(db, "not-a-token", "approve")
    with pytest.raises(NotFoundError):
        engine.redeem_action_token(db, approve, "reject", "nope")


def test_in_app_decision_burns_outstanding_links(db, started):
    rid, approve, _ = started
    engine.decide(db, rid, "time_off", "u-bob", "approved")
    with pytest.raises(ConflictError):
        engine.redeem_action_token(db, approve, "approve")
