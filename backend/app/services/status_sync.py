"""Write engine outcomes back onto the owning request row.

Each request type speaks its own status vocabulary, so the mapping lives in a
per-type table instead of in the sequencer. All writes go through the caller's
session and are committed together with the step changes.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.models.approval import RequestType
from app.models.requests import BusinessTrip, LeaveRequest, Loan

Values = Dict[str, Any]


@dataclass(frozen=True)
class StatusRules:
    model: type
    # None: the request keeps its own "requested" state while steps run
    submitted: Optional[Callable[[datetime], Values]]
    # statuses after which the request can no longer enter approval
    finished: Tuple[str, ...]
    auto_approved: Callable[[Optional[str], datetime], Values]
    approved: Callable[[Optional[str], datetime], Values]
    rejected: Callable[[Optional[str], Optional[str], datetime], Values]


RULES: Dict[RequestType, StatusRules] = {
    RequestType.TIME_OFF: StatusRules(
        model=LeaveRequest,
        submitted=lambda now: {"status": "pending", "submitted_at": now},
        finished=("approved", "rejected"),
        auto_approved=lambda actor, now: {"status": "approved"},
        approved=lambda actor, now: {"status": "approved", "reviewed_by": actor, "reviewed_at": now},
        rejected=lambda actor, reason, now: {
            "status": "rejected", "reviewed_by": actor, "reviewed_at": now, "rejection_reason": reason,
        },
    ),
    RequestType.BUSINESS_TRIP: StatusRules(
        model=BusinessTrip,
        submitted=lambda now: {"status": "submitted", "submitted_at": now},
        finished=("hr_approved", "rejected"),
        auto_approved=lambda actor, now: {"status": "hr_approved"},
        approved=lambda actor, now: {"status": "hr_approved"},
        rejected=lambda actor, reason, now: {"status": "rejected", "rejection_reason": reason},
    ),
    # Loans carry an explicit approver stamp, even when nobody had to approve.
    RequestType.LOAN: StatusRules(
        model=Loan,
        submitted=None,
        finished=("approved", "rejected", "active"),
        auto_approved=lambda actor, now: {"status": "approved", "approved_by": actor, "approved_at": now},
        approved=lambda actor, now: {"status": "approved", "approved_by": actor, "approved_at": now},
        rejected=lambda actor, reason, now: {
            "status": "rejected", "approved_by": actor, "approved_at": now, "notes": reason,
        },
    ),
}


def rules_for(request_type: str) -> StatusRules:
    return RULES[RequestType(request_type)]


def load_request(db: Session, request_type: str, request_id: int):
    rules = rules_for(request_type)
    row = db.get(rules.model, request_id)
    if row is None:
        raise NotFoundError(f"{request_type} request {request_id} not found")
    return row


def _write(db: Session, request_type: str, request_id: int, values: Values) -> None:
    model = rules_for(request_type).model
    res = db.execute(
        update(model).where(model.id == request_id).values(**values).execution_options(synchronize_session="fetch")
    )
    if res.rowcount == 0:
        raise NotFoundError(f"{request_type} request {request_id} not found")


def mark_submitted(db: Session, request_type: str, request_id: int, now: Optional[datetime] = None) -> None:
    rules = rules_for(request_type)
    if rules.submitted is None:
        return
    _write(db, request_type, request_id, rules.submitted(now or datetime.utcnow()))


def mark_auto_approved(db: Session, request_type: str, request_id: int, actor: Optional[str],
                       now: Optional[datetime] = None) -> None:
    _write(db, request_type, request_id, rules_for(request_type).auto_approved(actor, now or datetime.utcnow()))


def mark_approved(db: Session, request_type: str, request_id: int, actor: Optional[str],
                  now: Optional[datetime] = None) -> None:
    _write(db, request_type, request_id, rules_for(request_type).approved(actor, now or datetime.utcnow()))


def mark_rejected(db: Session, request_type: str, request_id: int, actor: Optional[str],
                  reason: Optional[str], now: Optional[datetime] = None) -> None:
    _write(db, request_type, request_id, rules_for(request_type).rejected(actor, reason, now or datetime.utcnow()))
