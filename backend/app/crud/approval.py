# app/crud/approval.py
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime
import logging

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, UnresolvableApprover
from app.crud.workflow import StepConfig, get_definition, parse_request_type
from app.models.approval import ApprovalActionToken, ApprovalStep, StepStatus, WAITING_STATUSES
from app.services import directory, status_sync
from app.services.action_tokens import action_links, burn_step_tokens, issue_tokens
from app.services.directory import DirectoryUnavailable
from app.services.notify import notify_after_commit
from app.services.resolver import resolve_approver
from app.metrics import (
    approval_initiations_total,
    approval_decisions_total,
    approval_conflicts_total,
    approval_steps_skipped_total,
)

logger = logging.getLogger(__name__)

VALID_OUTCOMES = {StepStatus.APPROVED.value, StepStatus.REJECTED.value}
ADMIN_APPROVE_COMMENT = "Approved by HR/Admin override"


def _parse_outcome(outcome: str) -> str:
    o = (outcome or "").strip().lower()
    if o not in VALID_OUTCOMES:
        raise ValueError(f"Invalid outcome '{outcome}'. Must be one of {sorted(VALID_OUTCOMES)}.")
    return o


def step_to_dict(s: ApprovalStep) -> Dict[str, Any]:
    return {
        "id": s.id,
        "request_id": s.request_id,
        "request_type": s.request_type,
        "step_number": s.step_number,
        "approver_type": s.approver_type,
        "approver_user_id": s.approver_user_id,
        "status": s.status,
        "acted_by": s.acted_by,
        "acted_at": s.acted_at,
        "comment": s.comment,
    }


def _requester_user_id(db: Session, request_type: str, request_id: int) -> Optional[str]:
    """Best-effort lookup for notifications; must run before any write in the transaction."""
    req = status_sync.load_request(db, request_type, request_id)
    try:
        return directory.get_user_id_for_employee(db, req.employee_id)
    except DirectoryUnavailable:
        logger.warning("requester of %s %s unknown; notifications will omit them", request_type, request_id)
        return None


def _step_pending_payload(step: ApprovalStep, tokens: Dict[str, str]) -> Dict[str, Any]:
    return {
        "request_type": step.request_type,
        "request_id": step.request_id,
        "step_number": step.step_number,
        "approver_type": step.approver_type,
        "approver_user_id": step.approver_user_id,
        **action_links(tokens),
    }


# -------------------------- initiation --------------------------

def _resolve_chain(db: Session, employee_id: int, steps: List[StepConfig],
                   default_hr: Optional[str]) -> List[Tuple[StepConfig, str, str]]:
    chain: List[Tuple[StepConfig, str, str]] = []
    for cfg in steps:
        try:
            approver_type, user_id = resolve_approver(db, employee_id, cfg, default_hr)
        except UnresolvableApprover as miss:
            logger.info("skipping step %s (%s): %s", cfg.step, cfg.approver, miss.reason)
            approval_steps_skipped_total.labels(approver=cfg.approver).inc()
            continue
        # adjacent steps resolving to the same user collapse into the earlier one
        if chain and chain[-1][2] == user_id:
            logger.info("skipping step %s (%s): same approver as step %s", cfg.step, cfg.approver, chain[-1][0].step)
            approval_steps_skipped_total.labels(approver=cfg.approver).inc()
            continue
        chain.append((cfg, approver_type, user_id))
    return chain


def _auto_approve(db: Session, request_type: str, request_id: int, employee_id: int,
                  actor_user_id: Optional[str], why: str) -> Dict[str, Any]:
    stamp = actor_user_id
    if stamp is None:
        try:
            stamp = directory.get_user_id_for_employee(db, employee_id)
        except DirectoryUnavailable:
            stamp = None
    try:
        status_sync.mark_auto_approved(db, request_type, request_id, stamp)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("%s %s auto-approved: %s", request_type, request_id, why)
    approval_initiations_total.labels(request_type=request_type, outcome="auto_approved").inc()
    notify_after_commit("approval.auto_approved", {
        "request_type": request_type, "request_id": request_id, "requester_user_id": stamp, "reason": why,
    })
    return {"auto_approved": True, "steps": []}


def initiate(db: Session, request_id: int, request_type: str, employee_id: Optional[int] = None,
             actor_user_id: Optional[str] = None) -> Dict[str, Any]:
    """Create the step chain for a new request, or auto-approve it.

    The chain is always resolved for the employee who owns the request row;
    ``employee_id`` is only cross-checked against it.
    """
    rt = parse_request_type(request_type).value
    req = status_sync.load_request(db, rt, request_id)
    if employee_id is not None and employee_id != req.employee_id:
        raise ValueError(f"{rt} request {request_id} does not belong to employee {employee_id}")
    employee_id = req.employee_id
    if req.status in status_sync.rules_for(rt).finished:
        raise ConflictError(f"{rt} request {request_id} is already {req.status}")
    definition = get_definition(db, rt)

    already = (
        db.query(func.count(ApprovalStep.id))
        .filter(ApprovalStep.request_type == rt, ApprovalStep.request_id == request_id)
        .scalar()
    )
    if already:
        raise ConflictError(f"{rt} request {request_id} is already in approval")

    if not definition.is_active:
        return _auto_approve(db, rt, request_id, employee_id, actor_user_id, "workflow inactive")
    if not definition.steps:
        return _auto_approve(db, rt, request_id, employee_id, actor_user_id, "workflow has no steps")

    chain = _resolve_chain(db, employee_id, definition.steps, definition.default_hr_approver_id)
    if not chain:
        return _auto_approve(db, rt, request_id, employee_id, actor_user_id, "no step could be resolved")

    try:
        rows: List[ApprovalStep] = []
        for i, (cfg, approver_type, user_id) in enumerate(chain):
            row = ApprovalStep(
                request_id=request_id,
                request_type=rt,
                step_number=cfg.step,
                approver_type=approver_type,
                approver_user_id=user_id,
                status=StepStatus.PENDING.value if i == 0 else StepStatus.QUEUED.value,
            )
            db.add(row)
            rows.append(row)
        db.flush()
        tokens = issue_tokens(db, rows[0])
        status_sync.mark_submitted(db, rt, request_id)
        db.commit()
    except IntegrityError:
        db.rollback()
        approval_conflicts_total.labels(flow="step").inc()
        raise ConflictError(f"{rt} request {request_id} is already in approval")
    except Exception:
        db.rollback()
        raise

    logger.info("%s %s entered approval with %d step(s); step %s pending for %s",
                rt, request_id, len(rows), rows[0].step_number, rows[0].approver_user_id)
    approval_initiations_total.labels(request_type=rt, outcome="pending").inc()
    notify_after_commit("approval.step_pending", _step_pending_payload(rows[0], tokens))
    return {"auto_approved": False, "steps": [step_to_dict(r) for r in rows]}


# -------------------------- decisions --------------------------

def get_pending_step(db: Session, request_id: int, request_type: str) -> Optional[ApprovalStep]:
    return (
        db.query(ApprovalStep)
        .filter(
            ApprovalStep.request_type == request_type,
            ApprovalStep.request_id == request_id,
            ApprovalStep.status == StepStatus.PENDING.value,
        )
        .order_by(ApprovalStep.step_number.asc())
        .first()
    )


def _claim(db: Session, step: ApprovalStep, outcome: str, actor: str,
           comment: Optional[str], now: datetime) -> None:
    """pending -> approved|rejected, only if the step is still pending."""
    res = db.execute(
        update(ApprovalStep)
        .where(ApprovalStep.id == step.id, ApprovalStep.status == StepStatus.PENDING.value)
        .values(status=outcome, acted_by=actor, acted_at=now, comment=comment)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ConflictError(
            f"Step {step.step_number} of {step.request_type} {step.request_id} was already acted on"
        )


def _cancel_queued(db: Session, request_type: str, request_id: int) -> int:
    res = db.execute(
        update(ApprovalStep)
        .where(
            ApprovalStep.request_type == request_type,
            ApprovalStep.request_id == request_id,
            ApprovalStep.status == StepStatus.QUEUED.value,
        )
        .values(status=StepStatus.CANCELLED.value)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount


def _promote_next(db: Session, step: ApprovalStep) -> Optional[ApprovalStep]:
    nxt = (
        db.query(ApprovalStep)
        .filter(
            ApprovalStep.request_type == step.request_type,
            ApprovalStep.request_id == step.request_id,
            ApprovalStep.status == StepStatus.QUEUED.value,
            ApprovalStep.step_number > step.step_number,
        )
        .order_by(ApprovalStep.step_number.asc())
        .first()
    )
    if nxt is None:
        return None
    res = db.execute(
        update(ApprovalStep)
        .where(ApprovalStep.id == nxt.id, ApprovalStep.status == StepStatus.QUEUED.value)
        .values(status=StepStatus.PENDING.value)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ConflictError(f"Step {nxt.step_number} of {nxt.request_type} {nxt.request_id} changed concurrently")
    return nxt


def _apply_decision(db: Session, step: ApprovalStep, actor: str, outcome: str,
                    comment: Optional[str]) -> Tuple[str, Dict[str, Any]]:
    """All writes for one step decision; the caller commits or rolls back."""
    now = datetime.utcnow()
    _claim(db, step, outcome, actor, comment, now)
    burn_step_tokens(db, step.id, now)

    base = {"request_type": step.request_type, "request_id": step.request_id,
            "step_number": step.step_number, "actor": actor, "comment": comment}
    if outcome == StepStatus.APPROVED.value:
        nxt = _promote_next(db, step)
        if nxt is not None:
            tokens = issue_tokens(db, nxt)
            return "approval.step_pending", _step_pending_payload(nxt, tokens)
        status_sync.mark_approved(db, step.request_type, step.request_id, actor, now)
        return "approval.approved", base

    cancelled = _cancel_queued(db, step.request_type, step.request_id)
    status_sync.mark_rejected(db, step.request_type, step.request_id, actor, comment, now)
    return "approval.rejected", {**base, "cancelled_steps": cancelled}


def decide(db: Session, request_id: int, request_type: str, actor_user_id: str, outcome: str,
           comment: Optional[str] = None, expected_step: Optional[int] = None,
           path: str = "step") -> List[ApprovalStep]:
    """Approve or reject the live step of a request.

    Raises NotFoundError when nothing is pending and ConflictError when the step
    was decided by someone else first (or is not the step the caller expected).
    """
    rt = parse_request_type(request_type).value
    o = _parse_outcome(outcome)

    step = get_pending_step(db, request_id, rt)
    if step is None:
        raise NotFoundError(f"No pending approval found for {rt} request {request_id}")
    if expected_step is not None and step.step_number != expected_step:
        approval_conflicts_total.labels(flow=path).inc()
        raise ConflictError(f"Step {expected_step} of {rt} {request_id} is no longer pending")
    requester = _requester_user_id(db, rt, request_id)

    try:
        event, payload = _apply_decision(db, step, actor_user_id, o, comment)
        db.commit()
    except ConflictError:
        db.rollback()
        approval_conflicts_total.labels(flow=path).inc()
        logger.warning("lost race on %s %s step %s (actor=%s)", rt, request_id, step.step_number, actor_user_id)
        raise
    except Exception:
        db.rollback()
        raise

    logger.info("%s %s step %s %s by %s", rt, request_id, step.step_number, o, actor_user_id)
    approval_decisions_total.labels(request_type=rt, outcome=o, path=path).inc()
    notify_after_commit(event, {**payload, "requester_user_id": requester})
    return get_request_steps(db, request_id, rt)


def admin_decide(db: Session, request_id: int, request_type: str, actor_user_id: str,
                 outcome: str, comment: Optional[str] = None) -> List[ApprovalStep]:
    """HR/Admin override: settle every outstanding step at once."""
    rt = parse_request_type(request_type).value
    o = _parse_outcome(outcome)
    if o == StepStatus.REJECTED.value and not (comment or "").strip():
        raise ValueError("A reason is required to reject a request")
    requester = _requester_user_id(db, rt, request_id)
    now = datetime.utcnow()

    try:
        if o == StepStatus.APPROVED.value:
            res = db.execute(
                update(ApprovalStep)
                .where(
                    ApprovalStep.request_type == rt,
                    ApprovalStep.request_id == request_id,
                    ApprovalStep.status.in_(WAITING_STATUSES),
                )
                .values(status=o, acted_by=actor_user_id, acted_at=now,
                        comment=comment or ADMIN_APPROVE_COMMENT)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 0:
                raise NotFoundError(f"No pending approval found for {rt} request {request_id}")
            status_sync.mark_approved(db, rt, request_id, actor_user_id, now)
            settled = res.rowcount
        else:
            res = db.execute(
                update(ApprovalStep)
                .where(
                    ApprovalStep.request_type == rt,
                    ApprovalStep.request_id == request_id,
                    ApprovalStep.status == StepStatus.PENDING.value,
                )
                .values(status=o, acted_by=actor_user_id, acted_at=now, comment=comment)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 0:
                raise NotFoundError(f"No pending approval found for {rt} request {request_id}")
            settled = res.rowcount + _cancel_queued(db, rt, request_id)
            status_sync.mark_rejected(db, rt, request_id, actor_user_id, comment, now)
        step_ids = select(ApprovalStep.id).where(
            ApprovalStep.request_type == rt, ApprovalStep.request_id == request_id
        )
        db.execute(
            update(ApprovalActionToken)
            .where(ApprovalActionToken.step_id.in_(step_ids), ApprovalActionToken.used_at.is_(None))
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except NotFoundError:
        db.rollback()
        approval_conflicts_total.labels(flow="admin").inc()
        raise
    except Exception:
        db.rollback()
        raise

    logger.info("%s %s %s by override (%s; %d step(s) settled)", rt, request_id, o, actor_user_id, settled)
    approval_decisions_total.labels(request_type=rt, outcome=o, path="admin").inc()
    notify_after_commit(f"approval.{o}", {
        "request_type": rt, "request_id": request_id, "actor": actor_user_id,
        "comment": comment, "override": True, "requester_user_id": requester,
    })
    return get_request_steps(db, request_id, rt)


# -------------------------- email links --------------------------

def redeem_action_token(db: Session, token: str, action: str,
                        reason: Optional[str] = None) -> List[ApprovalStep]:
    """Apply a one-click approve/reject link as the approver it was issued to."""
    action = (action or "").strip().lower()
    row = db.query(ApprovalActionToken).filter(ApprovalActionToken.token == token).first()
    if row is None or row.action != action:
        raise NotFoundError("This link is invalid or has already been used")
    if row.used_at is not None:
        raise ConflictError("This request has already been processed")
    if row.expires_at < datetime.utcnow():
        raise ConflictError("This approval link has expired; review the request in the app")
    if action == "reject" and not (reason or "").strip():
        raise ValueError("Please provide a reason for rejection")

    step = db.get(ApprovalStep, row.step_id)
    if step is None or step.status != StepStatus.PENDING.value:
        raise ConflictError(f"This request has already been {step.status if step else 'removed'}")
    rt, request_id = step.request_type, step.request_id
    requester = _requester_user_id(db, rt, request_id)
    outcome = StepStatus.APPROVED.value if action == "approve" else StepStatus.REJECTED.value

    try:
        used = db.execute(
            update(ApprovalActionToken)
            .where(ApprovalActionToken.id == row.id, ApprovalActionToken.used_at.is_(None))
            .values(used_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if used.rowcount != 1:
            raise ConflictError("This request has already been processed")
        event, payload = _apply_decision(db, step, row.user_id, outcome, reason)
        db.commit()
    except ConflictError:
        db.rollback()
        approval_conflicts_total.labels(flow="token").inc()
        raise
    except Exception:
        db.rollback()
        raise

    logger.info("%s %s step %s %s by %s via email link", rt, request_id, step.step_number, outcome, row.user_id)
    approval_decisions_total.labels(request_type=rt, outcome=outcome, path="email").inc()
    notify_after_commit(event, {**payload, "requester_user_id": requester})
    return get_request_steps(db, request_id, rt)


# -------------------------- queries --------------------------

def get_request_steps(db: Session, request_id: int, request_type: str) -> List[ApprovalStep]:
    rt = parse_request_type(request_type).value
    return (
        db.query(ApprovalStep)
        .filter(ApprovalStep.request_type == rt, ApprovalStep.request_id == request_id)
        .order_by(ApprovalStep.step_number.asc())
        .all()
    )


def list_pending_for_approver(db: Session, approver_user_id: str) -> List[ApprovalStep]:
    return (
        db.query(ApprovalStep)
        .filter(ApprovalStep.approver_user_id == approver_user_id,
                ApprovalStep.status == StepStatus.PENDING.value)
        .order_by(ApprovalStep.created_at.desc(), ApprovalStep.id.desc())
        .all()
    )


def list_outstanding_requests(db: Session, request_type: Optional[str] = None) -> List[ApprovalStep]:
    """The live step of every request still in approval (the override screen)."""
    q = db.query(ApprovalStep).filter(ApprovalStep.status == StepStatus.PENDING.value)
    if request_type:
        q = q.filter(ApprovalStep.request_type == parse_request_type(request_type).value)
    return q.order_by(ApprovalStep.created_at.asc(), ApprovalStep.id.asc()).all()
