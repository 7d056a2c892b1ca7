from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import ConflictError, NotFoundError
from app.deps.auth import CurrentUser, get_current_user, require_role
from app.crud import approval as engine
from app.crud.workflow import parse_request_type
from app.services import directory, status_sync
from app.services.directory import DirectoryUnavailable

router = APIRouter(prefix="/api/approvals", tags=["approvals"])

OVERRIDE_ROLES = ("hr", "admin")


class StepOut(BaseModel):
    id: int
    request_id: int
    request_type: str
    step_number: int
    approver_type: str
    approver_user_id: Optional[str]
    status: str
    acted_by: Optional[str]
    acted_at: Optional[datetime]
    comment: Optional[str]

    class Config:
        from_attributes = True


class InitiateIn(BaseModel):
    request_id: int = Field(gt=0)
    request_type: str
    employee_id: Optional[int] = Field(default=None, gt=0, description="Must match the request owner when given")


class InitiateOut(BaseModel):
    auto_approved: bool
    steps: List[StepOut]


class DecisionIn(BaseModel):
    outcome: Literal["approved", "rejected"]
    comment: Optional[str] = None
    step_number: Optional[int] = Field(default=None, description="Step the caller is looking at; stale views get 409")


class OverrideIn(BaseModel):
    outcome: Literal["approved", "rejected"]
    comment: Optional[str] = None


class EmailActionIn(BaseModel):
    token: str
    action: Literal["approve", "reject"]
    reason: Optional[str] = None


@router.post("/initiate", response_model=InitiateOut)
def api_initiate(body: InitiateIn, db: Session = Depends(get_db),
                 user: CurrentUser = Depends(get_current_user)):
    rt = parse_request_type(body.request_type).value
    req = status_sync.load_request(db, rt, body.request_id)
    if user.role not in OVERRIDE_ROLES:
        try:
            owner = directory.get_user_id_for_employee(db, req.employee_id)
        except DirectoryUnavailable:
            raise HTTPException(status_code=503, detail="Employee directory unavailable")
        if owner != user.user_id:
            raise HTTPException(status_code=403, detail="Only the requester or HR/Admin can submit this request")
    return engine.initiate(db, body.request_id, rt, body.employee_id, actor_user_id=user.user_id)


@router.get("/pending", response_model=List[StepOut])
def api_pending(db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return engine.list_pending_for_approver(db, user.user_id)


@router.get("/outstanding", response_model=List[StepOut])
def api_outstanding(request_type: Optional[str] = None, db: Session = Depends(get_db),
                    user=Depends(require_role(*OVERRIDE_ROLES))):
    return engine.list_outstanding_requests(db, request_type)


def _redeem(db: Session, token: str, action: str, reason: Optional[str]) -> dict:
    steps = engine.redeem_action_token(db, token, action, reason)
    return {"processed": True, "action": action, "steps": [engine.step_to_dict(s) for s in steps]}


# the token is the credential here, so no bearer auth
@router.get("/email-action", response_model=dict)
def api_email_action_link(token: str = Query(...), action: Literal["approve", "reject"] = Query(...),
                          reason: Optional[str] = None, db: Session = Depends(get_db)):
    return _redeem(db, token, action, reason)


@router.post("/email-action", response_model=dict)
def api_email_action(body: EmailActionIn, db: Session = Depends(get_db)):
    return _redeem(db, body.token, body.action, body.reason)


@router.get("/{request_type}/{request_id}/steps", response_model=List[StepOut])
def api_request_steps(request_type: str, request_id: int, db: Session = Depends(get_db),
                      user: CurrentUser = Depends(get_current_user)):
    return engine.get_request_steps(db, request_id, request_type)


@router.post("/{request_type}/{request_id}/decision", response_model=List[StepOut])
def api_decide(request_type: str, request_id: int, body: DecisionIn, db: Session = Depends(get_db),
               user: CurrentUser = Depends(get_current_user)):
    rt = parse_request_type(request_type).value
    step = engine.get_pending_step(db, request_id, rt)
    if step is None:
        raise NotFoundError(f"No pending approval found for {rt} request {request_id}")
    if step.approver_user_id != user.user_id and user.role not in OVERRIDE_ROLES:
        raise HTTPException(status_code=403, detail="You are not the approver for this step")
    if body.step_number is not None and body.step_number != step.step_number:
        raise ConflictError(f"Step {body.step_number} of {rt} {request_id} is not the pending step")
    # the decision may only land on the step the caller was checked against
    return engine.decide(db, request_id, rt, user.user_id, body.outcome, body.comment,
                         expected_step=step.step_number)


@router.post("/{request_type}/{request_id}/override", response_model=List[StepOut])
def api_override(request_type: str, request_id: int, body: OverrideIn = Body(...),
                 db: Session = Depends(get_db), user: CurrentUser = Depends(require_role(*OVERRIDE_ROLES))):
    return engine.admin_decide(db, request_id, request_type, user.user_id, body.outcome, body.comment)
