from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import NotFoundError
from app.deps.auth import CurrentUser, get_current_user, require_role
from app.crud.workflow import list_definitions, parse_request_type, upsert_definition
from app.models.approval import ApprovalWorkflow

router = APIRouter(prefix="/api/workflows", tags=["workflows"])


class WorkflowOut(BaseModel):
    request_type: str
    is_active: bool
    steps: List[Dict[str, Any]]
    default_hr_approver_id: Optional[str]
    updated_by: Optional[str]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class WorkflowIn(BaseModel):
    is_active: Optional[bool] = None
    steps: Optional[List[Dict[str, Any]]] = None
    default_hr_approver_id: Optional[str] = None


@router.get("", response_model=List[WorkflowOut])
def api_list_workflows(db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return list_definitions(db)


@router.get("/{request_type}", response_model=WorkflowOut)
def api_get_workflow(request_type: str, db: Session = Depends(get_db),
                     user: CurrentUser = Depends(get_current_user)):
    rt = parse_request_type(request_type)
    row = db.query(ApprovalWorkflow).filter(ApprovalWorkflow.request_type == rt.value).first()
    if not row:
        raise NotFoundError(f"No approval workflow configured for '{rt.value}'")
    return row


@router.put("/{request_type}", response_model=WorkflowOut)
def api_put_workflow(request_type: str, body: WorkflowIn, db: Session = Depends(get_db),
                     user: CurrentUser = Depends(require_role("admin"))):
    # an explicit null clears the default HR approver; an absent field leaves it alone
    clear_hr = "default_hr_approver_id" in body.model_fields_set and body.default_hr_approver_id is None
    return upsert_definition(
        db, request_type, user.user_id,
        is_active=body.is_active,
        steps=body.steps,
        default_hr_approver_id=body.default_hr_approver_id,
        clear_default_hr_approver=clear_hr,
    )
