from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, Field
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import NotFoundError
from app.deps.auth import CurrentUser, get_current_user, require_role
from app.crud import correction as corrections
from app.models.correction import AttendanceCorrection
from app.services import directory

router = APIRouter(prefix="/api/corrections", tags=["corrections"])

STAFF_ROLES = ("hr", "admin")


class CorrectionIn(BaseModel):
    attendance_record_id: int = Field(gt=0)
    corrected_check_in: time
    corrected_check_out: Optional[time] = None
    reason: str = Field(min_length=1)
    employee_id: Optional[int] = Field(default=None, description="HR/Admin only: file on behalf of someone")


class ReviewIn(BaseModel):
    approved: bool
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class CorrectionOut(BaseModel):
    id: int
    employee_id: int
    attendance_record_id: int
    date: date
    original_check_in: Optional[time]
    original_check_out: Optional[time]
    corrected_check_in: time
    corrected_check_out: Optional[time]
    reason: str
    status: str
    manager_id: Optional[str]
    manager_reviewed_at: Optional[datetime]
    manager_notes: Optional[str]
    hr_reviewer_id: Optional[str]
    hr_reviewed_at: Optional[datetime]
    hr_notes: Optional[str]
    rejection_reason: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


def _own_employee_id(db: Session, user: CurrentUser) -> int:
    emp = directory.get_employee_id_for_user(db, user.user_id)
    if emp is None:
        raise HTTPException(status_code=403, detail="No employee profile linked to this user")
    return emp


@router.post("", response_model=CorrectionOut)
def api_create_correction(body: CorrectionIn, db: Session = Depends(get_db),
                          user: CurrentUser = Depends(get_current_user)):
    if body.employee_id is not None and user.role in STAFF_ROLES:
        employee_id = body.employee_id
    else:
        employee_id = _own_employee_id(db, user)
    return corrections.create_correction(
        db, employee_id, body.attendance_record_id, body.corrected_check_in,
        body.reason, body.corrected_check_out,
    )


@router.get("", response_model=List[CorrectionOut])
def api_list_corrections(employee_id: Optional[int] = None,
                         status: Optional[List[str]] = Query(default=None),
                         db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    if user.role not in STAFF_ROLES + ("manager",):
        employee_id = _own_employee_id(db, user)
    return corrections.list_corrections(db, employee_id=employee_id, status=status)


@router.post("/{correction_id}/manager-review", response_model=CorrectionOut)
def api_manager_review(correction_id: int, body: ReviewIn, db: Session = Depends(get_db),
                       user: CurrentUser = Depends(require_role("manager", "hr", "admin"))):
    c = db.get(AttendanceCorrection, correction_id)
    if c is None:
        raise NotFoundError(f"Correction {correction_id} not found")
    if user.role not in STAFF_ROLES and directory.get_manager_user_id(db, c.employee_id) != user.user_id:
        raise HTTPException(status_code=403, detail="Only the employee's manager can review this correction")
    return corrections.manager_decide(db, correction_id, user.user_id, body.approved,
                                      body.notes, body.rejection_reason)


@router.post("/{correction_id}/hr-review", response_model=CorrectionOut)
def api_hr_review(correction_id: int, body: ReviewIn, db: Session = Depends(get_db),
                  user: CurrentUser = Depends(require_role(*STAFF_ROLES))):
    return corrections.hr_decide(db, correction_id, user.user_id, body.approved,
                                 body.notes, body.rejection_reason)
