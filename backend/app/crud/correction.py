# app/crud/correction.py
from __future__ import annotations
import logging
from datetime import date, datetime, time
from typing import List, Optional, Sequence, Union

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError
from app.models.correction import AttendanceCorrection, AttendanceRecord, CorrectionStatus
from app.services.notify import notify_after_commit
from app.metrics import correction_decisions_total, approval_conflicts_total

logger = logging.getLogger(__name__)


def work_hours(check_in: Optional[time], check_out: Optional[time]) -> Optional[float]:
    """Hours between two same-day times, rounded to 2 decimals."""
    if check_in is None or check_out is None:
        return None
    start = datetime.combine(date.today(), check_in)
    end = datetime.combine(date.today(), check_out)
    return round((end - start).total_seconds() / 3600.0, 2)


def create_correction(
    db: Session,
    employee_id: int,
    attendance_record_id: int,
    corrected_check_in: time,
    reason: str,
    corrected_check_out: Optional[time] = None,
) -> AttendanceCorrection:
    """Open a correction request; it starts with the manager."""
    record = db.get(AttendanceRecord, attendance_record_id)
    if record is None:
        raise NotFoundError(f"Attendance record {attendance_record_id} not found")
    if record.employee_id != employee_id:
        raise ValueError("Attendance record belongs to another employee")
    if not (reason or "").strip():
        raise ValueError("A reason is required")

    c = AttendanceCorrection(
        employee_id=employee_id,
        attendance_record_id=attendance_record_id,
        date=record.date,
        original_check_in=record.check_in,
        original_check_out=record.check_out,
        corrected_check_in=corrected_check_in,
        corrected_check_out=corrected_check_out,
        reason=reason.strip(),
        status=CorrectionStatus.PENDING_MANAGER.value,
    )
    db.add(c); db.commit(); db.refresh(c)
    logger.info("correction %s opened for record %s", c.id, attendance_record_id)
    return c


def list_corrections(
    db: Session,
    employee_id: Optional[int] = None,
    status: Optional[Union[str, Sequence[str]]] = None,
) -> List[AttendanceCorrection]:
    q = db.query(AttendanceCorrection)
    if employee_id is not None:
        q = q.filter(AttendanceCorrection.employee_id == employee_id)
    if status:
        if isinstance(status, str):
            q = q.filter(AttendanceCorrection.status == status)
        else:
            q = q.filter(AttendanceCorrection.status.in_(list(status)))
    return q.order_by(AttendanceCorrection.created_at.desc(), AttendanceCorrection.id.desc()).all()


def _transition(db: Session, correction_id: int, expected: str, values: dict) -> None:
    """Conditional status move; tells a missing correction apart from a decided one."""
    res = db.execute(
        update(AttendanceCorrection)
        .where(AttendanceCorrection.id == correction_id, AttendanceCorrection.status == expected)
        .values(updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 1:
        return
    current = db.query(AttendanceCorrection.status).filter(AttendanceCorrection.id == correction_id).scalar()
    if current is None:
        raise NotFoundError(f"Correction {correction_id} not found")
    approval_conflicts_total.labels(flow="correction").inc()
    raise ConflictError(f"Correction {correction_id} is '{current}', not '{expected}'")


def manager_decide(db: Session, correction_id: int, manager_id: str, approved: bool,
                   notes: Optional[str] = None, rejection_reason: Optional[str] = None) -> AttendanceCorrection:
    now = datetime.utcnow()
    values = {
        "manager_id": manager_id,
        "manager_reviewed_at": now,
        "manager_notes": notes or None,
    }
    if approved:
        values["status"] = CorrectionStatus.PENDING_HR.value
    else:
        values["status"] = CorrectionStatus.REJECTED.value
        values["rejection_reason"] = rejection_reason or "Rejected by manager"

    try:
        _transition(db, correction_id, CorrectionStatus.PENDING_MANAGER.value, values)
        db.commit()
    except Exception:
        db.rollback()
        raise

    outcome = "approved" if approved else "rejected"
    correction_decisions_total.labels(stage="manager", outcome=outcome).inc()
    logger.info("correction %s %s by manager %s", correction_id, outcome, manager_id)
    c = db.get(AttendanceCorrection, correction_id)
    notify_after_commit(
        "correction.pending_hr" if approved else "correction.rejected",
        {"correction_id": correction_id, "employee_id": c.employee_id, "actor": manager_id,
         "stage": "manager", "rejection_reason": c.rejection_reason},
    )
    return c


def hr_decide(db: Session, correction_id: int, hr_id: str, approved: bool,
              notes: Optional[str] = None, rejection_reason: Optional[str] = None) -> AttendanceCorrection:
    """Final stage; an approval also rewrites the attendance record, in the same transaction."""
    now = datetime.utcnow()
    values = {
        "hr_reviewer_id": hr_id,
        "hr_reviewed_at": now,
        "hr_notes": notes or None,
    }
    if approved:
        values["status"] = CorrectionStatus.APPROVED.value
    else:
        values["status"] = CorrectionStatus.REJECTED.value
        values["rejection_reason"] = rejection_reason or "Rejected by HR"

    try:
        _transition(db, correction_id, CorrectionStatus.PENDING_HR.value, values)
        if approved:
            c = db.get(AttendanceCorrection, correction_id)
            db.refresh(c)
            record = db.get(AttendanceRecord, c.attendance_record_id)
            if record is None:
                raise NotFoundError(f"Attendance record {c.attendance_record_id} not found")
            record.check_in = c.corrected_check_in
            record.check_out = c.corrected_check_out
            record.work_hours = work_hours(c.corrected_check_in, c.corrected_check_out)
            record.updated_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise

    outcome = "approved" if approved else "rejected"
    correction_decisions_total.labels(stage="hr", outcome=outcome).inc()
    logger.info("correction %s %s by hr %s", correction_id, outcome, hr_id)
    c = db.get(AttendanceCorrection, correction_id)
    notify_after_commit(
        f"correction.{outcome}",
        {"correction_id": correction_id, "employee_id": c.employee_id, "actor": hr_id,
         "stage": "hr", "rejection_reason": c.rejection_reason},
    )
    return c
