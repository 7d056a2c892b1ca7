from sqlalchemy import Column, Integer, String, DateTime, Date, Time, Float, Text, ForeignKey
from datetime import datetime
import enum

from app.core.database import Base


class CorrectionStatus(str, enum.Enum):
    PENDING_MANAGER = "pending_manager"
    PENDING_HR = "pending_hr"
    APPROVED = "approved"
    REJECTED = "rejected"


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, nullable=False, index=True)
    date = Column(Date, nullable=False)
    check_in = Column(Time, nullable=True)
    check_out = Column(Time, nullable=True)
    work_hours = Column(Float, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=True)


class AttendanceCorrection(Base):
    __tablename__ = "attendance_corrections"
    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, nullable=False, index=True)
    attendance_record_id = Column(Integer, ForeignKey("attendance_records.id"), nullable=False)
    date = Column(Date, nullable=False)
    original_check_in = Column(Time, nullable=True)
    original_check_out = Column(Time, nullable=True)
    corrected_check_in = Column(Time, nullable=False)
    corrected_check_out = Column(Time, nullable=True)
    reason = Column(Text, nullable=False)
    status = Column(String(32), default=CorrectionStatus.PENDING_MANAGER.value, nullable=False, index=True)
    manager_id = Column(String(255), nullable=True)
    manager_reviewed_at = Column(DateTime, nullable=True)
    manager_notes = Column(Text, nullable=True)
    hr_reviewer_id = Column(String(255), nullable=True)
    hr_reviewed_at = Column(DateTime, nullable=True)
    hr_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
