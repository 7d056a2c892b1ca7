# Read models of the request tables owned by the HR modules. The engine only
# touches the approval-relevant columns; the rest of each row is not mapped.
from sqlalchemy import Column, Integer, String, DateTime, Text
from datetime import datetime

from app.core.database import Base


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, nullable=False, index=True)
    status = Column(String(32), default="draft", nullable=False)    # draft | pending | approved | rejected
    submitted_at = Column(DateTime, nullable=True)
    reviewed_by = Column(String(255), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class BusinessTrip(Base):
    __tablename__ = "business_trips"
    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, nullable=False, index=True)
    status = Column(String(32), default="draft", nullable=False)    # draft | submitted | hr_approved | rejected | ...
    submitted_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Loan(Base):
    __tablename__ = "loans"
    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, nullable=False, index=True)
    status = Column(String(32), default="requested", nullable=False)  # requested | approved | rejected | active | ...
    approved_by = Column(String(255), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
