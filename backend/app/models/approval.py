from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON, Text, ForeignKey, UniqueConstraint, Index
from datetime import datetime
import enum

from app.core.database import Base


class RequestType(str, enum.Enum):
    TIME_OFF = "time_off"
    BUSINESS_TRIP = "business_trip"
    LOAN = "loan"


class ApproverKind(str, enum.Enum):
    MANAGER = "manager"
    HR = "hr"
    SPECIFIC_USER = "specific_user"


class StepStatus(str, enum.Enum):
    QUEUED = "queued"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


WAITING_STATUSES = (StepStatus.QUEUED.value, StepStatus.PENDING.value)


class ApprovalWorkflow(Base):
    __tablename__ = "workflow_definitions"
    id = Column(Integer, primary_key=True)
    request_type = Column(String(32), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    steps = Column(JSON, default=list)                  # [{"step":1, "approver":"manager", "fallback":"hr"}, ...]
    default_hr_approver_id = Column(String(255), nullable=True)
    updated_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ApprovalStep(Base):
    __tablename__ = "approval_steps"
    __table_args__ = (
        UniqueConstraint("request_type", "request_id", "step_number", name="uq_approval_steps_request_step"),
        Index("ix_approval_steps_request", "request_type", "request_id"),
        Index("ix_approval_steps_approver_status", "approver_user_id", "status"),
    )
    id = Column(Integer, primary_key=True)
    request_id = Column(Integer, nullable=False)
    request_type = Column(String(32), nullable=False)
    step_number = Column(Integer, nullable=False)
    approver_type = Column(String(32), nullable=False)   # effective role, after fallback
    approver_user_id = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False, default=StepStatus.QUEUED.value)
    acted_by = Column(String(255), nullable=True)
    acted_at = Column(DateTime, nullable=True)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ApprovalActionToken(Base):
    __tablename__ = "approval_action_tokens"
    id = Column(Integer, primary_key=True)
    token = Column(String(128), unique=True, nullable=False, index=True)
    action = Column(String(16), nullable=False)          # "approve" | "reject"
    step_id = Column(Integer, ForeignKey("approval_steps.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
