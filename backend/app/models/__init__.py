from .approval import ApprovalWorkflow, ApprovalStep, ApprovalActionToken, RequestType, ApproverKind, StepStatus
from .requests import LeaveRequest, BusinessTrip, Loan
from .directory import Employee, UserRoleGrant
from .correction import AttendanceRecord, AttendanceCorrection, CorrectionStatus
