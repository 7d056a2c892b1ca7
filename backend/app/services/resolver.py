"""Turn an abstract approver role into a concrete user.

``manager`` resolves through the directory and may fall back to HR; ``hr``
prefers the workflow's default HR approver and otherwise takes the first HR or
Admin role holder; ``specific_user`` is taken as configured. Anything that
cannot be resolved raises :class:`UnresolvableApprover`, which the sequencer
treats as "skip this step".
"""
from __future__ import annotations
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from app.core.errors import UnresolvableApprover
from app.crud.workflow import StepConfig
from app.models.approval import ApproverKind
from app.services import directory
from app.services.directory import DirectoryUnavailable

logger = logging.getLogger(__name__)


def resolve_hr(db: Session, default_hr_approver_id: Optional[str]) -> str:
    if default_hr_approver_id:
        return default_hr_approver_id
    try:
        holder = directory.find_holder_of_role(db, ("hr", "admin"))
    except DirectoryUnavailable as e:
        raise UnresolvableApprover(ApproverKind.HR.value, f"directory unavailable ({e})")
    if not holder:
        raise UnresolvableApprover(ApproverKind.HR.value, "nobody holds the hr or admin role")
    return holder


def resolve_manager(db: Session, employee_id: int) -> str:
    try:
        manager_user = directory.get_manager_user_id(db, employee_id)
    except DirectoryUnavailable as e:
        raise UnresolvableApprover(ApproverKind.MANAGER.value, f"directory unavailable ({e})")
    if not manager_user:
        raise UnresolvableApprover(ApproverKind.MANAGER.value, "no manager with a linked user")
    return manager_user


def resolve_approver(
    db: Session,
    employee_id: int,
    cfg: StepConfig,
    default_hr_approver_id: Optional[str] = None,
) -> Tuple[str, str]:
    """Return ``(effective_approver_type, approver_user_id)`` for one step."""
    if cfg.approver == ApproverKind.MANAGER.value:
        try:
            return ApproverKind.MANAGER.value, resolve_manager(db, employee_id)
        except UnresolvableApprover as miss:
            if cfg.fallback != ApproverKind.HR.value:
                raise
            logger.info("step %s: %s; falling back to hr", cfg.step, miss.reason)
            return ApproverKind.HR.value, resolve_hr(db, default_hr_approver_id)

    if cfg.approver == ApproverKind.HR.value:
        return ApproverKind.HR.value, resolve_hr(db, default_hr_approver_id)

    if cfg.approver == ApproverKind.SPECIFIC_USER.value:
        if not cfg.specific_user_id:
            raise UnresolvableApprover(cfg.approver, "no user configured")
        return ApproverKind.SPECIFIC_USER.value, cfg.specific_user_id

    raise UnresolvableApprover(cfg.approver, "unknown approver kind")
