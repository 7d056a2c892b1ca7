# app/crud/workflow.py
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from sqlalchemy.orm import Session

from app.core.errors import ConfigurationError
from app.models.approval import ApprovalWorkflow, ApproverKind, RequestType

logger = logging.getLogger(__name__)

# Default definitions shipped with the service (compose may set WORKFLOWS_PATH)
_DEFAULT_WORKFLOWS = Path(__file__).resolve().parents[2] / "policies" / "workflows.yaml"
WORKFLOWS_PATH = Path(os.getenv("WORKFLOWS_PATH", str(_DEFAULT_WORKFLOWS)))

VALID_FALLBACKS = {ApproverKind.HR.value}


@dataclass(frozen=True)
class StepConfig:
    step: int
    approver: str
    fallback: Optional[str] = None
    specific_user_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"step": self.step, "approver": self.approver}
        if self.fallback:
            out["fallback"] = self.fallback
        if self.specific_user_id:
            out["specific_user_id"] = self.specific_user_id
        return out


@dataclass(frozen=True)
class WorkflowDefinition:
    request_type: str
    is_active: bool
    steps: List[StepConfig] = field(default_factory=list)
    default_hr_approver_id: Optional[str] = None


def parse_request_type(value: str) -> RequestType:
    try:
        return RequestType((value or "").strip().lower())
    except ValueError:
        raise ValueError(f"Invalid request type '{value}'. Must be one of {sorted(t.value for t in RequestType)}.")


def validate_steps(raw_steps: Any) -> List[StepConfig]:
    """Turn stored/submitted step dicts into StepConfigs or raise ConfigurationError."""
    if raw_steps is None:
        return []
    if not isinstance(raw_steps, list):
        raise ConfigurationError("steps must be a list")

    kinds = {k.value for k in ApproverKind}
    steps: List[StepConfig] = []
    for i, raw in enumerate(raw_steps):
        if not isinstance(raw, dict):
            raise ConfigurationError(f"step #{i + 1} must be a mapping")
        number = raw.get("step")
        if isinstance(number, bool) or not isinstance(number, int) or number < 1:
            raise ConfigurationError(f"step #{i + 1}: step number must be a positive integer, got {number!r}")
        if not steps and number != 1:
            raise ConfigurationError(f"step numbers must start at 1, got {number}")
        if steps and number <= steps[-1].step:
            raise ConfigurationError(
                f"step numbers must be strictly increasing: {number} follows {steps[-1].step}"
            )
        approver = str(raw.get("approver") or "").strip().lower()
        if approver not in kinds:
            raise ConfigurationError(f"step {number}: unknown approver '{raw.get('approver')}'")
        fallback = raw.get("fallback") or None
        if fallback is not None:
            fallback = str(fallback).strip().lower()
            if fallback not in VALID_FALLBACKS:
                raise ConfigurationError(f"step {number}: unsupported fallback '{fallback}'")
            if approver != ApproverKind.MANAGER.value:
                raise ConfigurationError(f"step {number}: fallback only applies to manager steps")
        specific = raw.get("specific_user_id") or None
        if approver == ApproverKind.SPECIFIC_USER.value and not specific:
            raise ConfigurationError(f"step {number}: specific_user step needs specific_user_id")
        steps.append(StepConfig(
            step=number,
            approver=approver,
            fallback=fallback,
            specific_user_id=str(specific) if specific else None,
        ))
    return steps


def _to_definition(row: ApprovalWorkflow) -> WorkflowDefinition:
    try:
        steps = validate_steps(row.steps or [])
    except ConfigurationError as e:
        raise ConfigurationError(f"workflow '{row.request_type}' is malformed: {e}") from e
    return WorkflowDefinition(
        request_type=row.request_type,
        is_active=bool(row.is_active),
        steps=steps,
        default_hr_approver_id=row.default_hr_approver_id or None,
    )


def get_definition(db: Session, request_type: str) -> WorkflowDefinition:
    """Load and validate the definition for a request type."""
    rt = parse_request_type(request_type)
    row = db.query(ApprovalWorkflow).filter(ApprovalWorkflow.request_type == rt.value).first()
    if not row:
        raise ConfigurationError(f"No approval workflow configured for '{rt.value}'")
    return _to_definition(row)


def list_definitions(db: Session) -> List[ApprovalWorkflow]:
    return db.query(ApprovalWorkflow).order_by(ApprovalWorkflow.request_type.asc()).all()


def upsert_definition(
    db: Session,
    request_type: str,
    updated_by: Optional[str],
    is_active: Optional[bool] = None,
    steps: Optional[List[Dict[str, Any]]] = None,
    default_hr_approver_id: Optional[str] = None,
    clear_default_hr_approver: bool = False,
) -> ApprovalWorkflow:
    """Administrator update path; validation happens before anything is written."""
    rt = parse_request_type(request_type)
    validated = validate_steps(steps) if steps is not None else None

    row = db.query(ApprovalWorkflow).filter(ApprovalWorkflow.request_type == rt.value).first()
    if not row:
        row = ApprovalWorkflow(request_type=rt.value, is_active=True, steps=[])
        db.add(row)
    if is_active is not None:
        row.is_active = is_active
    if validated is not None:
        row.steps = [s.as_dict() for s in validated]
    if default_hr_approver_id is not None:
        row.default_hr_approver_id = default_hr_approver_id or None
    elif clear_default_hr_approver:
        row.default_hr_approver_id = None
    row.updated_by = updated_by
    row.updated_at = datetime.utcnow()
    db.commit(); db.refresh(row)
    logger.info("workflow %s updated by %s (active=%s, steps=%d)",
                rt.value, updated_by, row.is_active, len(row.steps or []))
    return row


# -------------------------- seeding --------------------------

def _load_seed_file(path: Path) -> dict:
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                return {}
            return data
    return {}


def seed_definitions(db: Session, path: Optional[Path] = None) -> List[str]:
    """Insert shipped defaults for request types that have no definition yet."""
    data = _load_seed_file(path or WORKFLOWS_PATH)
    workflows = data.get("workflows") or {}
    if not isinstance(workflows, dict):
        raise ConfigurationError("workflows seed file: 'workflows' must be a mapping")

    created: List[str] = []
    for key, cfg in workflows.items():
        rt = parse_request_type(key)
        cfg = cfg or {}
        exists = db.query(ApprovalWorkflow.id).filter(ApprovalWorkflow.request_type == rt.value).first()
        if exists:
            continue
        steps = validate_steps(cfg.get("steps") or [])
        db.add(ApprovalWorkflow(
            request_type=rt.value,
            is_active=bool(cfg.get("is_active", True)),
            steps=[s.as_dict() for s in steps],
            default_hr_approver_id=cfg.get("default_hr_approver_id") or None,
            updated_by="seed",
        ))
        created.append(rt.value)
    if created:
        db.commit()
        logger.info("seeded workflow definitions: %s", ", ".join(created))
    return created
