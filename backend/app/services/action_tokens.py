from __future__ import annotations
import os
import secrets
from datetime import datetime, timedelta
from typing import Dict

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.approval import ApprovalActionToken, ApprovalStep

ACTION_TOKEN_TTL_HOURS = int(os.getenv("ACTION_TOKEN_TTL_HOURS", "72"))
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:8000").rstrip("/")

ACTIONS = ("approve", "reject")


def issue_tokens(db: Session, step: ApprovalStep) -> Dict[str, str]:
    """Create one approve and one reject token for the step's approver (not committed)."""
    expires = datetime.utcnow() + timedelta(hours=ACTION_TOKEN_TTL_HOURS)
    out: Dict[str, str] = {}
    for action in ACTIONS:
        tok = secrets.token_urlsafe(32)
        db.add(ApprovalActionToken(
            token=tok,
            action=action,
            step_id=step.id,
            user_id=step.approver_user_id,
            expires_at=expires,
        ))
        out[action] = tok
    return out


def action_links(tokens: Dict[str, str]) -> Dict[str, str]:
    return {
        f"{action}_url": f"{APP_BASE_URL}/api/approvals/email-action?token={tok}&action={action}"
        for action, tok in tokens.items()
    }


def burn_step_tokens(db: Session, step_id: int, now: datetime) -> int:
    """Mark every unused token of a step as used; returns how many were still live."""
    res = db.execute(
        update(ApprovalActionToken)
        .where(ApprovalActionToken.step_id == step_id, ApprovalActionToken.used_at.is_(None))
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount
