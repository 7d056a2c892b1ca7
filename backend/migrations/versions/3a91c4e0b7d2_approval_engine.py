"""approval engine: workflows, steps, action tokens, attendance corrections

Revision ID: 3a91c4e0b7d2
Revises:
Create Date: 2026-10-19 09:12:40.118302
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3a91c4e0b7d2"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(bind, name: str, schema: str | None = None) -> bool:
    insp = sa.inspect(bind)
    return name in insp.get_table_names(schema=schema)


def _index_exists(bind, table: str, name: str, schema: str | None = None) -> bool:
    insp = sa.inspect(bind)
    for ix in insp.get_indexes(table_name=table, schema=schema):
        if ix.get("name") in {name, op.f(name)}:
            return True
    return False


def upgrade() -> None:
    """Create engine-owned tables/indexes if they don't already exist."""
    bind = op.get_bind()

    # ---- WORKFLOW DEFINITIONS ----
    if not _table_exists(bind, "workflow_definitions"):
        op.create_table(
            "workflow_definitions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("request_type", sa.String(length=32), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("steps", sa.JSON(), nullable=True),
            sa.Column("default_hr_approver_id", sa.String(length=255), nullable=True),
            sa.Column("updated_by", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    if not _index_exists(bind, "workflow_definitions", "ix_workflow_definitions_request_type"):
        op.create_index(op.f("ix_workflow_definitions_request_type"), "workflow_definitions",
                        ["request_type"], unique=True)

    # ---- APPROVAL STEPS ----
    if not _table_exists(bind, "approval_steps"):
        op.create_table(
            "approval_steps",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("request_id", sa.Integer(), nullable=False),
            sa.Column("request_type", sa.String(length=32), nullable=False),
            sa.Column("step_number", sa.Integer(), nullable=False),
            sa.Column("approver_type", sa.String(length=32), nullable=False),
            sa.Column("approver_user_id", sa.String(length=255), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="queued"),
            sa.Column("acted_by", sa.String(length=255), nullable=True),
            sa.Column("acted_at", sa.DateTime(), nullable=True),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("request_type", "request_id", "step_number", name="uq_approval_steps_request_step"),
        )
    if not _index_exists(bind, "approval_steps", "ix_approval_steps_request"):
        op.create_index("ix_approval_steps_request", "approval_steps", ["request_type", "request_id"])
    if not _index_exists(bind, "approval_steps", "ix_approval_steps_approver_status"):
        op.create_index("ix_approval_steps_approver_status", "approval_steps", ["approver_user_id", "status"])

    # ---- EMAIL ACTION TOKENS ----
    if not _table_exists(bind, "approval_action_tokens"):
        op.create_table(
            "approval_action_tokens",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("token", sa.String(length=128), nullable=False),
            sa.Column("action", sa.String(length=16), nullable=False),
            sa.Column("step_id", sa.Integer(), sa.ForeignKey("approval_steps.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.String(length=255), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("used_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    if not _index_exists(bind, "approval_action_tokens", "ix_approval_action_tokens_token"):
        op.create_index(op.f("ix_approval_action_tokens_token"), "approval_action_tokens", ["token"], unique=True)
    if not _index_exists(bind, "approval_action_tokens", "ix_approval_action_tokens_step_id"):
        op.create_index(op.f("ix_approval_action_tokens_step_id"), "approval_action_tokens", ["step_id"])

    # ---- ATTENDANCE CORRECTIONS ----
    if not _table_exists(bind, "attendance_corrections"):
        op.create_table(
            "attendance_corrections",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("employee_id", sa.Integer(), nullable=False),
            sa.Column("attendance_record_id", sa.Integer(), sa.ForeignKey("attendance_records.id"), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("original_check_in", sa.Time(), nullable=True),
            sa.Column("original_check_out", sa.Time(), nullable=True),
            sa.Column("corrected_check_in", sa.Time(), nullable=False),
            sa.Column("corrected_check_out", sa.Time(), nullable=True),
            sa.Column("reason", sa.Text(), nullable=False),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="pending_manager"),
            sa.Column("manager_id", sa.String(length=255), nullable=True),
            sa.Column("manager_reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("manager_notes", sa.Text(), nullable=True),
            sa.Column("hr_reviewer_id", sa.String(length=255), nullable=True),
            sa.Column("hr_reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("hr_notes", sa.Text(), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    if not _index_exists(bind, "attendance_corrections", "ix_attendance_corrections_employee_id"):
        op.create_index(op.f("ix_attendance_corrections_employee_id"), "attendance_corrections", ["employee_id"])
    if not _index_exists(bind, "attendance_corrections", "ix_attendance_corrections_status"):
        op.create_index(op.f("ix_attendance_corrections_status"), "attendance_corrections", ["status"])


def downgrade() -> None:
    """Drop engine-owned tables (request and directory tables belong to other modules)."""
    op.drop_table("attendance_corrections")
    op.drop_table("approval_action_tokens")
    op.drop_table("approval_steps")
    op.drop_table("workflow_definitions")
