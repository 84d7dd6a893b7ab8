"""initial schema

Revision ID: 5e1c0a7d2b41
Revises:
Create Date: 2026-01-12 10:04:17.220913
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "5e1c0a7d2b41"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False))
    return cols


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=True),
        *_timestamps(updated=False),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("role IN ('ADMIN','MANAGER','MEMBER')", name="ck_users_role"),
    )
    op.create_index("ix_users_organization_id", "users", ["organization_id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "teams",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("manager_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    )
    op.create_index("ix_teams_organization_id", "teams", ["organization_id"])

    op.create_table(
        "team_members",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("team_id", sa.Uuid(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("team_id", "user_id", name="uq_team_member"),
    )

    op.create_table(
        "competencies",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("behaviors", sa.JSON(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "category IN ('CORE','TECHNICAL','LEADERSHIP','COMMUNICATION','FUNCTIONAL')",
            name="ck_competencies_category",
        ),
    )
    op.create_index("ix_competencies_organization_id", "competencies", ["organization_id"])
    op.create_index(
        "uq_competencies_org_name_active",
        "competencies",
        ["organization_id", "name"],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "evaluation_cycles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("components", sa.JSON(), nullable=True),
        sa.Column("created_by_user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('DRAFT','ACTIVE','COMPLETED','ARCHIVED')", name="ck_evaluation_cycles_status"),
        sa.CheckConstraint(
            "type IN ('SELF','PEER','MANAGER','SKIP_LEVEL','UPWARD','360')",
            name="ck_evaluation_cycles_type",
        ),
        sa.CheckConstraint("start_date < end_date", name="ck_evaluation_cycles_dates"),
    )
    op.create_index("ix_evaluation_cycles_organization_id", "evaluation_cycles", ["organization_id"])

    op.create_table(
        "evaluation_phases",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("cycle_id", sa.Uuid(), sa.ForeignKey("evaluation_cycles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.CheckConstraint("type IN ('SELF','PEER','MANAGER','CALIBRATION')", name="ck_evaluation_phases_type"),
    )

    op.create_table(
        "evaluations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("cycle_id", sa.Uuid(), sa.ForeignKey("evaluation_cycles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("evaluator_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("evaluatee_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("overall_rating", sa.Float(), nullable=True),
        sa.Column("overall_comments", sa.Text(), nullable=True),
        sa.Column("strengths", sa.Text(), nullable=True),
        sa.Column("improvements", sa.Text(), nullable=True),
        sa.Column("career_goals", sa.Text(), nullable=True),
        sa.Column("development_plan", sa.Text(), nullable=True),
        sa.Column("manager_comments", sa.Text(), nullable=True),
        sa.Column("reviewed_by_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shared_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "cycle_id", "evaluator_id", "evaluatee_id", "type",
            name="uq_evaluations_cycle_evaluator_evaluatee_type",
        ),
        sa.CheckConstraint(
            "status IN ('DRAFT','SUBMITTED','REVIEWED','APPROVED','SHARED')",
            name="ck_evaluations_status",
        ),
        sa.CheckConstraint("type IN ('SELF','PEER','MANAGER','UPWARD','SKIP_LEVEL')", name="ck_evaluations_type"),
        sa.CheckConstraint(
            "(type = 'SELF' AND evaluator_id = evaluatee_id) "
            "OR (type <> 'SELF' AND evaluator_id <> evaluatee_id)",
            name="ck_evaluations_self_loop",
        ),
        sa.CheckConstraint("(status <> 'DRAFT') OR (submitted_at IS NULL)", name="ck_eval_ts_draft"),
        sa.CheckConstraint("(status = 'DRAFT') OR (submitted_at IS NOT NULL)", name="ck_eval_ts_submitted"),
    )
    op.create_index("ix_evaluations_cycle_id", "evaluations", ["cycle_id"])
    op.create_index("ix_evaluations_evaluator_id", "evaluations", ["evaluator_id"])
    op.create_index("ix_evaluations_evaluatee_id", "evaluations", ["evaluatee_id"])

    op.create_table(
        "competency_ratings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("evaluation_id", sa.Uuid(), sa.ForeignKey("evaluations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("competency_id", sa.Uuid(), sa.ForeignKey("competencies.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("rating", sa.Float(), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("behaviors", sa.JSON(), nullable=False),
        sa.Column("examples", sa.Text(), nullable=True),
        sa.Column("improvement_areas", sa.Text(), nullable=True),
        sa.UniqueConstraint("evaluation_id", "competency_id", name="uq_competency_rating_eval_competency"),
    )
    op.create_index("ix_competency_ratings_evaluation_id", "competency_ratings", ["evaluation_id"])
    op.create_index("ix_competency_ratings_competency_id", "competency_ratings", ["competency_id"])

    op.create_table(
        "peer_nominations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("cycle_id", sa.Uuid(), sa.ForeignKey("evaluation_cycles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("evaluatee_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("peer_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        *_timestamps(updated=False),
        sa.UniqueConstraint("cycle_id", "evaluatee_id", "peer_id", name="uq_peer_nomination"),
        sa.CheckConstraint("evaluatee_id <> peer_id", name="ck_peer_nomination_not_self"),
    )
    op.create_index("ix_peer_nominations_cycle_id", "peer_nominations", ["cycle_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True),
        sa.Column("actor_user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("event_metadata", sa.JSON(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_audit_events_organization_id", "audit_events", ["organization_id"])

    op.create_table(
        "idempotency_keys",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("route", sa.String(300), nullable=False),
        sa.Column("request_hash", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("response_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "key", name="uq_idem_user_key"),
        sa.CheckConstraint("status IN ('IN_PROGRESS','COMPLETED','FAILED')", name="ck_idempotency_status"),
    )
    op.create_index("ix_idem_status_updated", "idempotency_keys", ["status", "updated_at"])


def downgrade() -> None:
    op.drop_table("idempotency_keys")
    op.drop_table("audit_events")
    op.drop_table("peer_nominations")
    op.drop_table("competency_ratings")
    op.drop_table("evaluations")
    op.drop_table("evaluation_phases")
    op.drop_table("evaluation_cycles")
    op.drop_table("competencies")
    op.drop_table("team_members")
    op.drop_table("teams")
    op.drop_table("users")
    op.drop_table("organizations")
