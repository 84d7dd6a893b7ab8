import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Float, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from perfreview.core.clock import utcnow
from perfreview.db.base import Base

EVALUATION_TYPES = ("SELF", "PEER", "MANAGER", "UPWARD", "SKIP_LEVEL")
EVALUATION_STATUSES = ("DRAFT", "SUBMITTED", "REVIEWED", "APPROVED", "SHARED")
SUBMITTED_STATUSES = ("SUBMITTED", "REVIEWED", "APPROVED", "SHARED")


class Evaluation(Base):
    __tablename__ = "evaluations"
    __table_args__ = (
        UniqueConstraint(
            "cycle_id", "evaluator_id", "evaluatee_id", "type",
            name="uq_evaluations_cycle_evaluator_evaluatee_type",
        ),
        CheckConstraint(
            "status IN ('DRAFT','SUBMITTED','REVIEWED','APPROVED','SHARED')",
            name="ck_evaluations_status",
        ),
        CheckConstraint(
            "type IN ('SELF','PEER','MANAGER','UPWARD','SKIP_LEVEL')",
            name="ck_evaluations_type",
        ),
        # evaluator == evaluatee  <=>  SELF
        CheckConstraint(
            "(type = 'SELF' AND evaluator_id = evaluatee_id) "
            "OR (type <> 'SELF' AND evaluator_id <> evaluatee_id)",
            name="ck_evaluations_self_loop",
        ),
        # DRAFT => never submitted; anything past DRAFT => submitted_at set
        CheckConstraint(
            "(status <> 'DRAFT') OR (submitted_at IS NULL)",
            name="ck_eval_ts_draft",
        ),
        CheckConstraint(
            "(status = 'DRAFT') OR (submitted_at IS NOT NULL)",
            name="ck_eval_ts_submitted",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("evaluation_cycles.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    evaluator_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), index=True, nullable=False
    )
    evaluatee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), index=True, nullable=False
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")

    overall_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    overall_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    strengths: Mapped[str | None] = mapped_column(Text, nullable=True)
    improvements: Mapped[str | None] = mapped_column(Text, nullable=True)
    career_goals: Mapped[str | None] = mapped_column(Text, nullable=True)
    development_plan: Mapped[str | None] = mapped_column(Text, nullable=True)

    # reviewer workflow
    manager_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    shared_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    # last-write-wins key for draft reconciliation; stamped explicitly on every write
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    competency_ratings = relationship(
        "CompetencyRating",
        back_populates="evaluation",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
