import uuid
from datetime import date, datetime

from sqlalchemy import JSON, CheckConstraint, Date, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from perfreview.core.clock import utcnow
from perfreview.db.base import Base

CYCLE_TYPES = ("SELF", "PEER", "MANAGER", "SKIP_LEVEL", "UPWARD", "360")
CYCLE_STATUSES = ("DRAFT", "ACTIVE", "COMPLETED", "ARCHIVED")
OPEN_CYCLE_STATUSES = ("DRAFT", "ACTIVE")


class EvaluationCycle(Base):
    __tablename__ = "evaluation_cycles"
    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT','ACTIVE','COMPLETED','ARCHIVED')",
            name="ck_evaluation_cycles_status",
        ),
        CheckConstraint(
            "type IN ('SELF','PEER','MANAGER','SKIP_LEVEL','UPWARD','360')",
            name="ck_evaluation_cycles_type",
        ),
        CheckConstraint("start_date < end_date", name="ck_evaluation_cycles_dates"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")

    # relationship components to generate; NULL means "derive from type"
    components: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    created_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    phases = relationship(
        "EvaluationPhase",
        back_populates="cycle",
        cascade="all, delete-orphan",
        order_by="EvaluationPhase.order",
        lazy="selectin",
    )


class EvaluationPhase(Base):
    __tablename__ = "evaluation_phases"
    __table_args__ = (
        CheckConstraint(
            "type IN ('SELF','PEER','MANAGER','CALIBRATION')",
            name="ck_evaluation_phases_type",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("evaluation_cycles.id", ondelete="CASCADE"), nullable=False
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    cycle = relationship("EvaluationCycle", back_populates="phases")
