import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from perfreview.core.clock import utcnow
from perfreview.db.base import Base

COMPETENCY_CATEGORIES = ("CORE", "TECHNICAL", "LEADERSHIP", "COMMUNICATION", "FUNCTIONAL")


class Competency(Base):
    __tablename__ = "competencies"
    __table_args__ = (
        CheckConstraint(
            "category IN ('CORE','TECHNICAL','LEADERSHIP','COMMUNICATION','FUNCTIONAL')",
            name="ck_competencies_category",
        ),
        # names only need to be unique among active rows; retired names can be reused
        Index(
            "uq_competencies_org_name_active",
            "organization_id",
            "name",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    behaviors: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # soft delete only: ratings keep pointing at retired competencies
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
