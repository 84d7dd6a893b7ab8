import uuid

from sqlalchemy import JSON, Float, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from perfreview.db.base import Base


class CompetencyRating(Base):
    __tablename__ = "competency_ratings"
    __table_args__ = (
        UniqueConstraint("evaluation_id", "competency_id", name="uq_competency_rating_eval_competency"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    evaluation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("evaluations.id", ondelete="CASCADE"), index=True, nullable=False
    )
    competency_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("competencies.id", ondelete="RESTRICT"), index=True, nullable=False
    )

    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    behaviors: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    examples: Mapped[str | None] = mapped_column(Text, nullable=True)
    improvement_areas: Mapped[str | None] = mapped_column(Text, nullable=True)

    evaluation = relationship("Evaluation", back_populates="competency_ratings")
