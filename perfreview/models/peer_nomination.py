import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from perfreview.core.clock import utcnow
from perfreview.db.base import Base


class PeerNomination(Base):
    """Explicit peer list for one evaluatee in one cycle (used by the nominated peer policy)."""

    __tablename__ = "peer_nominations"
    __table_args__ = (
        UniqueConstraint("cycle_id", "evaluatee_id", "peer_id", name="uq_peer_nomination"),
        CheckConstraint("evaluatee_id <> peer_id", name="ck_peer_nomination_not_self"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("evaluation_cycles.id", ondelete="CASCADE"), index=True, nullable=False
    )
    evaluatee_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    peer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
