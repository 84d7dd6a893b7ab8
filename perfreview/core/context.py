from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import Depends
from sqlalchemy.orm import Session

from perfreview.core.security import get_current_user
from perfreview.db.session import get_db
from perfreview.models.user import User


@dataclass(frozen=True)
class ServiceContext:
    """
    Everything a service call needs about "who / where": the unit-of-work
    session, the acting user and the tenant. Built per request, never shared.
    """

    db: Session
    actor: User | None
    organization_id: uuid.UUID

    @classmethod
    def for_user(cls, db: Session, user: User) -> "ServiceContext":
        return cls(db=db, actor=user, organization_id=user.organization_id)

    @property
    def actor_id(self) -> uuid.UUID | None:
        return self.actor.id if self.actor else None

    @property
    def actor_role(self) -> str | None:
        return self.actor.role if self.actor else None


def get_context(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> ServiceContext:
    return ServiceContext.for_user(db, user)
