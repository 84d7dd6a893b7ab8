"""Tenant-scoped loaders shared by the services."""
from __future__ import annotations

import uuid

from perfreview.core.context import ServiceContext
from perfreview.core.errors import NotFoundError
from perfreview.models.competency import Competency
from perfreview.models.evaluation import Evaluation
from perfreview.models.evaluation_cycle import EvaluationCycle
from perfreview.models.organization import Organization
from perfreview.models.user import User


def as_uuid(value: uuid.UUID | str, what: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        # malformed ids are just as absent as unknown ones
        raise NotFoundError(f"{what} not found", details={"id": str(value)})


def get_organization(ctx: ServiceContext, *, for_update: bool = False) -> Organization:
    q = ctx.db.query(Organization).filter(Organization.id == ctx.organization_id)
    if for_update:
        q = q.with_for_update()
    org = q.one_or_none()
    if not org:
        raise NotFoundError("Organization not found")
    return org


def get_cycle_or_404(ctx: ServiceContext, cycle_id: uuid.UUID | str, *, for_update: bool = False) -> EvaluationCycle:
    cid = as_uuid(cycle_id, "Cycle")
    q = ctx.db.query(EvaluationCycle).filter(EvaluationCycle.id == cid)
    if for_update:
        q = q.with_for_update()
    cycle = q.one_or_none()
    if not cycle or cycle.organization_id != ctx.organization_id:
        raise NotFoundError("Cycle not found", details={"id": str(cycle_id)})
    return cycle


def get_evaluation_or_404(
    ctx: ServiceContext, evaluation_id: uuid.UUID | str, *, for_update: bool = False
) -> tuple[Evaluation, EvaluationCycle]:
    eid = as_uuid(evaluation_id, "Evaluation")
    q = ctx.db.query(Evaluation).filter(Evaluation.id == eid)
    if for_update:
        q = q.with_for_update()
    evaluation = q.one_or_none()
    if not evaluation:
        raise NotFoundError("Evaluation not found", details={"id": str(evaluation_id)})

    cycle = ctx.db.get(EvaluationCycle, evaluation.cycle_id)
    if not cycle or cycle.organization_id != ctx.organization_id:
        raise NotFoundError("Evaluation not found", details={"id": str(evaluation_id)})
    return evaluation, cycle


def get_user_in_org_or_404(ctx: ServiceContext, user_id: uuid.UUID | str) -> User:
    uid = as_uuid(user_id, "User")
    user = ctx.db.get(User, uid)
    if not user or user.organization_id != ctx.organization_id:
        raise NotFoundError("User not found", details={"id": str(user_id)})
    return user


def get_competency_or_404(ctx: ServiceContext, competency_id: uuid.UUID | str) -> Competency:
    cid = as_uuid(competency_id, "Competency")
    competency = ctx.db.get(Competency, cid)
    if not competency or competency.organization_id != ctx.organization_id:
        raise NotFoundError("Competency not found", details={"id": str(competency_id)})
    return competency
