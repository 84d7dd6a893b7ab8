from fastapi import APIRouter, Depends, Query, status

from perfreview.core.context import ServiceContext, get_context
from perfreview.core.rbac import require_roles
from perfreview.models.competency import Competency
from perfreview.models.user import User
from perfreview.schemas.competency import (
    CompetencyCategory,
    CompetencyCreate,
    CompetencyInitOut,
    CompetencyOut,
    CompetencyUpdate,
)
from perfreview.services import competency_catalog

router = APIRouter(prefix="/competencies", tags=["competencies"])


def to_out(c: Competency, rating_count: int = 0) -> CompetencyOut:
    return CompetencyOut(
        id=str(c.id),
        organization_id=str(c.organization_id),
        name=c.name,
        description=c.description,
        category=c.category,
        behaviors=list(c.behaviors or []),
        order=c.order,
        is_active=c.is_active,
        rating_count=rating_count,
        created_at=c.created_at,
        updated_at=c.updated_at,
    )


@router.get("", response_model=list[CompetencyOut])
def list_competencies(
    category: CompetencyCategory | None = Query(default=None),
    active: bool | None = Query(default=None),
    ctx: ServiceContext = Depends(get_context),
):
    rows = competency_catalog.list_competencies(ctx, category=category, active=active)
    counts = competency_catalog.rating_counts(ctx, [c.id for c in rows])
    return [to_out(c, counts.get(c.id, 0)) for c in rows]


@router.post("", response_model=CompetencyOut, status_code=status.HTTP_201_CREATED)
def create_competency(
    payload: CompetencyCreate,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    return to_out(competency_catalog.create_competency(ctx, payload))


@router.post("/init", response_model=CompetencyInitOut, status_code=status.HTTP_201_CREATED)
def init_default_competencies(
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN")),
):
    """Seed the organization's default rubric. Refused once any active competency exists."""
    created = competency_catalog.init_default_competencies(ctx)
    return CompetencyInitOut(
        message=f"{len(created)} default competencies created",
        competencies=[to_out(c) for c in created],
    )


@router.patch("/{competency_id}", response_model=CompetencyOut)
def update_competency(
    competency_id: str,
    payload: CompetencyUpdate,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    c = competency_catalog.update_competency(ctx, competency_id, payload)
    return to_out(c, competency_catalog.rating_counts(ctx, [c.id]).get(c.id, 0))


@router.delete("/{competency_id}", response_model=CompetencyOut)
def deactivate_competency(
    competency_id: str,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    """Soft delete: ratings that reference the competency stay valid."""
    c = competency_catalog.deactivate_competency(ctx, competency_id)
    return to_out(c, competency_catalog.rating_counts(ctx, [c.id]).get(c.id, 0))
