"""
Competency catalog: the rubric evaluations are scored against.

Competencies are never hard-deleted; retiring one flips `is_active` so the
ratings that already reference it stay valid.
"""
from __future__ import annotations

from sqlalchemy import func

from perfreview.core.app_logger import get_logger
from perfreview.core.audit import log_event
from perfreview.core.context import ServiceContext
from perfreview.core.errors import ConflictError, ValidationError
from perfreview.models.competency import Competency
from perfreview.models.competency_rating import CompetencyRating
from perfreview.schemas.competency import CompetencyCreate, CompetencyUpdate
from perfreview.services.lookups import get_competency_or_404

logger = get_logger("competencies")

DEFAULT_COMPETENCIES: list[dict] = [
    {
        "name": "Communication",
        "description": "Communicates clearly and effectively and works well with others",
        "category": "CORE",
        "behaviors": [
            "Shares information clearly and concisely",
            "Listens actively and asks for feedback",
            "Respects differing opinions and keeps discussions constructive",
        ],
        "order": 1,
    },
    {
        "name": "Teamwork",
        "description": "Collaborates as part of the team and contributes to shared goals",
        "category": "CORE",
        "behaviors": [
            "Understands team goals and contributes actively",
            "Supports teammates and shares knowledge",
            "Resolves conflicts constructively",
        ],
        "order": 2,
    },
    {
        "name": "Problem Solving",
        "description": "Identifies problems and finds and executes effective solutions",
        "category": "CORE",
        "behaviors": [
            "Analyzes root causes",
            "Proposes creative solutions",
            "Executes solutions and evaluates the outcome",
        ],
        "order": 3,
    },
    {
        "name": "Vision Setting",
        "description": "Sets a clear direction and leads the team towards it",
        "category": "LEADERSHIP",
        "behaviors": [
            "Communicates a clear future direction",
            "Involves and motivates team members",
            "Adapts to change",
        ],
        "order": 4,
    },
    {
        "name": "People Development",
        "description": "Supports the growth and development of team members",
        "category": "LEADERSHIP",
        "behaviors": [
            "Knows each member's strengths and growth areas",
            "Gives constructive feedback",
            "Creates growth opportunities",
        ],
        "order": 5,
    },
]


def _name_taken(ctx: ServiceContext, name: str, *, exclude_id=None) -> bool:
    q = ctx.db.query(Competency.id).filter(
        Competency.organization_id == ctx.organization_id,
        Competency.name == name,
        Competency.is_active.is_(True),
    )
    if exclude_id is not None:
        q = q.filter(Competency.id != exclude_id)
    return q.first() is not None


def rating_counts(ctx: ServiceContext, competency_ids: list) -> dict:
    if not competency_ids:
        return {}
    rows = (
        ctx.db.query(CompetencyRating.competency_id, func.count(CompetencyRating.id))
        .filter(CompetencyRating.competency_id.in_(competency_ids))
        .group_by(CompetencyRating.competency_id)
        .all()
    )
    return {cid: n for cid, n in rows}


def list_competencies(
    ctx: ServiceContext,
    *,
    category: str | None = None,
    active: bool | None = None,
) -> list[Competency]:
    q = ctx.db.query(Competency).filter(Competency.organization_id == ctx.organization_id)
    if category:
        q = q.filter(Competency.category == category)
    if active is not None:
        q = q.filter(Competency.is_active.is_(active))
    return q.order_by(Competency.category, Competency.order, Competency.name).all()


def rubric_for_organization(ctx: ServiceContext, *, include_ids=()) -> list[Competency]:
    """
    Competencies an evaluation form is built from: every active competency,
    plus retired ones listed in `include_ids` (already rated on the evaluation).
    """
    include_ids = set(include_ids)
    rows = ctx.db.query(Competency).filter(Competency.organization_id == ctx.organization_id).all()
    picked = [c for c in rows if c.is_active or c.id in include_ids]
    return sorted(picked, key=lambda c: (c.order, c.name))


def create_competency(ctx: ServiceContext, payload: CompetencyCreate) -> Competency:
    if _name_taken(ctx, payload.name):
        raise ConflictError(
            "A competency with this name already exists",
            details={"name": payload.name},
        )

    c = Competency(
        organization_id=ctx.organization_id,
        name=payload.name,
        description=payload.description,
        category=payload.category,
        behaviors=list(payload.behaviors),
        order=payload.order,
        is_active=True,
    )
    ctx.db.add(c)
    ctx.db.flush()

    log_event(
        ctx=ctx,
        action="COMPETENCY_CREATED",
        entity_type="competency",
        entity_id=c.id,
        metadata={"name": c.name, "category": c.category},
    )
    return c


def update_competency(ctx: ServiceContext, competency_id, payload: CompetencyUpdate) -> Competency:
    c = get_competency_or_404(ctx, competency_id)
    changes = payload.model_dump(exclude_unset=True)

    new_name = changes.get("name", c.name)
    becomes_active = changes.get("is_active", c.is_active)
    if becomes_active and (new_name != c.name or not c.is_active):
        if _name_taken(ctx, new_name, exclude_id=c.id):
            raise ConflictError(
                "A competency with this name already exists",
                details={"name": new_name},
            )

    before = {k: getattr(c, k) for k in changes}
    for key, value in changes.items():
        setattr(c, key, list(value) if key == "behaviors" else value)

    log_event(
        ctx=ctx,
        action="COMPETENCY_UPDATED",
        entity_type="competency",
        entity_id=c.id,
        metadata={"before": before, "after": changes},
    )
    ctx.db.flush()
    return c


def deactivate_competency(ctx: ServiceContext, competency_id) -> Competency:
    c = get_competency_or_404(ctx, competency_id)
    if c.is_active:
        c.is_active = False
        log_event(
            ctx=ctx,
            action="COMPETENCY_DEACTIVATED",
            entity_type="competency",
            entity_id=c.id,
            metadata={"name": c.name},
        )
        ctx.db.flush()
    return c


def init_default_competencies(ctx: ServiceContext) -> list[Competency]:
    existing = (
        ctx.db.query(Competency.id)
        .filter(
            Competency.organization_id == ctx.organization_id,
            Competency.is_active.is_(True),
        )
        .count()
    )
    if existing:
        raise ValidationError(
            "Competencies already exist; default initialization skipped",
            details={"existing": existing},
        )

    created = []
    for item in DEFAULT_COMPETENCIES:
        c = Competency(
            organization_id=ctx.organization_id,
            name=item["name"],
            description=item["description"],
            category=item["category"],
            behaviors=list(item["behaviors"]),
            order=item["order"],
            is_active=True,
        )
        ctx.db.add(c)
        created.append(c)
    ctx.db.flush()

    log_event(
        ctx=ctx,
        action="COMPETENCIES_INITIALIZED",
        entity_type="organization",
        entity_id=ctx.organization_id,
        metadata={"count": len(created)},
    )
    logger.info("Seeded %d default competencies for organization %s", len(created), ctx.organization_id)
    return sorted(created, key=lambda c: (c.category, c.order))
