from fastapi import APIRouter, Depends, Header, Query, status

from perfreview.core.context import ServiceContext, get_context
from perfreview.core.idempotency import run_idempotent
from perfreview.core.rbac import require_roles
from perfreview.models.evaluation_cycle import EvaluationCycle
from perfreview.models.user import User
from perfreview.schemas.evaluation_cycle import (
    EvaluationCycleCreate,
    EvaluationCycleOut,
    EvaluationCycleUpdate,
    EvaluationCycleWithStatsOut,
    GenerationOut,
    PeerNominationCreate,
    PeerNominationOut,
    PhaseOut,
)
from perfreview.schemas.pagination import PaginatedResponse
from perfreview.services import assignment_generator, cycle_manager
from perfreview.services.lookups import get_cycle_or_404

router = APIRouter(prefix="/evaluation-cycles", tags=["evaluation-cycles"])


def to_out(c: EvaluationCycle, *, generated: int | None = None) -> EvaluationCycleOut:
    return EvaluationCycleOut(
        id=str(c.id),
        organization_id=str(c.organization_id),
        name=c.name,
        type=c.type,
        status=c.status,
        start_date=c.start_date,
        end_date=c.end_date,
        components=list(cycle_manager.cycle_components(c)),
        phases=[
            PhaseOut(
                id=str(p.id),
                type=p.type,
                name=p.name,
                description=p.description,
                order=p.order,
                start_date=p.start_date,
                end_date=p.end_date,
            )
            for p in c.phases
        ],
        created_by_user_id=str(c.created_by_user_id) if c.created_by_user_id else None,
        created_at=c.created_at,
        updated_at=c.updated_at,
        generated_evaluations=generated,
    )


def to_out_with_stats(c: EvaluationCycle, counts: dict[str, int]) -> EvaluationCycleWithStatsOut:
    return EvaluationCycleWithStatsOut(
        **to_out(c).model_dump(),
        evaluation_count=sum(counts.values()),
        evaluations_by_status=counts,
    )


@router.post("", response_model=EvaluationCycleOut, status_code=status.HTTP_201_CREATED)
def create_cycle(
    payload: EvaluationCycleCreate,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Create a DRAFT cycle. With `auto_generate`, the cycle's evaluations are
    generated in the same transaction and the count is returned.
    """

    def work() -> EvaluationCycleOut:
        cycle = cycle_manager.create_cycle(
            ctx,
            name=payload.name,
            type=payload.type,
            start_date=payload.start_date,
            end_date=payload.end_date,
            components=payload.components,
            with_default_phases=payload.with_default_phases,
        )
        generated = None
        if payload.auto_generate:
            generated = assignment_generator.generate_evaluations(ctx, cycle.id)
        return to_out(cycle, generated=generated)

    return run_idempotent(
        ctx,
        key=idempotency_key,
        method="POST",
        route="/evaluation-cycles",
        payload=payload.model_dump(mode="json"),
        status_code=201,
        work=work,
        out_model=EvaluationCycleOut,
    )


@router.get("")
def list_cycles(
    status_filter: str | None = Query(default=None, alias="status", description="DRAFT, ACTIVE, COMPLETED, ARCHIVED"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    include_pagination: bool = Query(default=False, description="Include pagination metadata"),
    ctx: ServiceContext = Depends(get_context),
):
    """
    List the organization's cycles, newest first, with phases and evaluation counts.

    Use ?include_pagination=true to get pagination metadata.
    """
    rows = [to_out_with_stats(c, counts) for c, counts in cycle_manager.list_cycles(ctx, status=status_filter)]
    page = PaginatedResponse[EvaluationCycleWithStatsOut].slice(rows, limit=limit, offset=offset)
    return page if include_pagination else page.items


@router.get("/{cycle_id}", response_model=EvaluationCycleWithStatsOut)
def get_cycle(cycle_id: str, ctx: ServiceContext = Depends(get_context)):
    cycle = get_cycle_or_404(ctx, cycle_id)
    counts = cycle_manager.evaluation_counts(ctx, [cycle.id])[cycle.id]
    return to_out_with_stats(cycle, counts)


@router.patch("/{cycle_id}", response_model=EvaluationCycleOut)
def update_cycle(
    cycle_id: str,
    payload: EvaluationCycleUpdate,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    cycle = cycle_manager.update_cycle(ctx, cycle_id, **payload.model_dump(exclude_unset=True))
    return to_out(cycle)


@router.post("/{cycle_id}/activate", response_model=EvaluationCycleOut)
def activate_cycle(
    cycle_id: str,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    return to_out(cycle_manager.activate_cycle(ctx, cycle_id))


@router.post("/{cycle_id}/complete", response_model=EvaluationCycleOut)
def complete_cycle(
    cycle_id: str,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    return to_out(cycle_manager.complete_cycle(ctx, cycle_id))


@router.post("/{cycle_id}/archive", response_model=EvaluationCycleOut)
def archive_cycle(
    cycle_id: str,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    return to_out(cycle_manager.archive_cycle(ctx, cycle_id))


@router.post("/{cycle_id}/cancel", response_model=EvaluationCycleOut)
def cancel_cycle(
    cycle_id: str,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    return to_out(cycle_manager.cancel_cycle(ctx, cycle_id))


@router.post("/{cycle_id}/generate", response_model=GenerationOut)
def generate_evaluations(
    cycle_id: str,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    created = assignment_generator.generate_evaluations(ctx, cycle_id)
    return GenerationOut(cycle_id=cycle_id, generated_evaluations=created)


@router.post(
    "/{cycle_id}/peer-nominations",
    response_model=PeerNominationOut,
    status_code=status.HTTP_201_CREATED,
)
def nominate_peers(
    cycle_id: str,
    payload: PeerNominationCreate,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    peers = assignment_generator.nominate_peers(ctx, cycle_id, payload.evaluatee_id, payload.peer_ids)
    return PeerNominationOut(
        cycle_id=cycle_id,
        evaluatee_id=payload.evaluatee_id,
        peer_ids=[str(p) for p in peers],
    )
