from fastapi import APIRouter, Depends, Header, Query

from perfreview.core.access import can_view_results
from perfreview.core.context import ServiceContext, get_context
from perfreview.core.errors import AuthorizationError
from perfreview.core.idempotency import run_idempotent
from perfreview.core.rbac import require_roles
from perfreview.models.competency import Competency
from perfreview.models.evaluation import Evaluation
from perfreview.models.evaluation_cycle import EvaluationCycle
from perfreview.models.user import User
from perfreview.schemas.evaluation import (
    CompetencyRatingOut,
    EvaluationDetailOut,
    EvaluationOut,
    ReviewPayload,
    RubricCompetencyOut,
    SaveDraftPayload,
    SubmitEvaluationPayload,
)
from perfreview.schemas.results import (
    AggregatedResultOut,
    CompetencyResultOut,
    CycleInfo,
    EvaluateeInfo,
    EvaluationResultsOut,
    OverallResultOut,
)
from perfreview.services import aggregator
from perfreview.services import evaluations as evaluation_service
from perfreview.services.lookups import get_cycle_or_404, get_user_in_org_or_404

router = APIRouter(prefix="/evaluations", tags=["evaluations"])


def eval_to_out(e: Evaluation) -> EvaluationOut:
    return EvaluationOut(
        id=str(e.id),
        cycle_id=str(e.cycle_id),
        evaluator_id=str(e.evaluator_id),
        evaluatee_id=str(e.evaluatee_id),
        type=e.type,
        status=e.status,
        submitted_at=e.submitted_at,
        created_at=e.created_at,
        updated_at=e.updated_at,
    )


def eval_to_detail(e: Evaluation, cycle: EvaluationCycle, competencies: list[Competency]) -> EvaluationDetailOut:
    return EvaluationDetailOut(
        **eval_to_out(e).model_dump(),
        cycle_status=cycle.status,
        overall_rating=e.overall_rating,
        overall_comments=e.overall_comments,
        strengths=e.strengths,
        improvements=e.improvements,
        career_goals=e.career_goals,
        development_plan=e.development_plan,
        manager_comments=e.manager_comments,
        competency_ratings=[
            CompetencyRatingOut(
                competency_id=str(cr.competency_id),
                rating=cr.rating,
                comments=cr.comments,
                behaviors=list(cr.behaviors or []),
                examples=cr.examples,
                improvement_areas=cr.improvement_areas,
            )
            for cr in e.competency_ratings
        ],
        competencies=[
            RubricCompetencyOut(
                id=str(c.id),
                name=c.name,
                description=c.description,
                category=c.category,
                behaviors=list(c.behaviors or []),
                order=c.order,
                is_active=c.is_active,
            )
            for c in competencies
        ],
    )


def result_to_out(result: aggregator.AggregatedResult) -> AggregatedResultOut:
    return AggregatedResultOut(
        per_competency=[
            CompetencyResultOut(
                competency_id=str(r.competency_id),
                name=r.name,
                category=r.category,
                average_rating=r.average_rating,
                by_type=r.by_type,
                sample_count=r.sample_count,
            )
            for r in result.per_competency
        ],
        overall=OverallResultOut(
            weighted_average=result.overall.weighted_average,
            self_vs_others_gap=result.overall.self_vs_others_gap,
            average_by_type=result.overall.average_by_type,
            weights_applied=result.overall.weights_applied,
            overall_rating_average=result.overall.overall_rating_average,
            overall_rating_by_type=result.overall.overall_rating_by_type,
        ),
        contributing_evaluations=result.contributing_evaluations,
        evaluation_count=result.evaluation_count,
    )


@router.get("", response_model=list[EvaluationOut])
def list_my_evaluations(
    cycle_id: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    ctx: ServiceContext = Depends(get_context),
):
    """Evaluations the current user has to write."""
    rows = evaluation_service.list_my_evaluations(ctx, cycle_id=cycle_id, status=status_filter)
    return [eval_to_out(e) for e in rows]


@router.get("/{evaluation_id}", response_model=EvaluationDetailOut)
def get_evaluation(evaluation_id: str, ctx: ServiceContext = Depends(get_context)):
    return eval_to_detail(*evaluation_service.get_evaluation_document(ctx, evaluation_id))


@router.patch("/{evaluation_id}", response_model=EvaluationDetailOut)
def save_draft(
    evaluation_id: str,
    payload: SaveDraftPayload,
    ctx: ServiceContext = Depends(get_context),
):
    """Autosave target: the body is the full snapshot of the form, not a diff."""
    evaluation_service.save_draft(ctx, evaluation_id, payload)
    return eval_to_detail(*evaluation_service.get_evaluation_document(ctx, evaluation_id))


@router.post("/{evaluation_id}/submit", response_model=EvaluationDetailOut)
def submit_evaluation(
    evaluation_id: str,
    payload: SubmitEvaluationPayload,
    ctx: ServiceContext = Depends(get_context),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    def work() -> EvaluationDetailOut:
        evaluation_service.submit_evaluation(ctx, evaluation_id, payload)
        return eval_to_detail(*evaluation_service.get_evaluation_document(ctx, evaluation_id))

    return run_idempotent(
        ctx,
        key=idempotency_key,
        method="POST",
        route="/evaluations/{evaluation_id}/submit",
        payload={"evaluation_id": evaluation_id, **payload.model_dump(mode="json")},
        status_code=200,
        work=work,
        out_model=EvaluationDetailOut,
    )


@router.post("/{evaluation_id}/review", response_model=EvaluationOut)
def review_evaluation(
    evaluation_id: str,
    payload: ReviewPayload,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    return eval_to_out(evaluation_service.review_evaluation(ctx, evaluation_id, payload))


@router.post("/{evaluation_id}/approve", response_model=EvaluationOut)
def approve_evaluation(
    evaluation_id: str,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    return eval_to_out(evaluation_service.approve_evaluation(ctx, evaluation_id))


@router.post("/{evaluation_id}/share", response_model=EvaluationOut)
def share_evaluation(
    evaluation_id: str,
    ctx: ServiceContext = Depends(get_context),
    _: User = Depends(require_roles("ADMIN", "MANAGER")),
):
    return eval_to_out(evaluation_service.share_evaluation(ctx, evaluation_id))


@router.get("/{cycle_id}/results", response_model=EvaluationResultsOut)
def get_results(
    cycle_id: str,
    evaluatee_id: str = Query(alias="evaluateeId"),
    ctx: ServiceContext = Depends(get_context),
):
    """Aggregated scores for one evaluatee in one cycle."""
    cycle = get_cycle_or_404(ctx, cycle_id)
    evaluatee = get_user_in_org_or_404(ctx, evaluatee_id)
    if not can_view_results(ctx, evaluatee.id):
        raise AuthorizationError("Only admins, the evaluatee or their manager can view results")

    result = aggregator.aggregate(ctx, cycle.id, evaluatee.id)
    return EvaluationResultsOut(
        **result_to_out(result).model_dump(),
        evaluatee=EvaluateeInfo(id=str(evaluatee.id), full_name=evaluatee.full_name, email=evaluatee.email),
        cycle=CycleInfo(
            id=str(cycle.id),
            name=cycle.name,
            type=cycle.type,
            status=cycle.status,
            start_date=cycle.start_date,
            end_date=cycle.end_date,
        ),
    )
