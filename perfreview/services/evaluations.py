"""
Evaluation workflow on the server side.

    DRAFT --submit--> SUBMITTED --review--> REVIEWED --approve--> APPROVED --share--> SHARED
      ^                   |
      +---review(approved=false)

Only the evaluator edits, only while the evaluation is DRAFT and its cycle is
ACTIVE. Every write replaces the whole field snapshot, ratings included.
"""
from __future__ import annotations

from perfreview.core.access import assert_user_is_evaluator, can_view_evaluation, is_manager_of
from perfreview.core.app_logger import get_logger
from perfreview.core.audit import log_event
from perfreview.core.clock import utcnow
from perfreview.core.context import ServiceContext
from perfreview.core.errors import AuthorizationError, ConflictError, NotFoundError, StateError, ValidationError
from perfreview.core.rbac import has_role
from perfreview.models.competency import Competency
from perfreview.models.competency_rating import CompetencyRating
from perfreview.models.evaluation import Evaluation
from perfreview.models.evaluation_cycle import EvaluationCycle
from perfreview.schemas.evaluation import ReviewPayload, SaveDraftPayload, SubmitEvaluationPayload
from perfreview.services.competency_catalog import rubric_for_organization
from perfreview.services.lookups import as_uuid, get_cycle_or_404, get_evaluation_or_404

logger = get_logger("evaluations")

TEXT_FIELDS = (
    "overall_comments",
    "strengths",
    "improvements",
    "career_goals",
    "development_plan",
)


def list_my_evaluations(ctx: ServiceContext, *, cycle_id=None, status: str | None = None) -> list[Evaluation]:
    q = (
        ctx.db.query(Evaluation)
        .join(EvaluationCycle, EvaluationCycle.id == Evaluation.cycle_id)
        .filter(
            EvaluationCycle.organization_id == ctx.organization_id,
            Evaluation.evaluator_id == ctx.actor_id,
        )
    )
    if cycle_id is not None:
        q = q.filter(Evaluation.cycle_id == get_cycle_or_404(ctx, cycle_id).id)
    if status:
        q = q.filter(Evaluation.status == status)
    return q.order_by(Evaluation.created_at, Evaluation.id).all()


def get_evaluation_document(ctx: ServiceContext, evaluation_id) -> tuple[Evaluation, EvaluationCycle, list[Competency]]:
    """The evaluation, its cycle and the rubric the form is built from."""
    evaluation, cycle = get_evaluation_or_404(ctx, evaluation_id)
    if not can_view_evaluation(ctx, evaluation):
        # evaluations the caller may not see are reported as absent
        raise NotFoundError("Evaluation not found", details={"id": str(evaluation_id)})

    rated = [cr.competency_id for cr in evaluation.competency_ratings]
    return evaluation, cycle, rubric_for_organization(ctx, include_ids=rated)


def _resolve_competencies(ctx: ServiceContext, competency_ratings) -> dict:
    ids = {}
    for cr in competency_ratings:
        try:
            cid = as_uuid(cr.competency_id, "Competency")
        except NotFoundError:
            raise ValidationError("Malformed competency id", details={"competency_id": cr.competency_id})
        if cid in ids.values():
            raise ValidationError("Competency rated twice", details={"competency_id": str(cid)})
        ids[cr.competency_id] = cid

    if ids:
        found = {
            row.id
            for row in ctx.db.query(Competency.id).filter(
                Competency.id.in_(list(ids.values())),
                Competency.organization_id == ctx.organization_id,
            )
        }
        unknown = sorted(str(cid) for cid in ids.values() if cid not in found)
        if unknown:
            raise ValidationError("Unknown competencies", details={"competency_ids": unknown})
    return ids


def _apply_snapshot(ctx: ServiceContext, evaluation: Evaluation, payload: SaveDraftPayload) -> None:
    ids = _resolve_competencies(ctx, payload.competency_ratings)

    evaluation.overall_rating = payload.overall_rating
    for name in TEXT_FIELDS:
        setattr(evaluation, name, getattr(payload, name))

    # replace, not merge: the snapshot is the whole truth
    evaluation.competency_ratings.clear()
    ctx.db.flush()
    for cr in payload.competency_ratings:
        evaluation.competency_ratings.append(
            CompetencyRating(
                competency_id=ids[cr.competency_id],
                rating=cr.rating,
                comments=cr.comments,
                behaviors=list(cr.behaviors),
                examples=cr.examples,
                improvement_areas=cr.improvement_areas,
            )
        )
    evaluation.updated_at = utcnow()


def _load_for_edit(ctx: ServiceContext, evaluation_id) -> tuple[Evaluation, EvaluationCycle]:
    evaluation, cycle = get_evaluation_or_404(ctx, evaluation_id, for_update=True)
    assert_user_is_evaluator(ctx, evaluation)
    if cycle.status != "ACTIVE":
        raise ConflictError("Evaluation cycle is not active", details={"cycle_status": cycle.status})
    if evaluation.status != "DRAFT":
        raise ConflictError("Evaluation has already been submitted", details={"status": evaluation.status})
    return evaluation, cycle


def save_draft(ctx: ServiceContext, evaluation_id, payload: SaveDraftPayload) -> Evaluation:
    evaluation, _ = _load_for_edit(ctx, evaluation_id)
    _apply_snapshot(ctx, evaluation, payload)

    log_event(
        ctx=ctx,
        action="EVALUATION_DRAFT_SAVED",
        entity_type="evaluation",
        entity_id=evaluation.id,
        metadata={"competency_ratings": len(payload.competency_ratings)},
    )
    ctx.db.flush()
    return evaluation


def submit_evaluation(ctx: ServiceContext, evaluation_id, payload: SubmitEvaluationPayload) -> Evaluation:
    """Store the final snapshot and move DRAFT -> SUBMITTED in one unit of work."""
    evaluation, cycle = _load_for_edit(ctx, evaluation_id)
    _apply_snapshot(ctx, evaluation, payload)

    now = utcnow()
    evaluation.status = "SUBMITTED"
    evaluation.submitted_at = now
    evaluation.updated_at = now

    log_event(
        ctx=ctx,
        action="EVALUATION_SUBMITTED",
        entity_type="evaluation",
        entity_id=evaluation.id,
        metadata={
            "cycle_id": str(cycle.id),
            "type": evaluation.type,
            "overall_rating": payload.overall_rating,
            "competency_ratings": len(payload.competency_ratings),
        },
    )
    ctx.db.flush()
    logger.info("Evaluation %s submitted in cycle %s", evaluation.id, cycle.id)
    return evaluation


def _load_for_review(ctx: ServiceContext, evaluation_id, expected_status: str) -> Evaluation:
    evaluation, _ = get_evaluation_or_404(ctx, evaluation_id, for_update=True)
    if not has_role(ctx.actor, "ADMIN"):
        if not (has_role(ctx.actor, "MANAGER") and is_manager_of(ctx.db, ctx.actor_id, evaluation.evaluatee_id)):
            raise AuthorizationError("Only an admin or the evaluatee's manager can review evaluations")
    if evaluation.status != expected_status:
        raise StateError(
            f"Evaluation must be {expected_status}",
            details={"status": evaluation.status},
        )
    return evaluation


def review_evaluation(ctx: ServiceContext, evaluation_id, payload: ReviewPayload) -> Evaluation:
    evaluation = _load_for_review(ctx, evaluation_id, "SUBMITTED")
    now = utcnow()
    evaluation.manager_comments = payload.manager_comments
    evaluation.reviewed_by_id = ctx.actor_id
    evaluation.reviewed_at = now
    evaluation.updated_at = now

    if payload.approved:
        evaluation.status = "REVIEWED"
        action = "EVALUATION_REVIEWED"
    else:
        # returned to the evaluator for another pass
        evaluation.status = "DRAFT"
        evaluation.submitted_at = None
        action = "EVALUATION_RETURNED"

    log_event(
        ctx=ctx,
        action=action,
        entity_type="evaluation",
        entity_id=evaluation.id,
        metadata={"approved": payload.approved},
    )
    ctx.db.flush()
    return evaluation


def approve_evaluation(ctx: ServiceContext, evaluation_id) -> Evaluation:
    evaluation = _load_for_review(ctx, evaluation_id, "REVIEWED")
    evaluation.status = "APPROVED"
    evaluation.updated_at = utcnow()
    log_event(ctx=ctx, action="EVALUATION_APPROVED", entity_type="evaluation", entity_id=evaluation.id)
    ctx.db.flush()
    return evaluation


def share_evaluation(ctx: ServiceContext, evaluation_id) -> Evaluation:
    evaluation = _load_for_review(ctx, evaluation_id, "APPROVED")
    now = utcnow()
    evaluation.status = "SHARED"
    evaluation.shared_at = now
    evaluation.updated_at = now
    log_event(ctx=ctx, action="EVALUATION_SHARED", entity_type="evaluation", entity_id=evaluation.id)
    ctx.db.flush()
    return evaluation
