import uuid

from sqlalchemy.orm import Session

from perfreview.core.context import ServiceContext
from perfreview.core.errors import AuthorizationError
from perfreview.models.evaluation import Evaluation
from perfreview.models.team import Team, TeamMember


def is_manager_of(db: Session, manager_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    """True when `manager_id` manages a team that `user_id` belongs to."""
    row = (
        db.query(Team.id)
        .join(TeamMember, TeamMember.team_id == Team.id)
        .filter(Team.manager_id == manager_id, TeamMember.user_id == user_id)
        .first()
    )
    return row is not None


def assert_user_is_evaluator(ctx: ServiceContext, evaluation: Evaluation):
    if ctx.actor_id != evaluation.evaluator_id:
        raise AuthorizationError("Only the assigned evaluator can perform this action")


def can_view_evaluation(ctx: ServiceContext, evaluation: Evaluation) -> bool:
    if ctx.actor_role == "ADMIN":
        return True
    if ctx.actor_id == evaluation.evaluator_id:
        return True
    # evaluatees only see their evaluations once they have been shared
    if ctx.actor_id == evaluation.evaluatee_id:
        return evaluation.status == "SHARED"
    return False


def can_view_results(ctx: ServiceContext, evaluatee_id: uuid.UUID) -> bool:
    if ctx.actor_role == "ADMIN":
        return True
    if ctx.actor_id == evaluatee_id:
        return True
    return ctx.actor_id is not None and is_manager_of(ctx.db, ctx.actor_id, evaluatee_id)
