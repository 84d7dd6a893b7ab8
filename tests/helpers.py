from datetime import date

from sqlalchemy.orm import Session

from perfreview.core.clock import utcnow
from perfreview.core.context import ServiceContext
from perfreview.models.competency import Competency
from perfreview.models.competency_rating import CompetencyRating
from perfreview.models.evaluation import Evaluation
from perfreview.models.evaluation_cycle import EvaluationCycle
from perfreview.models.organization import Organization
from perfreview.models.team import Team, TeamMember
from perfreview.models.user import User


def create_org(db: Session, name="Acme", settings: dict | None = None) -> Organization:
    o = Organization(name=name, settings=settings)
    db.add(o)
    db.commit()
    db.refresh(o)
    return o


def create_user(db: Session, org: Organization, email: str, full_name="User", role="MEMBER", is_active=True) -> User:
    u = User(organization_id=org.id, email=email, full_name=full_name, role=role, is_active=is_active)
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


def create_team(db: Session, org: Organization, name: str, manager: User | None = None, members=()) -> Team:
    t = Team(organization_id=org.id, name=name, manager_id=manager.id if manager else None)
    db.add(t)
    db.flush()
    for m in members:
        db.add(TeamMember(team_id=t.id, user_id=m.id))
    db.commit()
    db.refresh(t)
    return t


def create_competency(
    db: Session,
    org: Organization,
    name: str,
    category="CORE",
    order=0,
    is_active=True,
    behaviors=("Does the thing",),
) -> Competency:
    c = Competency(
        organization_id=org.id,
        name=name,
        description=f"{name} description",
        category=category,
        behaviors=list(behaviors),
        order=order,
        is_active=is_active,
    )
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def create_cycle(
    db: Session,
    org: Organization,
    created_by: User | None = None,
    status="ACTIVE",
    type="360",
    start_date=date(2025, 1, 1),
    end_date=date(2025, 3, 31),
    components: list[str] | None = None,
    name="H1 2025 Reviews",
) -> EvaluationCycle:
    c = EvaluationCycle(
        organization_id=org.id,
        name=name,
        type=type,
        status=status,
        start_date=start_date,
        end_date=end_date,
        components=components,
        created_by_user_id=created_by.id if created_by else None,
    )
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def create_evaluation(
    db: Session,
    cycle: EvaluationCycle,
    evaluator: User,
    evaluatee: User,
    type="PEER",
    status="DRAFT",
    overall_rating: float | None = None,
    ratings: dict | None = None,
) -> Evaluation:
    """`ratings` maps Competency -> rating."""
    e = Evaluation(
        cycle_id=cycle.id,
        evaluator_id=evaluator.id,
        evaluatee_id=evaluatee.id,
        type=type,
        status=status,
        overall_rating=overall_rating,
        submitted_at=None if status == "DRAFT" else utcnow(),
    )
    for competency, rating in (ratings or {}).items():
        e.competency_ratings.append(CompetencyRating(competency_id=competency.id, rating=rating))
    db.add(e)
    db.commit()
    db.refresh(e)
    return e


def ctx_for(db: Session, user: User) -> ServiceContext:
    return ServiceContext.for_user(db, user)


def auth(user: User) -> dict[str, str]:
    return {"X-User-Email": user.email}
