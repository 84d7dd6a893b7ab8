# seed_dev.py
from datetime import date

from sqlalchemy.orm import Session

from perfreview.core.context import ServiceContext
from perfreview.db.base import Base
from perfreview.db.session import SessionLocal, engine
from perfreview.models.competency import Competency
from perfreview.models.evaluation import Evaluation
from perfreview.models.evaluation_cycle import EvaluationCycle
from perfreview.models.organization import Organization
from perfreview.models.team import Team, TeamMember
from perfreview.models.user import User
from perfreview.services import assignment_generator, competency_catalog, cycle_manager


# ---------- helpers: org / people ----------

def get_or_create_org(db: Session, name: str) -> Organization:
    o = db.query(Organization).filter(Organization.name == name).one_or_none()
    if o:
        return o
    o = Organization(name=name, settings={"peer_policy": "teammates", "max_peers": 3})
    db.add(o)
    db.commit()
    db.refresh(o)
    return o


def get_or_create_user(db: Session, org: Organization, email: str, full_name: str, role: str = "MEMBER") -> User:
    u = db.query(User).filter(User.email == email).one_or_none()
    if u:
        # keep these up to date in dev
        changed = False
        if u.full_name != full_name:
            u.full_name = full_name
            changed = True
        if u.role != role:
            u.role = role
            changed = True
        if not u.is_active:
            u.is_active = True
            changed = True
        if changed:
            db.commit()
            db.refresh(u)
        return u

    u = User(organization_id=org.id, email=email, full_name=full_name, role=role, is_active=True)
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


def get_or_create_team(db: Session, org: Organization, name: str, manager: User, members: list[User]) -> Team:
    t = db.query(Team).filter(Team.organization_id == org.id, Team.name == name).one_or_none()
    if not t:
        t = Team(organization_id=org.id, name=name)
        db.add(t)
        db.flush()
    t.manager_id = manager.id

    current = {m.user_id for m in t.members}
    for m in members:
        if m.id not in current:
            db.add(TeamMember(team_id=t.id, user_id=m.id))
    db.commit()
    db.refresh(t)
    return t


# ---------- helpers: rubric / cycle ----------

def ensure_competencies(ctx: ServiceContext) -> list[Competency]:
    existing = competency_catalog.list_competencies(ctx, active=True)
    if existing:
        return existing
    created = competency_catalog.init_default_competencies(ctx)
    ctx.db.commit()
    return created


def get_or_create_cycle(ctx: ServiceContext, *, name: str, start_date: date, end_date: date) -> EvaluationCycle:
    c = (
        ctx.db.query(EvaluationCycle)
        .filter(EvaluationCycle.organization_id == ctx.organization_id, EvaluationCycle.name == name)
        .one_or_none()
    )
    if c:
        return c
    c = cycle_manager.create_cycle(
        ctx,
        name=name,
        type="360",
        start_date=start_date,
        end_date=end_date,
        with_default_phases=True,
    )
    cycle_manager.activate_cycle(ctx, c.id)
    ctx.db.commit()
    return c


# ---------- main ----------

def main():
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        org = get_or_create_org(db, "Acme Local")

        # ---- People ----
        admin = get_or_create_user(db, org, "admin@local.test", "Admin Local", role="ADMIN")
        manager = get_or_create_user(db, org, "manager@local.test", "Manager Local", role="MANAGER")
        alice = get_or_create_user(db, org, "alice@local.test", "Alice Local")
        bob = get_or_create_user(db, org, "bob@local.test", "Bob Local")
        carol = get_or_create_user(db, org, "carol@local.test", "Carol Local")

        team = get_or_create_team(db, org, "Platform", manager, [alice, bob, carol])

        ctx = ServiceContext.for_user(db, admin)

        # ---- Rubric ----
        competencies = ensure_competencies(ctx)

        # ---- Cycle + evaluations ----
        cycle = get_or_create_cycle(ctx, name="Dev Cycle - H1 2025", start_date=date(2025, 1, 1), end_date=date(2025, 6, 30))
        created = assignment_generator.generate_evaluations(ctx, cycle.id)
        db.commit()

        total = db.query(Evaluation).filter(Evaluation.cycle_id == cycle.id).count()

        print("\n=== DEV SEED COMPLETE ===")
        print(f"Organization: {org.name} ({org.id})")
        print("Users:")
        for u in (admin, manager, alice, bob, carol):
            print(f"  {u.role:<8} {u.email}")
        print(f"\nTeam: {team.name} (manager={manager.email})")
        print(f"Competencies: {len(competencies)}")
        print(f"\nCycle: {cycle.id} (status={cycle.status})")
        print(f"Evaluations: {total} ({created} created now)")

        print("\nNext API steps:")
        print("  GET  /evaluations                          (X-User-Email: bob@local.test)")
        print("  PATCH /evaluations/<eval_id>               (autosave, kind=draft)")
        print("  POST /evaluations/<eval_id>/submit         (Idempotency-Key: <uuid>)")
        print(f"  GET  /evaluations/{cycle.id}/results?evaluateeId={alice.id}")

    finally:
        db.close()


if __name__ == "__main__":
    main()
