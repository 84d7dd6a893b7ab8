"""
Works out which evaluations a cycle needs from the organization's current
team structure and creates the missing ones.

Generation is additive and idempotent: existing evaluations (and whatever
the evaluator already wrote in them) are never touched or removed, so it is
safe to re-run after a new hire or a manager change, and safe to run twice
concurrently: the (cycle, evaluator, evaluatee, type) unique constraint turns
the losing insert into a no-op.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from perfreview.core.app_logger import get_logger
from perfreview.core.audit import log_event
from perfreview.core.config import settings
from perfreview.core.context import ServiceContext
from perfreview.core.errors import StateError, ValidationError
from perfreview.models.evaluation import Evaluation
from perfreview.models.evaluation_cycle import OPEN_CYCLE_STATUSES, EvaluationCycle
from perfreview.models.organization import Organization
from perfreview.models.peer_nomination import PeerNomination
from perfreview.models.team import Team
from perfreview.models.user import User
from perfreview.services.cycle_manager import cycle_components
from perfreview.services.lookups import get_cycle_or_404, get_organization, get_user_in_org_or_404

logger = get_logger("assignments")


@dataclass(frozen=True)
class AssignmentKey:
    evaluator_id: uuid.UUID
    evaluatee_id: uuid.UUID
    type: str


@dataclass(frozen=True)
class TeamSnapshot:
    id: uuid.UUID
    manager_id: uuid.UUID | None
    member_ids: tuple[uuid.UUID, ...]


@dataclass
class OrgStructure:
    """Read-only view of who is active and who manages whom."""

    active_user_ids: list[uuid.UUID]
    teams: list[TeamSnapshot] = field(default_factory=list)

    def __post_init__(self):
        self._active = set(self.active_user_ids)

    def is_active(self, user_id: uuid.UUID | None) -> bool:
        return user_id in self._active

    def teams_of(self, user_id: uuid.UUID) -> list[TeamSnapshot]:
        return [t for t in self.teams if user_id in t.member_ids]

    def managers_of(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        out: list[uuid.UUID] = []
        for t in self.teams_of(user_id):
            if t.manager_id and t.manager_id != user_id and t.manager_id not in out:
                out.append(t.manager_id)
        return out


def load_structure(db: Session, organization_id: uuid.UUID) -> OrgStructure:
    users = (
        db.query(User)
        .filter(User.organization_id == organization_id, User.is_active.is_(True))
        .order_by(User.email)
        .all()
    )
    rank = {u.id: i for i, u in enumerate(users)}

    teams = (
        db.query(Team)
        .filter(Team.organization_id == organization_id)
        .order_by(Team.name, Team.id)
        .all()
    )
    snapshots = []
    for t in teams:
        members = sorted(
            (m.user_id for m in t.members if m.user_id in rank),
            key=lambda uid: rank[uid],
        )
        snapshots.append(TeamSnapshot(id=t.id, manager_id=t.manager_id, member_ids=tuple(members)))

    return OrgStructure(active_user_ids=[u.id for u in users], teams=snapshots)


# ---------- peer selection ----------

class PeerStrategy(Protocol):
    def peers_for(self, evaluatee_id: uuid.UUID, structure: OrgStructure) -> list[uuid.UUID]:
        ...


class TeammatePeerStrategy:
    """
    Everyone sharing a team with the evaluatee, minus the evaluatee and that
    team's manager. A team the evaluatee manages holds reports, not peers.
    """

    def __init__(self, max_peers: int = 0):
        self.max_peers = max_peers

    def peers_for(self, evaluatee_id: uuid.UUID, structure: OrgStructure) -> list[uuid.UUID]:
        peers: list[uuid.UUID] = []
        for team in structure.teams_of(evaluatee_id):
            if team.manager_id == evaluatee_id:
                continue
            for member_id in team.member_ids:
                if member_id in (evaluatee_id, team.manager_id) or member_id in peers:
                    continue
                peers.append(member_id)
        if self.max_peers > 0:
            peers = peers[: self.max_peers]
        return peers


class NominatedPeerStrategy:
    """Explicit peer lists, keyed by evaluatee."""

    def __init__(self, nominations: dict[uuid.UUID, list[uuid.UUID]]):
        self.nominations = nominations

    @classmethod
    def from_db(cls, db: Session, cycle_id: uuid.UUID) -> "NominatedPeerStrategy":
        rows = (
            db.query(PeerNomination)
            .filter(PeerNomination.cycle_id == cycle_id)
            .order_by(PeerNomination.created_at, PeerNomination.id)
            .all()
        )
        nominations: dict[uuid.UUID, list[uuid.UUID]] = {}
        for r in rows:
            nominations.setdefault(r.evaluatee_id, []).append(r.peer_id)
        return cls(nominations)

    def peers_for(self, evaluatee_id: uuid.UUID, structure: OrgStructure) -> list[uuid.UUID]:
        return [p for p in self.nominations.get(evaluatee_id, []) if p != evaluatee_id]


def peer_strategy_for(db: Session, organization: Organization, cycle: EvaluationCycle) -> PeerStrategy:
    org_settings = organization.settings or {}
    policy = org_settings.get("peer_policy", settings.DEFAULT_PEER_POLICY)
    if policy == "nominated":
        return NominatedPeerStrategy.from_db(db, cycle.id)
    if policy == "teammates":
        return TeammatePeerStrategy(max_peers=int(org_settings.get("max_peers", settings.DEFAULT_MAX_PEERS)))
    raise ValidationError("Unknown peer policy", details={"peer_policy": policy})


# ---------- relationship computation ----------

def required_assignments(
    structure: OrgStructure,
    components: Iterable[str],
    peer_strategy: PeerStrategy,
) -> list[AssignmentKey]:
    """
    Every (evaluator, evaluatee, type) the components call for, in a stable
    order and without duplicates. Both ends must be active users; nobody ever
    evaluates themselves except through SELF.
    """
    components = set(components)
    keys: list[AssignmentKey] = []
    seen: set[AssignmentKey] = set()

    def add(evaluator_id, evaluatee_id, etype):
        if not structure.is_active(evaluator_id) or not structure.is_active(evaluatee_id):
            return
        if (evaluator_id == evaluatee_id) != (etype == "SELF"):
            return
        key = AssignmentKey(evaluator_id, evaluatee_id, etype)
        if key not in seen:
            seen.add(key)
            keys.append(key)

    for user_id in structure.active_user_ids:
        managers = structure.managers_of(user_id)

        if "SELF" in components:
            add(user_id, user_id, "SELF")

        for manager_id in managers:
            if "MANAGER" in components:
                add(manager_id, user_id, "MANAGER")
            if "UPWARD" in components:
                add(user_id, manager_id, "UPWARD")
            if "SKIP_LEVEL" in components:
                for skip_id in structure.managers_of(manager_id):
                    if skip_id != user_id:
                        add(skip_id, user_id, "SKIP_LEVEL")

        if "PEER" in components:
            for peer_id in peer_strategy.peers_for(user_id, structure):
                add(peer_id, user_id, "PEER")

    return keys


def existing_keys(db: Session, cycle_id: uuid.UUID) -> set[AssignmentKey]:
    rows = (
        db.query(Evaluation.evaluator_id, Evaluation.evaluatee_id, Evaluation.type)
        .filter(Evaluation.cycle_id == cycle_id)
        .all()
    )
    return {AssignmentKey(*row) for row in rows}


def generate_evaluations(
    ctx: ServiceContext,
    cycle_id,
    *,
    peer_strategy: PeerStrategy | None = None,
) -> int:
    """Create the cycle's missing evaluations in DRAFT; returns how many were created."""
    cycle = get_cycle_or_404(ctx, cycle_id)
    if cycle.status not in OPEN_CYCLE_STATUSES:
        raise StateError(
            "Evaluations can only be generated for DRAFT or ACTIVE cycles",
            details={"status": cycle.status},
        )

    structure = load_structure(ctx.db, ctx.organization_id)
    strategy = peer_strategy or peer_strategy_for(ctx.db, get_organization(ctx), cycle)
    wanted = required_assignments(structure, cycle_components(cycle), strategy)

    existing = existing_keys(ctx.db, cycle.id)

    created = 0
    for key in wanted:
        if key in existing:
            continue
        try:
            # SAVEPOINT per insert: a concurrent run that got there first only loses this row
            with ctx.db.begin_nested():
                ctx.db.add(
                    Evaluation(
                        cycle_id=cycle.id,
                        evaluator_id=key.evaluator_id,
                        evaluatee_id=key.evaluatee_id,
                        type=key.type,
                        status="DRAFT",
                    )
                )
                ctx.db.flush()
        except IntegrityError:
            logger.debug("Skipping duplicate evaluation %s in cycle %s", key, cycle.id)
            continue
        created += 1

    log_event(
        ctx=ctx,
        action="EVALUATIONS_GENERATED",
        entity_type="evaluation_cycle",
        entity_id=cycle.id,
        metadata={"required": len(wanted), "created": created},
    )
    logger.info("Cycle %s: %d evaluations required, %d created", cycle.id, len(wanted), created)
    return created


def nominate_peers(ctx: ServiceContext, cycle_id, evaluatee_id, peer_ids: list) -> list[uuid.UUID]:
    """Record explicit peers for an evaluatee; returns the evaluatee's full peer list."""
    cycle = get_cycle_or_404(ctx, cycle_id)
    if cycle.status not in OPEN_CYCLE_STATUSES:
        raise StateError("Peers can only be nominated for DRAFT or ACTIVE cycles", details={"status": cycle.status})

    evaluatee = get_user_in_org_or_404(ctx, evaluatee_id)
    peers = [get_user_in_org_or_404(ctx, pid) for pid in peer_ids]
    if any(p.id == evaluatee.id for p in peers):
        raise ValidationError("An evaluatee cannot be their own peer")

    current = {
        r.peer_id
        for r in ctx.db.query(PeerNomination).filter(
            PeerNomination.cycle_id == cycle.id,
            PeerNomination.evaluatee_id == evaluatee.id,
        )
    }
    added = []
    for p in peers:
        if p.id in current:
            continue
        ctx.db.add(PeerNomination(cycle_id=cycle.id, evaluatee_id=evaluatee.id, peer_id=p.id))
        current.add(p.id)
        added.append(str(p.id))
    ctx.db.flush()

    log_event(
        ctx=ctx,
        action="PEERS_NOMINATED",
        entity_type="evaluation_cycle",
        entity_id=cycle.id,
        metadata={"evaluatee_id": str(evaluatee.id), "added": added},
    )
    return NominatedPeerStrategy.from_db(ctx.db, cycle.id).nominations.get(evaluatee.id, [])
