"""
Evaluation cycle lifecycle.

    DRAFT -> ACTIVE -> COMPLETED -> ARCHIVED
    DRAFT / ACTIVE -> ARCHIVED      (cancel)

Status never moves backwards. Completing a cycle abandons whatever is still
in DRAFT: those evaluations can no longer be submitted.
"""
from __future__ import annotations

import uuid
from datetime import date, timedelta

from sqlalchemy import func

from perfreview.core.app_logger import get_logger
from perfreview.core.audit import log_event
from perfreview.core.clock import utcnow
from perfreview.core.context import ServiceContext
from perfreview.core.errors import ConflictError, StateError, ValidationError
from perfreview.models.evaluation import EVALUATION_TYPES, Evaluation
from perfreview.models.evaluation_cycle import (
    CYCLE_TYPES,
    OPEN_CYCLE_STATUSES,
    EvaluationCycle,
    EvaluationPhase,
)
from perfreview.services.lookups import get_cycle_or_404, get_organization

logger = get_logger("cycles")

ALL_COMPONENTS = ("SELF", "MANAGER", "PEER", "UPWARD", "SKIP_LEVEL")

COMPONENTS_BY_CYCLE_TYPE: dict[str, tuple[str, ...]] = {
    "SELF": ("SELF",),
    "PEER": ("PEER",),
    "MANAGER": ("MANAGER",),
    "UPWARD": ("UPWARD",),
    "SKIP_LEVEL": ("SKIP_LEVEL",),
    "360": ALL_COMPONENTS,
}

# (type, name, description, share of the cycle's days)
DEFAULT_PHASES = (
    ("SELF", "Self evaluation", "Reflect on your own results and growth", 0.3),
    ("PEER", "Peer evaluation", "Feedback from colleagues", 0.3),
    ("MANAGER", "Manager evaluation", "Manager assessment and feedback", 0.3),
    ("CALIBRATION", "Calibration", "Adjust and finalize evaluations", 0.1),
)


def cycle_components(cycle: EvaluationCycle) -> tuple[str, ...]:
    if cycle.components:
        return tuple(c for c in ALL_COMPONENTS if c in cycle.components)
    return COMPONENTS_BY_CYCLE_TYPE[cycle.type]


def default_phases(start_date: date, end_date: date) -> list[EvaluationPhase]:
    total_days = (end_date - start_date).days
    current = start_date
    phases = []
    for order, (ptype, name, description, ratio) in enumerate(DEFAULT_PHASES, start=1):
        phase_start = current
        current = current + timedelta(days=int(total_days * ratio))
        if order == len(DEFAULT_PHASES):
            current = end_date  # rounding leftovers go to the last phase
        phases.append(
            EvaluationPhase(
                type=ptype,
                name=name,
                description=description,
                order=order,
                start_date=phase_start,
                end_date=current,
            )
        )
    return phases


def _validate_dates(start_date: date, end_date: date) -> None:
    if start_date >= end_date:
        raise ValidationError(
            "end_date must be after start_date",
            details={"start_date": str(start_date), "end_date": str(end_date)},
        )


def _validate_components(components) -> list[str] | None:
    if components is None:
        return None
    unknown = sorted({c for c in components if c not in EVALUATION_TYPES})
    if unknown:
        raise ValidationError("Unknown evaluation components", details={"unknown": unknown})
    if not components:
        raise ValidationError("At least one evaluation component is required")
    return [c for c in ALL_COMPONENTS if c in components]


def _assert_no_overlap(ctx: ServiceContext, start_date: date, end_date: date, *, exclude_id=None) -> None:
    # the organization row serializes concurrent creates and reschedules; held until commit
    get_organization(ctx, for_update=True)
    q = ctx.db.query(EvaluationCycle).filter(
        EvaluationCycle.organization_id == ctx.organization_id,
        EvaluationCycle.status.in_(OPEN_CYCLE_STATUSES),
        EvaluationCycle.start_date <= end_date,
        EvaluationCycle.end_date >= start_date,
    )
    if exclude_id is not None:
        q = q.filter(EvaluationCycle.id != exclude_id)
    clash = q.first()
    if clash:
        raise ConflictError(
            "An open evaluation cycle already covers this period",
            details={"conflicting_cycle_id": str(clash.id)},
        )


def create_cycle(
    ctx: ServiceContext,
    *,
    name: str,
    type: str,
    start_date: date,
    end_date: date,
    components: list[str] | None = None,
    with_default_phases: bool = False,
) -> EvaluationCycle:
    if type not in CYCLE_TYPES:
        raise ValidationError("Unknown cycle type", details={"type": type})
    _validate_dates(start_date, end_date)
    components = _validate_components(components)
    _assert_no_overlap(ctx, start_date, end_date)

    c = EvaluationCycle(
        organization_id=ctx.organization_id,
        name=name,
        type=type,
        start_date=start_date,
        end_date=end_date,
        status="DRAFT",
        components=components,
        created_by_user_id=ctx.actor_id,
    )
    if with_default_phases:
        c.phases = default_phases(start_date, end_date)

    ctx.db.add(c)
    ctx.db.flush()  # ensures c.id exists for audit

    log_event(
        ctx=ctx,
        action="CYCLE_CREATED",
        entity_type="evaluation_cycle",
        entity_id=c.id,
        metadata={
            "name": name,
            "type": type,
            "start_date": str(start_date),
            "end_date": str(end_date),
            "status": "DRAFT",
        },
    )
    logger.info("Created cycle %s (%s) for organization %s", c.id, type, ctx.organization_id)
    return c


def update_cycle(
    ctx: ServiceContext,
    cycle_id,
    *,
    name: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    components: list[str] | None = None,
) -> EvaluationCycle:
    c = get_cycle_or_404(ctx, cycle_id)
    if c.status != "DRAFT":
        raise StateError("Only DRAFT cycles can be updated", details={"status": c.status})

    before = {
        "name": c.name,
        "start_date": str(c.start_date),
        "end_date": str(c.end_date),
        "components": c.components,
    }

    new_start = start_date if start_date is not None else c.start_date
    new_end = end_date if end_date is not None else c.end_date
    if (new_start, new_end) != (c.start_date, c.end_date):
        _validate_dates(new_start, new_end)
        _assert_no_overlap(ctx, new_start, new_end, exclude_id=c.id)
        c.start_date = new_start
        c.end_date = new_end

    if name is not None:
        c.name = name
    if components is not None:
        c.components = _validate_components(components)

    log_event(
        ctx=ctx,
        action="CYCLE_UPDATED",
        entity_type="evaluation_cycle",
        entity_id=c.id,
        metadata={
            "before": before,
            "after": {
                "name": c.name,
                "start_date": str(c.start_date),
                "end_date": str(c.end_date),
                "components": c.components,
            },
        },
    )
    ctx.db.flush()
    return c


def _transition(
    ctx: ServiceContext,
    cycle_id,
    *,
    allowed_from: tuple[str, ...],
    to: str,
    action: str,
    extra: dict | None = None,
) -> EvaluationCycle:
    c = get_cycle_or_404(ctx, cycle_id, for_update=True)
    if c.status not in allowed_from:
        raise StateError(
            f"Cycle cannot move from {c.status} to {to}",
            details={"status": c.status, "allowed_from": list(allowed_from)},
        )

    prev = c.status
    c.status = to
    c.updated_at = utcnow()

    log_event(
        ctx=ctx,
        action=action,
        entity_type="evaluation_cycle",
        entity_id=c.id,
        metadata={"from": prev, "to": to, **(extra or {})},
    )
    ctx.db.flush()
    logger.info("Cycle %s moved %s -> %s", c.id, prev, to)
    return c


def _count_drafts(ctx: ServiceContext, cycle_id: uuid.UUID) -> int:
    return (
        ctx.db.query(Evaluation.id)
        .filter(Evaluation.cycle_id == cycle_id, Evaluation.status == "DRAFT")
        .count()
    )


def activate_cycle(ctx: ServiceContext, cycle_id) -> EvaluationCycle:
    return _transition(ctx, cycle_id, allowed_from=("DRAFT",), to="ACTIVE", action="CYCLE_ACTIVATED")


def complete_cycle(ctx: ServiceContext, cycle_id) -> EvaluationCycle:
    c = get_cycle_or_404(ctx, cycle_id)
    abandoned = _count_drafts(ctx, c.id) if c.status == "ACTIVE" else 0
    c = _transition(
        ctx,
        cycle_id,
        allowed_from=("ACTIVE",),
        to="COMPLETED",
        action="CYCLE_COMPLETED",
        extra={"abandoned_drafts": abandoned},
    )
    if abandoned:
        logger.info("Cycle %s completed with %d unsubmitted evaluations abandoned", c.id, abandoned)
    return c


def archive_cycle(ctx: ServiceContext, cycle_id) -> EvaluationCycle:
    return _transition(ctx, cycle_id, allowed_from=("COMPLETED",), to="ARCHIVED", action="CYCLE_ARCHIVED")


def cancel_cycle(ctx: ServiceContext, cycle_id) -> EvaluationCycle:
    return _transition(
        ctx,
        cycle_id,
        allowed_from=OPEN_CYCLE_STATUSES,
        to="ARCHIVED",
        action="CYCLE_CANCELLED",
    )


def list_cycles(ctx: ServiceContext, *, status: str | None = None) -> list[tuple[EvaluationCycle, dict[str, int]]]:
    """Cycles of the caller's organization, newest first, with evaluation counts by status."""
    q = ctx.db.query(EvaluationCycle).filter(EvaluationCycle.organization_id == ctx.organization_id)
    if status:
        q = q.filter(EvaluationCycle.status == status)
    cycles = q.order_by(EvaluationCycle.created_at.desc()).all()
    counts = evaluation_counts(ctx, [c.id for c in cycles])
    return [(c, counts[c.id]) for c in cycles]


def evaluation_counts(ctx: ServiceContext, cycle_ids: list[uuid.UUID]) -> dict[uuid.UUID, dict[str, int]]:
    counts: dict[uuid.UUID, dict[str, int]] = {cid: {} for cid in cycle_ids}
    if cycle_ids:
        rows = (
            ctx.db.query(Evaluation.cycle_id, Evaluation.status, func.count(Evaluation.id))
            .filter(Evaluation.cycle_id.in_(cycle_ids))
            .group_by(Evaluation.cycle_id, Evaluation.status)
            .all()
        )
        for cycle_id, st, n in rows:
            counts[cycle_id][st] = n
    return counts
