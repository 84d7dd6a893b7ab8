"""
Read-only scoring of one evaluatee within one cycle.

Only evaluations past DRAFT contribute. The result is a pure function of the
submitted rows: nothing here writes, so it can be recomputed at will.
"""
from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from perfreview.core.app_logger import get_logger
from perfreview.core.config import settings
from perfreview.core.context import ServiceContext
from perfreview.core.errors import ValidationError
from perfreview.models.competency import Competency
from perfreview.models.evaluation import SUBMITTED_STATUSES, Evaluation
from perfreview.models.organization import Organization
from perfreview.services.lookups import get_cycle_or_404, get_organization, get_user_in_org_or_404

logger = get_logger("aggregator")

GAP_PRECISION = 3


@dataclass(frozen=True)
class RatingRecord:
    evaluation_id: uuid.UUID
    evaluation_type: str
    competency_id: uuid.UUID
    rating: float | None


@dataclass
class CompetencyResult:
    competency_id: uuid.UUID
    average_rating: float | None
    by_type: dict[str, float]
    sample_count: int
    name: str | None = None
    category: str | None = None


@dataclass
class OverallResult:
    weighted_average: float | None
    self_vs_others_gap: float | None
    average_by_type: dict[str, float]
    weights_applied: dict[str, float]
    overall_rating_average: float | None = None
    overall_rating_by_type: dict[str, float] = field(default_factory=dict)


@dataclass
class AggregatedResult:
    per_competency: list[CompetencyResult]
    overall: OverallResult
    contributing_evaluations: dict[str, int]

    @property
    def evaluation_count(self) -> int:
        return sum(self.contributing_evaluations.values())


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


def resolve_type_weights(organization: Organization | None) -> dict[str, float]:
    weights = dict(settings.default_type_weights)
    overrides = ((organization.settings or {}) if organization else {}).get("type_weights") or {}
    for etype, w in overrides.items():
        if etype not in weights:
            raise ValidationError("Unknown evaluation type in type_weights", details={"type": etype})
        if float(w) < 0:
            raise ValidationError("Type weights must not be negative", details={"type": etype})
        weights[etype] = float(w)
    return weights


def aggregate_ratings(
    records: Iterable[RatingRecord],
    weights: dict[str, float],
    *,
    competency_ids: Iterable[uuid.UUID] = (),
    evaluation_types: dict[uuid.UUID, str] | None = None,
) -> AggregatedResult:
    """
    Combine competency ratings into per-competency and overall scores.

    Unrated entries (rating None) are ignored. The weighted average is taken
    over per-type averages, renormalized over the types that have ratings and
    a positive weight. The gap compares the SELF average against the pooled
    average of every non-SELF rating.
    """
    by_competency: dict[uuid.UUID, list[float]] = defaultdict(list)
    by_competency_type: dict[uuid.UUID, dict[str, list[float]]] = defaultdict(lambda: defaultdict(list))
    by_type: dict[str, list[float]] = defaultdict(list)
    seen_evaluations: dict[uuid.UUID, str] = dict(evaluation_types or {})

    for r in records:
        seen_evaluations.setdefault(r.evaluation_id, r.evaluation_type)
        if r.rating is None:
            continue
        by_competency[r.competency_id].append(r.rating)
        by_competency_type[r.competency_id][r.evaluation_type].append(r.rating)
        by_type[r.evaluation_type].append(r.rating)

    ordered_ids = list(dict.fromkeys([*competency_ids, *by_competency]))
    per_competency = [
        CompetencyResult(
            competency_id=cid,
            average_rating=_mean(by_competency.get(cid, [])),
            by_type={t: _mean(v) for t, v in sorted(by_competency_type.get(cid, {}).items())},
            sample_count=len(by_competency.get(cid, [])),
        )
        for cid in ordered_ids
    ]

    average_by_type = {t: _mean(v) for t, v in sorted(by_type.items())}

    present = {t: weights.get(t, 0.0) for t in average_by_type if weights.get(t, 0.0) > 0}
    total = sum(present.values())
    weighted = None
    weights_applied: dict[str, float] = {}
    if total > 0:
        weights_applied = {t: w / total for t, w in present.items()}
        weighted = sum(average_by_type[t] * share for t, share in weights_applied.items())

    gap = None
    others = [v for t, vals in by_type.items() if t != "SELF" for v in vals]
    if by_type.get("SELF") and others:
        gap = round(_mean(by_type["SELF"]) - _mean(others), GAP_PRECISION)

    contributing: dict[str, int] = defaultdict(int)
    for etype in seen_evaluations.values():
        contributing[etype] += 1

    return AggregatedResult(
        per_competency=per_competency,
        overall=OverallResult(
            weighted_average=weighted,
            self_vs_others_gap=gap,
            average_by_type=average_by_type,
            weights_applied=weights_applied,
        ),
        contributing_evaluations=dict(sorted(contributing.items())),
    )


def aggregate(ctx: ServiceContext, cycle_id, evaluatee_id) -> AggregatedResult:
    cycle = get_cycle_or_404(ctx, cycle_id)
    evaluatee = get_user_in_org_or_404(ctx, evaluatee_id)

    evaluations = (
        ctx.db.query(Evaluation)
        .filter(
            Evaluation.cycle_id == cycle.id,
            Evaluation.evaluatee_id == evaluatee.id,
            Evaluation.status.in_(SUBMITTED_STATUSES),
        )
        .order_by(Evaluation.submitted_at, Evaluation.id)
        .all()
    )

    records = [
        RatingRecord(
            evaluation_id=e.id,
            evaluation_type=e.type,
            competency_id=cr.competency_id,
            rating=cr.rating,
        )
        for e in evaluations
        for cr in e.competency_ratings
    ]

    competencies = (
        ctx.db.query(Competency)
        .filter(Competency.organization_id == ctx.organization_id, Competency.is_active.is_(True))
        .order_by(Competency.order, Competency.name)
        .all()
    )
    result = aggregate_ratings(
        records,
        resolve_type_weights(get_organization(ctx)),
        competency_ids=[c.id for c in competencies],
        evaluation_types={e.id: e.type for e in evaluations},
    )

    # names for retired competencies that still carry ratings
    known = {c.id: c for c in competencies}
    missing = [r.competency_id for r in result.per_competency if r.competency_id not in known]
    if missing:
        for c in ctx.db.query(Competency).filter(Competency.id.in_(missing)):
            known[c.id] = c
    for r in result.per_competency:
        c = known.get(r.competency_id)
        if c is not None:
            r.name, r.category = c.name, c.category

    overall_by_type: dict[str, list[float]] = defaultdict(list)
    for e in evaluations:
        if e.overall_rating is not None:
            overall_by_type[e.type].append(e.overall_rating)
    result.overall.overall_rating_by_type = {t: _mean(v) for t, v in sorted(overall_by_type.items())}
    result.overall.overall_rating_average = _mean([v for vals in overall_by_type.values() for v in vals])

    logger.info(
        "Aggregated %d evaluations for evaluatee %s in cycle %s",
        len(evaluations), evaluatee.id, cycle.id,
    )
    return result
