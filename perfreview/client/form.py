"""
Client-side controller for filling in one evaluation.

    LOADING -> READY <-> SAVING
               READY -> SUBMITTING -> SUBMITTED (terminal)
                                   -> READY (submit_error set)

Field values held by the session are the source of truth. Saves send the
whole snapshot, never a diff, so replaying queued saves in order always ends
on the last snapshot taken.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from perfreview.client.autosave import AutosavePolicy
from perfreview.client.buffer import InMemoryWriteAheadBuffer, WriteAheadBuffer
from perfreview.client.gateway import RETRYABLE_ERRORS, ConnectivityError, EvaluationGateway
from perfreview.core.app_logger import get_logger
from perfreview.core.clock import as_utc, utcnow
from perfreview.core.config import settings
from perfreview.core.errors import NotFoundError, PerfReviewError, StateError, ValidationError
from perfreview.schemas.evaluation import EvaluationDetailOut

logger = get_logger("client.form")

TEXT_FIELDS = ("overall_comments", "strengths", "improvements", "career_goals", "development_plan")
RATING_FIELDS = ("rating", "comments", "behaviors", "examples", "improvement_areas")

# (step id, label, required); competency steps come first
REFLECTION_STEPS = (
    ("strengths", "Strengths", True),
    ("improvements", "Areas for improvement", True),
    ("career_goals", "Career goals", False),
    ("development_plan", "Development plan", False),
)

_UNSET: Any = object()


class FormState(str, Enum):
    LOADING = "LOADING"
    READY = "READY"
    SAVING = "SAVING"
    SUBMITTING = "SUBMITTING"
    SUBMITTED = "SUBMITTED"


@dataclass
class FormStep:
    id: str
    name: str
    kind: str  # competency | text | overall | review
    is_required: bool
    is_completed: bool = False
    competency_id: str | None = None


@dataclass
class SubmitResult:
    ok: bool
    reasons: list[str] = field(default_factory=list)
    error: PerfReviewError | None = None


def derive_steps(document: EvaluationDetailOut) -> list[FormStep]:
    steps = [
        FormStep(
            id=f"competency:{c.id}",
            name=c.name,
            kind="competency",
            # retired competencies only show up because they were rated already
            is_required=c.is_active,
            competency_id=c.id,
        )
        for c in document.competencies
    ]
    steps += [FormStep(id=sid, name=name, kind="text", is_required=req) for sid, name, req in REFLECTION_STEPS]
    steps.append(FormStep(id="overall", name="Overall rating", kind="overall", is_required=True))
    steps.append(FormStep(id="review", name="Review and submit", kind="review", is_required=True))
    return steps


def _error_keys(step: FormStep) -> tuple[str, ...]:
    if step.kind == "competency":
        return (f"{step.id}.rating",)
    if step.kind == "overall":
        return ("overall_rating", "overall_comments")
    return (step.id,)


class EvaluationFormSession:
    def __init__(
        self,
        gateway: EvaluationGateway,
        *,
        user_id: str,
        buffer: WriteAheadBuffer | None = None,
        policy: AutosavePolicy | None = None,
        wall_clock: Callable[[], datetime] = utcnow,
        online: bool = True,
    ):
        self.gateway = gateway
        self.user_id = str(user_id)
        self.buffer = buffer or InMemoryWriteAheadBuffer()
        self.policy = policy or AutosavePolicy()
        self.wall_clock = wall_clock

        self.state = FormState.LOADING
        self.evaluation_id: str | None = None
        self.document: EvaluationDetailOut | None = None
        self.steps: list[FormStep] = []
        self.current_step_index = 0
        self.fields: dict[str, Any] = {}
        self.is_dirty = False
        self.is_online = online
        self.last_saved_at: datetime | None = None
        self.submit_error: str | None = None
        self.save_error: PerfReviewError | None = None
        self.save_warning: str | None = None
        self.autosave_enabled = True
        # field key -> message; competency keys look like "competency:<id>.rating"
        self.errors: dict[str, str] = {}

        self._unbuffered_changes = False
        self._submit_key: str | None = None

    # ---------- read-only views ----------

    @property
    def is_saving(self) -> bool:
        return self.state is FormState.SAVING

    @property
    def is_submitting(self) -> bool:
        return self.state is FormState.SUBMITTING

    @property
    def pending_offline_writes(self) -> int:
        return len(self.buffer.pending(self.evaluation_id)) if self.evaluation_id else 0

    @property
    def current_step(self) -> FormStep | None:
        return self.steps[self.current_step_index] if self.steps else None

    def progress(self) -> float:
        if not self.steps:
            return 0.0
        return 100.0 * sum(1 for s in self.steps if s.is_completed) / len(self.steps)

    # ---------- loading ----------

    def load_evaluation(self, evaluation_id: str) -> EvaluationDetailOut:
        self.state = FormState.LOADING
        document = EvaluationDetailOut.model_validate(self.gateway.fetch_evaluation(evaluation_id))
        if document.evaluator_id != self.user_id:
            # other people's evaluations are not openable as a form
            raise NotFoundError("Evaluation not found", details={"id": str(evaluation_id)})

        self.evaluation_id = document.id
        self.document = document
        self.fields = self._fields_from_document(document)
        self.is_dirty = False
        self.submit_error = None
        self.save_error = None
        self.save_warning = None
        self.errors = {}
        self._unbuffered_changes = False

        local = self.buffer.latest(document.id)
        if local and self._editable() and local.taken_at > as_utc(document.updated_at):
            logger.info("Restoring unsaved local draft of evaluation %s", document.id)
            self.fields = self._fields_from_snapshot(local.fields)
            self.is_dirty = True
            self.policy.record_change()
        elif local:
            self.buffer.discard(document.id)

        self.steps = derive_steps(document)
        self.current_step_index = 0
        self._recheck_steps(restore=True)
        self.state = FormState.READY
        return document

    def _fields_from_document(self, document: EvaluationDetailOut) -> dict[str, Any]:
        fields: dict[str, Any] = {"overall_rating": document.overall_rating}
        for name in TEXT_FIELDS:
            fields[name] = getattr(document, name)
        fields["competency_ratings"] = {
            cr.competency_id: cr.model_dump(include=set(RATING_FIELDS)) for cr in document.competency_ratings
        }
        return fields

    def _fields_from_snapshot(self, snapshot: dict[str, Any]) -> dict[str, Any]:
        fields = {k: v for k, v in snapshot.items() if k != "competency_ratings"}
        fields["competency_ratings"] = {
            cr["competency_id"]: {k: cr.get(k) for k in RATING_FIELDS}
            for cr in snapshot.get("competency_ratings", [])
        }
        return fields

    # ---------- steps ----------

    def _step_errors(self, step: FormStep) -> dict[str, str]:
        errors = {}
        if step.kind == "competency":
            rating = self.fields["competency_ratings"].get(step.competency_id, {}).get("rating")
            if step.is_required and rating is None:
                errors[f"{step.id}.rating"] = f"Rate {step.name}"
        elif step.kind == "text":
            if step.is_required and not (self.fields.get(step.id) or "").strip():
                errors[step.id] = f"{step.name} is required"
        elif step.kind == "overall":
            if self.fields.get("overall_rating") is None:
                errors["overall_rating"] = "Overall rating is required"
            if not (self.fields.get("overall_comments") or "").strip():
                errors["overall_comments"] = "Overall comments are required"
        elif not all(s.is_completed for s in self.steps if s.is_required and s is not step):
            errors["review"] = "Complete every required step first"
        return errors

    def _step_valid(self, step: FormStep) -> bool:
        return not self._step_errors(step)

    def _recheck_steps(self, *, restore: bool = False) -> None:
        """Un-complete steps whose data no longer validates; on load, also restore completed ones."""
        for step in self.steps:
            if step.kind == "review":
                continue
            if step.is_completed or restore:
                step.is_completed = self._step_valid(step)
        review = self.steps[-1] if self.steps else None
        if review and review.is_completed and not self._step_valid(review):
            review.is_completed = False

    @property
    def furthest_reachable_index(self) -> int:
        """Steps are completed in order: the first incomplete step is as far as one can go."""
        reachable = 0
        for step in self.steps[:-1]:
            if not step.is_completed:
                break
            reachable += 1
        return reachable

    def go_to_step(self, index: int) -> bool:
        if not self.steps or index < 0 or index >= len(self.steps):
            return False
        if index > self.furthest_reachable_index:
            return False
        self.current_step_index = index
        return True

    def next_step(self) -> bool:
        target = min(self.current_step_index + 1, len(self.steps) - 1, self.furthest_reachable_index)
        if target <= self.current_step_index:
            return False
        self.current_step_index = target
        return True

    def previous_step(self) -> bool:
        if self.current_step_index == 0:
            return False
        self.current_step_index -= 1
        return True

    def validate_current_step(self) -> bool:
        """Check the current step, recording a message per failing field in `errors`."""
        step = self.current_step
        if step is None:
            return False
        for key in _error_keys(step):
            self.errors.pop(key, None)
        found = self._step_errors(step)
        self.errors.update(found)
        if not found:
            step.is_completed = True
        return not found

    def set_error(self, field_key: str, message: str) -> None:
        self.errors[field_key] = message

    def clear_error(self, field_key: str) -> None:
        self.errors.pop(field_key, None)

    def clear_all_errors(self) -> None:
        self.errors.clear()

    # ---------- editing ----------

    def _editable(self) -> bool:
        return (
            self.document is not None
            and self.state is not FormState.SUBMITTED
            and self.document.status == "DRAFT"
            and self.document.cycle_status == "ACTIVE"
        )

    def _assert_editable(self) -> None:
        if self.state is FormState.SUBMITTED or (self.document and self.document.status != "DRAFT"):
            raise StateError("Evaluation has already been submitted")
        if self.document is None:
            raise StateError("No evaluation loaded")
        if self.document.cycle_status != "ACTIVE":
            raise StateError("Evaluation cycle is not active", details={"cycle_status": self.document.cycle_status})

    @staticmethod
    def _check_rating(value) -> None:
        if value is not None and not (settings.RATING_MIN <= value <= settings.RATING_MAX):
            raise ValidationError(
                f"Rating must be between {settings.RATING_MIN:g} and {settings.RATING_MAX:g}",
                details={"rating": value},
            )

    def _changed(self) -> None:
        self.is_dirty = True
        self._unbuffered_changes = True
        self.policy.record_change()
        self._recheck_steps()

    def set_field(self, name: str, value) -> None:
        self._assert_editable()
        if name == "overall_rating":
            self._check_rating(value)
        elif name not in TEXT_FIELDS:
            raise ValidationError("Unknown field", details={"field": name})
        self.fields[name] = value
        self.clear_error(name)
        self._changed()

    def set_competency_rating(
        self,
        competency_id: str,
        *,
        rating=_UNSET,
        comments=_UNSET,
        behaviors=_UNSET,
        examples=_UNSET,
        improvement_areas=_UNSET,
    ) -> None:
        self._assert_editable()
        if competency_id not in {c.id for c in self.document.competencies}:
            raise ValidationError("Competency is not part of this evaluation", details={"competency_id": competency_id})
        if rating is not _UNSET:
            self._check_rating(rating)

        entry = self.fields["competency_ratings"].setdefault(
            competency_id, {"rating": None, "comments": None, "behaviors": [], "examples": None, "improvement_areas": None}
        )
        updates = {
            "rating": rating,
            "comments": comments,
            "behaviors": behaviors,
            "examples": examples,
            "improvement_areas": improvement_areas,
        }
        for key, value in updates.items():
            if value is not _UNSET:
                entry[key] = list(value) if key == "behaviors" else value
        if rating is not _UNSET:
            self.clear_error(f"competency:{competency_id}.rating")
        self._changed()

    def snapshot(self, *, rated_only: bool = False) -> dict[str, Any]:
        """The full field state in the wire shape of a save or submit body."""
        order = [c.id for c in self.document.competencies] if self.document else []
        ratings = self.fields.get("competency_ratings", {})
        ids = [cid for cid in order if cid in ratings] + [cid for cid in ratings if cid not in order]
        out = {"overall_rating": self.fields.get("overall_rating")}
        out.update({name: self.fields.get(name) for name in TEXT_FIELDS})
        out["competency_ratings"] = [
            {"competency_id": cid, **{k: ratings[cid].get(k) for k in RATING_FIELDS}}
            for cid in ids
            if not rated_only or ratings[cid].get("rating") is not None
        ]
        for cr in out["competency_ratings"]:
            cr["behaviors"] = list(cr["behaviors"] or [])
        return out

    # ---------- saving ----------

    def save_draft(self) -> bool:
        """
        Buffer the current snapshot and try to send it. Returns True once the
        server holds the latest snapshot. Offline or on a retryable failure the
        snapshot stays queued and False is returned; the user is never blocked.
        """
        self._assert_editable()
        if self._unbuffered_changes or not self.buffer.pending(self.evaluation_id):
            self.buffer.append(self.evaluation_id, self.snapshot(), taken_at=self.wall_clock())
            self._unbuffered_changes = False

        if not self.is_online:
            logger.info(
                "Offline: queued draft of evaluation %s (%d pending)",
                self.evaluation_id, self.pending_offline_writes,
            )
            return False
        return self._flush(replay=False)

    def _flush(self, *, replay: bool) -> bool:
        pending = self.buffer.pending(self.evaluation_id)
        if not pending:
            return not self.is_dirty
        # online saves only need the newest snapshot; a reconnect replays the queue in order
        batch = pending if replay else pending[-1:]

        self.state = FormState.SAVING
        try:
            for snap in batch:
                data = self.gateway.save_draft(self.evaluation_id, snap.fields)
                self.buffer.acknowledge(self.evaluation_id, snap.seq)
                self._absorb_server_state(data)
        except RETRYABLE_ERRORS as exc:
            delay = self.policy.record_failure()
            logger.warning(
                "Autosave of evaluation %s failed (%s); retrying in %.0fs",
                self.evaluation_id, exc.message, delay,
            )
            if self.policy.exhausted and not self.save_warning:
                self.save_warning = "Your latest changes may not have been saved."
                logger.warning("Autosave retries exhausted for evaluation %s", self.evaluation_id)
            return False
        except PerfReviewError as exc:
            # the server refused the save outright; retrying would not help
            self.save_error = exc
            raise
        finally:
            self.state = FormState.READY

        if not self._unbuffered_changes and not self.buffer.pending(self.evaluation_id):
            self.is_dirty = False
        self.last_saved_at = self.wall_clock()
        self.save_error = None
        self.save_warning = None
        self.policy.record_success()
        return True

    def _absorb_server_state(self, data: dict[str, Any]) -> None:
        if not data:
            return
        document = EvaluationDetailOut.model_validate(data)
        self.document = self.document.model_copy(
            update={
                "status": document.status,
                "cycle_status": document.cycle_status,
                "updated_at": document.updated_at,
                "submitted_at": document.submitted_at,
            }
        )

    def set_online(self, online: bool) -> bool:
        """Connectivity changed. Coming back online replays queued saves in order."""
        was_online, self.is_online = self.is_online, online
        if not online or was_online or self.state is not FormState.READY or not self._editable():
            return False
        if not self.buffer.pending(self.evaluation_id):
            return False
        logger.info("Back online: replaying %d queued drafts", self.pending_offline_writes)
        return self._flush(replay=True)

    def enable_autosave(self) -> None:
        self.autosave_enabled = True

    def disable_autosave(self) -> None:
        self.autosave_enabled = False

    def tick(self) -> bool:
        """
        Timer hook for the host: saves once the idle interval or a retry delay
        has passed. Offline, the snapshot is only queued; coming back online
        replays it.
        """
        if self.state is not FormState.READY or not self.is_dirty or not self.autosave_enabled:
            return False
        if not self._editable() or not self.policy.due():
            return False
        if not self.is_online and not self._unbuffered_changes:
            return False
        return self.save_draft()

    def close(self) -> bool:
        """Leaving the form: drop scheduled retries and make one last best-effort save."""
        self.policy.cancel_retries()
        if self.state is not FormState.READY or not self.is_dirty or not self._editable():
            return not self.is_dirty
        try:
            return self.save_draft()
        except PerfReviewError as exc:
            logger.warning("Final save of evaluation %s failed: %s", self.evaluation_id, exc.message)
            return False
        finally:
            # a failed final save must not leave a retry scheduled
            self.policy.cancel_retries()

    # ---------- submitting ----------

    def submit_blockers(self) -> list[str]:
        reasons = []
        if self.state is FormState.SUBMITTED:
            reasons.append("Evaluation has already been submitted")
        if self.document is None:
            return reasons + ["No evaluation loaded"]
        for step in self.steps:
            if step.is_required and not step.is_completed:
                reasons.append(f"Step '{step.name}' is not completed")
        if self.document.cycle_status != "ACTIVE":
            reasons.append("Evaluation cycle is not active")
        if self.document.status != "DRAFT":
            reasons.append(f"Evaluation is {self.document.status}, not DRAFT")
        return reasons

    def can_submit(self) -> bool:
        return not self.submit_blockers()

    def submit_evaluation(self) -> SubmitResult:
        if self.state is FormState.SUBMITTED:
            raise StateError("Evaluation has already been submitted")

        blockers = self.submit_blockers()
        if blockers:
            return SubmitResult(ok=False, reasons=blockers)

        if not self.is_online:
            error = ConnectivityError("Cannot submit while offline")
            self.submit_error = error.message
            return SubmitResult(ok=False, reasons=[error.message], error=error)

        if self.is_dirty:
            try:
                self.save_draft()
            except PerfReviewError as exc:
                logger.warning("Pre-submit save of evaluation %s failed: %s", self.evaluation_id, exc.message)

        # reuse the key only when the previous attempt may have reached the server
        if self._submit_key is None:
            self._submit_key = str(uuid.uuid4())

        self.state = FormState.SUBMITTING
        self.submit_error = None
        try:
            data = self.gateway.submit(
                self.evaluation_id,
                self.snapshot(rated_only=True),
                idempotency_key=self._submit_key,
            )
        except PerfReviewError as exc:
            self.state = FormState.READY
            self.submit_error = exc.message
            if not isinstance(exc, RETRYABLE_ERRORS):
                self._submit_key = None
            logger.warning("Submit of evaluation %s failed: %s", self.evaluation_id, exc.message)
            return SubmitResult(ok=False, reasons=[exc.message], error=exc)

        self._absorb_server_state(data)
        self.buffer.discard(self.evaluation_id)
        self.policy.cancel_retries()
        self.is_dirty = False
        self._unbuffered_changes = False
        self.state = FormState.SUBMITTED
        logger.info("Evaluation %s submitted", self.evaluation_id)
        return SubmitResult(ok=True)
