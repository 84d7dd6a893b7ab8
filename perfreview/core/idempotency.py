"""
Idempotency-Key support for POST endpoints whose retries must not repeat
their side effects (cycle creation, evaluation submit).

The key row is committed IN_PROGRESS before any work starts, so a retry that
arrives while the first attempt is still running is refused rather than run
twice. Keys are scoped per user.
"""
from __future__ import annotations

import hashlib
import json
from typing import Any, Callable, TypeVar

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from perfreview.core.app_logger import get_logger
from perfreview.core.clock import utcnow
from perfreview.core.context import ServiceContext
from perfreview.core.errors import ConflictError
from perfreview.models.idempotency import IdempotencyKey

logger = get_logger("idempotency")

OutT = TypeVar("OutT", bound=BaseModel)


def request_fingerprint(payload: Any) -> str:
    raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def _lookup(db: Session, user_id, key: str) -> IdempotencyKey | None:
    return (
        db.query(IdempotencyKey)
        .filter(IdempotencyKey.user_id == user_id, IdempotencyKey.key == key)
        .one_or_none()
    )


def claim_key(
    db: Session,
    *,
    user_id,
    key: str,
    method: str,
    route: str,
    fingerprint: str,
) -> IdempotencyKey:
    """
    Returns the key row, committed. A COMPLETED row means "replay"; anything
    else now belongs to the caller and is IN_PROGRESS.
    """
    row = _lookup(db, user_id, key)
    if row is not None:
        if row.request_hash and row.request_hash != fingerprint:
            raise ConflictError("Idempotency-Key reuse with different request body", details={"key": key})
        if row.status == "IN_PROGRESS":
            raise ConflictError("Request with this Idempotency-Key is already in progress", details={"key": key})
        if row.status == "FAILED":
            # the earlier attempt rolled back; this one gets a clean try
            row.status = "IN_PROGRESS"
            row.updated_at = utcnow()
            db.commit()
        return row

    row = IdempotencyKey(
        user_id=user_id,
        key=key,
        method=method,
        route=route,
        request_hash=fingerprint,
        status="IN_PROGRESS",
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # lost the race to a concurrent request with the same key
        row = _lookup(db, user_id, key)
        if row is not None and row.status == "COMPLETED":
            return row
        raise ConflictError("Idempotency-Key collision (try again)", details={"key": key})
    return row


def record_response(db: Session, row: IdempotencyKey, *, status_code: int, body: dict | list | None) -> None:
    row.status = "COMPLETED"
    row.response_code = status_code
    row.response_body = body
    row.updated_at = utcnow()
    db.commit()


def release_key(db: Session, row: IdempotencyKey) -> None:
    # drop the failed unit of work; the key row itself was committed by claim_key
    db.rollback()
    row.status = "FAILED"
    row.updated_at = utcnow()
    db.commit()


def run_idempotent(
    ctx: ServiceContext,
    *,
    key: str | None,
    method: str,
    route: str,
    payload: Any,
    status_code: int,
    work: Callable[[], OutT],
    out_model: type[OutT],
) -> OutT:
    """
    Run `work` at most once per (user, key). Without a key it simply runs.
    A completed key answers with the stored response instead of running again.
    """
    if not key:
        return work()

    row = claim_key(
        ctx.db,
        user_id=ctx.actor_id,
        key=key,
        method=method,
        route=route,
        fingerprint=request_fingerprint(payload),
    )
    if row.status == "COMPLETED":
        logger.info("Replaying stored response for %s %s (key %s)", method, route, key)
        return out_model.model_validate(row.response_body)

    try:
        out = work()
    except Exception:
        release_key(ctx.db, row)
        raise
    record_response(ctx.db, row, status_code=status_code, body=out.model_dump(mode="json"))
    return out
