"""
Local write-ahead buffer for draft snapshots.

Every snapshot is appended before it is sent; the server acknowledging a
snapshot drops it and everything older. Whatever is left after a crash or a
lost connection is replayed (or reconciled) the next time the form opens.
"""
from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from perfreview.core.clock import utcnow


class DraftSnapshot(BaseModel):
    seq: int
    evaluation_id: str
    fields: dict[str, Any]
    taken_at: datetime = Field(default_factory=utcnow)


class WriteAheadBuffer:
    """Ordered, per-evaluation log of unacknowledged snapshots. Storage is up to subclasses."""

    def _load(self, evaluation_id: str) -> list[DraftSnapshot]:
        raise NotImplementedError

    def _store(self, evaluation_id: str, entries: list[DraftSnapshot]) -> None:
        raise NotImplementedError

    def append(self, evaluation_id: str, fields: dict[str, Any], *, taken_at: datetime | None = None) -> DraftSnapshot:
        entries = self._load(evaluation_id)
        snapshot = DraftSnapshot(
            seq=entries[-1].seq + 1 if entries else 1,
            evaluation_id=evaluation_id,
            fields=fields,
            taken_at=taken_at or utcnow(),
        )
        entries.append(snapshot)
        self._store(evaluation_id, entries)
        return snapshot

    def pending(self, evaluation_id: str) -> list[DraftSnapshot]:
        return self._load(evaluation_id)

    def latest(self, evaluation_id: str) -> DraftSnapshot | None:
        entries = self._load(evaluation_id)
        return entries[-1] if entries else None

    def acknowledge(self, evaluation_id: str, seq: int) -> None:
        """Drop `seq` and every older snapshot."""
        entries = self._load(evaluation_id)
        self._store(evaluation_id, [e for e in entries if e.seq > seq])

    def discard(self, evaluation_id: str) -> None:
        self._store(evaluation_id, [])


class InMemoryWriteAheadBuffer(WriteAheadBuffer):
    def __init__(self):
        self._entries: dict[str, list[DraftSnapshot]] = {}

    def _load(self, evaluation_id: str) -> list[DraftSnapshot]:
        return list(self._entries.get(evaluation_id, []))

    def _store(self, evaluation_id: str, entries: list[DraftSnapshot]) -> None:
        if entries:
            self._entries[evaluation_id] = list(entries)
        else:
            self._entries.pop(evaluation_id, None)


class JsonFileWriteAheadBuffer(WriteAheadBuffer):
    """One JSON file per evaluation under `directory`; survives process restarts."""

    def __init__(self, directory: str | os.PathLike):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, evaluation_id: str) -> Path:
        return self.directory / f"{evaluation_id}.json"

    def _load(self, evaluation_id: str) -> list[DraftSnapshot]:
        path = self._path(evaluation_id)
        if not path.exists():
            return []
        raw = json.loads(path.read_text(encoding="utf-8"))
        return [DraftSnapshot.model_validate(item) for item in raw]

    def _store(self, evaluation_id: str, entries: list[DraftSnapshot]) -> None:
        path = self._path(evaluation_id)
        if not entries:
            path.unlink(missing_ok=True)
            return
        payload = json.dumps([e.model_dump(mode="json") for e in entries])
        # write-then-rename so a crash never leaves a half-written log
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
        os.replace(tmp, path)
