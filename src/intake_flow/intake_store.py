from __future__ import annotations

import re
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Protocol

from .errors import IntakeNotFoundError
from .models.intake import IntakeDraft, IntakeMetadata, IntakeRecord, PublishedIntake
from .models.submission import SubmissionMetadata, SubmissionRecord


def make_slug(title: str) -> str:
    base = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-") or "intake"
    return f"{base[:48]}-{uuid.uuid4().hex[:6]}"


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class IntakeStore(Protocol):
    def create_intake(
        self, *, title: str, workspace_id: str, draft: IntakeDraft | None = None
    ) -> IntakeRecord:
        ...

    def get_intake(self, intake_id: str) -> IntakeRecord | None:
        ...

    def get_by_slug(self, slug: str) -> IntakeRecord | None:
        ...

    def list_intakes(self, *, workspace_id: str | None = None) -> list[IntakeRecord]:
        ...

    def save_draft(self, intake_id: str, draft: IntakeDraft) -> IntakeRecord:
        ...

    def publish_snapshot(self, intake_id: str, snapshot: PublishedIntake) -> IntakeRecord:
        ...

    def add_submission(
        self,
        intake_id: str,
        *,
        answers: Mapping[str, Any],
        metadata: SubmissionMetadata,
    ) -> SubmissionRecord:
        ...

    def list_submissions(self, intake_id: str, *, limit: int = 100) -> list[SubmissionRecord]:
        ...


class InMemoryIntakeStore:
    """Process-local store for development and tests.

    Records are immutable; every write swaps in a new record under the lock, so readers
    never observe a half-applied publish.
    """

    def __init__(self) -> None:
        self._intakes: Dict[str, IntakeRecord] = {}
        self._submissions: Dict[str, List[SubmissionRecord]] = {}
        self._lock = threading.Lock()

    def create_intake(
        self, *, title: str, workspace_id: str, draft: IntakeDraft | None = None
    ) -> IntakeRecord:
        with self._lock:
            record = IntakeRecord(
                id=new_id("intake"),
                workspace_id=workspace_id,
                title=title,
                slug=make_slug(title),
                draft=draft or IntakeDraft(metadata=IntakeMetadata(title=title)),
            )
            self._intakes[record.id] = record
            self._submissions[record.id] = []
            return record

    def get_intake(self, intake_id: str) -> IntakeRecord | None:
        with self._lock:
            return self._intakes.get(intake_id)

    def get_by_slug(self, slug: str) -> IntakeRecord | None:
        with self._lock:
            for record in self._intakes.values():
                if record.slug == slug:
                    return record
            return None

    def list_intakes(self, *, workspace_id: str | None = None) -> list[IntakeRecord]:
        with self._lock:
            records = [
                record
                for record in self._intakes.values()
                if workspace_id is None or record.workspace_id == workspace_id
            ]
        return sorted(records, key=lambda record: record.updated_at, reverse=True)

    def save_draft(self, intake_id: str, draft: IntakeDraft) -> IntakeRecord:
        with self._lock:
            record = self._require(intake_id)
            updated = record.model_copy(
                update={"draft": draft, "updated_at": datetime.now(timezone.utc)}
            )
            self._intakes[intake_id] = updated
            return updated

    def publish_snapshot(self, intake_id: str, snapshot: PublishedIntake) -> IntakeRecord:
        with self._lock:
            record = self._require(intake_id)
            updated = record.model_copy(
                update={"published": snapshot, "updated_at": datetime.now(timezone.utc)}
            )
            self._intakes[intake_id] = updated
            return updated

    def add_submission(
        self,
        intake_id: str,
        *,
        answers: Mapping[str, Any],
        metadata: SubmissionMetadata,
    ) -> SubmissionRecord:
        with self._lock:
            self._require(intake_id)
            submission = SubmissionRecord(
                id=new_id("sub"),
                intake_id=intake_id,
                answers=dict(answers),
                metadata=metadata,
            )
            self._submissions[intake_id].append(submission)
            return submission

    def list_submissions(self, intake_id: str, *, limit: int = 100) -> list[SubmissionRecord]:
        with self._lock:
            self._require(intake_id)
            submissions = list(self._submissions[intake_id])
        return sorted(submissions, key=lambda s: s.created_at, reverse=True)[:limit]

    def _require(self, intake_id: str) -> IntakeRecord:
        record = self._intakes.get(intake_id)
        if record is None:
            raise IntakeNotFoundError(intake_id)
        return record


__all__ = ["InMemoryIntakeStore", "IntakeStore", "make_slug", "new_id"]
