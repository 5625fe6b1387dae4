from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from google.api_core.exceptions import NotFound
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from .errors import IntakeNotFoundError
from .intake_store import make_slug, new_id
from .models.intake import IntakeDraft, IntakeMetadata, IntakeRecord, PublishedIntake
from .models.submission import SubmissionMetadata, SubmissionRecord

logger = logging.getLogger(__name__)


class FirestoreIntakeStore:
    """Firestore-backed intake store for production use.

    One document per intake id holds both the draft and the published snapshot.
    """

    COLLECTION_NAME = "intakes"
    SUBMISSIONS_COLLECTION = "submissions"

    def __init__(self, project_id: str | None = None, *, client: Any | None = None) -> None:
        self._db = client or firestore.Client(project=project_id)
        self._collection = self._db.collection(self.COLLECTION_NAME)

    def create_intake(
        self, *, title: str, workspace_id: str, draft: IntakeDraft | None = None
    ) -> IntakeRecord:
        """Create a new intake document with an empty draft."""
        record = IntakeRecord(
            id=new_id("intake"),
            workspace_id=workspace_id,
            title=title,
            slug=make_slug(title),
            draft=draft or IntakeDraft(metadata=IntakeMetadata(title=title)),
        )
        self._collection.document(record.id).set(self._to_firestore_dict(record))

        logger.info(
            "Created intake",
            extra={"intake_id": record.id, "workspace_id": workspace_id, "slug": record.slug},
        )
        return record

    def get_intake(self, intake_id: str) -> IntakeRecord | None:
        doc = self._collection.document(intake_id).get()
        if not doc.exists:
            return None
        return self._from_firestore_dict(doc.id, doc.to_dict())

    def get_by_slug(self, slug: str) -> IntakeRecord | None:
        query = self._collection.where(filter=FieldFilter("slug", "==", slug)).limit(1)
        for doc in query.stream():
            return self._from_firestore_dict(doc.id, doc.to_dict())
        return None

    def list_intakes(self, *, workspace_id: str | None = None, limit: int = 100) -> list[IntakeRecord]:
        query = self._collection
        if workspace_id is not None:
            query = query.where(filter=FieldFilter("workspace_id", "==", workspace_id))
        query = query.order_by("updated_at", direction=firestore.Query.DESCENDING).limit(limit)
        return [self._from_firestore_dict(doc.id, doc.to_dict()) for doc in query.stream()]

    def save_draft(self, intake_id: str, draft: IntakeDraft) -> IntakeRecord:
        self._update(
            intake_id,
            {"draft": draft.model_dump(mode="json", by_alias=True)},
        )
        logger.info("Saved draft", extra={"intake_id": intake_id, "sections": len(draft.sections)})
        return self._require(intake_id)

    def publish_snapshot(self, intake_id: str, snapshot: PublishedIntake) -> IntakeRecord:
        """Replace the published snapshot in a single document update."""
        self._update(
            intake_id,
            {"published": snapshot.model_dump(mode="json", by_alias=True)},
        )
        logger.info(
            "Stored published snapshot",
            extra={"intake_id": intake_id, "slug": snapshot.slug},
        )
        return self._require(intake_id)

    def add_submission(
        self,
        intake_id: str,
        *,
        answers: Mapping[str, Any],
        metadata: SubmissionMetadata,
    ) -> SubmissionRecord:
        self._require(intake_id)
        submission = SubmissionRecord(
            id=new_id("sub"),
            intake_id=intake_id,
            answers=dict(answers),
            metadata=metadata,
        )
        self._submissions(intake_id).document(submission.id).set(
            {
                "answers": dict(submission.answers),
                "metadata": submission.metadata.model_dump(mode="json", by_alias=True),
                "created_at": submission.created_at,
            }
        )
        return submission

    def list_submissions(self, intake_id: str, *, limit: int = 100) -> list[SubmissionRecord]:
        self._require(intake_id)
        query = (
            self._submissions(intake_id)
            .order_by("created_at", direction=firestore.Query.DESCENDING)
            .limit(limit)
        )
        return [self._submission_from_doc(intake_id, doc) for doc in query.stream()]

    def _submission_from_doc(self, intake_id: str, doc) -> SubmissionRecord:
        data = doc.to_dict()
        return SubmissionRecord(
            id=doc.id,
            intake_id=intake_id,
            answers=data.get("answers", {}),
            metadata=SubmissionMetadata.model_validate(data.get("metadata") or {}),
            created_at=data["created_at"],
        )

    def _submissions(self, intake_id: str):
        return self._collection.document(intake_id).collection(self.SUBMISSIONS_COLLECTION)

    def _update(self, intake_id: str, fields: dict[str, Any]) -> None:
        fields["updated_at"] = datetime.now(timezone.utc)
        try:
            self._collection.document(intake_id).update(fields)
        except NotFound as exc:
            raise IntakeNotFoundError(intake_id) from exc

    def _require(self, intake_id: str) -> IntakeRecord:
        record = self.get_intake(intake_id)
        if record is None:
            raise IntakeNotFoundError(intake_id)
        return record

    def _to_firestore_dict(self, record: IntakeRecord) -> dict:
        """Convert an IntakeRecord to a Firestore document dict."""
        return {
            "workspace_id": record.workspace_id,
            "title": record.title,
            "slug": record.slug,
            "draft": record.draft.model_dump(mode="json", by_alias=True),
            "published": (
                record.published.model_dump(mode="json", by_alias=True)
                if record.published
                else None
            ),
            "created_at": record.created_at,
            "updated_at": record.updated_at,
        }

    def _from_firestore_dict(self, intake_id: str, data: dict) -> IntakeRecord:
        """Convert a Firestore document dict to an IntakeRecord."""
        published = data.get("published")
        return IntakeRecord(
            id=intake_id,
            workspace_id=data["workspace_id"],
            title=data.get("title", ""),
            slug=data["slug"],
            draft=IntakeDraft.model_validate(data.get("draft") or {}),
            published=PublishedIntake.model_validate(published) if published else None,
            created_at=data["created_at"],
            updated_at=data["updated_at"],
        )


__all__ = ["FirestoreIntakeStore"]
