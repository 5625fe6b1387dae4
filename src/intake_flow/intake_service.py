from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from .errors import (
    DraftStructureError,
    FeatureUnavailableError,
    IntakeNotFoundError,
    ProposalRejectedError,
    PublishRejectedError,
    SectionNotFoundError,
    SubmissionRejectedError,
)
from .flow_validation import FlowPolicy, validate_flow
from .intake_store import IntakeStore
from .models.intake import IntakeDraft, IntakeRecord, PublishedIntake
from .models.submission import SubmissionMetadata, SubmissionRecord
from .models.validation import FlowValidationResult
from .pubsub_client import PubSubClient
from .routing import resolve_next, trace_path
from .routing_proposal import RoutingProposal, RoutingProposalGenerator, apply_proposal, check_proposal
from .submission import sanitize_answers, validate_submission

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishOutcome:
    record: IntakeRecord
    validation: FlowValidationResult


@dataclass(frozen=True)
class DraftUpdate:
    record: IntakeRecord
    validation: FlowValidationResult


@dataclass(frozen=True)
class RoutingSuggestion:
    proposal: RoutingProposal
    validation: FlowValidationResult


class IntakeService:
    """Draft, publish and submission workflows over an intake store."""

    def __init__(
        self,
        store: IntakeStore,
        *,
        policy: FlowPolicy | None = None,
        pubsub_client: PubSubClient | None = None,
        routing_generator: RoutingProposalGenerator | None = None,
    ) -> None:
        self._store = store
        self._policy = policy or FlowPolicy()
        self._pubsub = pubsub_client
        self._routing_generator = routing_generator

    # Authoring

    def create_intake(self, *, title: str, workspace_id: str) -> IntakeRecord:
        return self._store.create_intake(title=title, workspace_id=workspace_id)

    def get_intake(self, intake_id: str) -> IntakeRecord:
        record = self._store.get_intake(intake_id)
        if record is None:
            raise IntakeNotFoundError(intake_id)
        return record

    def list_intakes(self, *, workspace_id: str | None = None) -> list[IntakeRecord]:
        return self._store.list_intakes(workspace_id=workspace_id)

    def save_draft(self, intake_id: str, draft: IntakeDraft) -> IntakeRecord:
        return self._store.save_draft(intake_id, draft)

    def validate_draft(self, intake_id: str) -> FlowValidationResult:
        draft = self._snapshot_draft(self.get_intake(intake_id))
        return validate_flow(draft.sections, self._policy)

    def publish(self, intake_id: str) -> PublishOutcome:
        """Validate a point-in-time copy of the draft and, only if it passes, publish it.

        Raises:
            IntakeNotFoundError: No intake with this id.
            DraftStructureError: The draft has no sections.
            PublishRejectedError: The flow has errors; the published slot is untouched.
        """
        record = self.get_intake(intake_id)
        draft = self._snapshot_draft(record)
        result = validate_flow(draft.sections, self._policy)

        if not result.is_valid:
            logger.info(
                "Publish rejected",
                extra={
                    "intake_id": intake_id,
                    "errors": [issue.code for issue in result.errors],
                },
            )
            raise PublishRejectedError(result)

        snapshot = PublishedIntake.from_draft(draft, slug=record.slug)
        updated = self._store.publish_snapshot(intake_id, snapshot)

        logger.info(
            "Published intake",
            extra={
                "intake_id": intake_id,
                "slug": snapshot.slug,
                "sections": len(snapshot.sections),
                "warnings": len(result.warnings),
            },
        )
        self._notify(
            self._pubsub.publish_intake_published if self._pubsub else None,
            intake_id=intake_id,
            slug=snapshot.slug,
            published_at=snapshot.published_at,
        )
        return PublishOutcome(record=updated, validation=result)

    # Routing proposals

    def suggest_routing(self, intake_id: str, *, intent: str | None = None) -> RoutingSuggestion:
        if self._routing_generator is None:
            raise FeatureUnavailableError("Routing generation is not configured")

        draft = self._snapshot_draft(self.get_intake(intake_id))
        proposal = self._routing_generator.propose(draft.sections, intent=intent)
        merged = apply_proposal(draft.sections, proposal)
        return RoutingSuggestion(proposal=proposal, validation=validate_flow(merged, self._policy))

    def apply_routing(self, intake_id: str, proposal: RoutingProposal) -> DraftUpdate:
        """Merge an accepted proposal into the draft after re-checking every id in it."""
        record = self.get_intake(intake_id)
        draft = self._snapshot_draft(record)
        issues = check_proposal(draft.sections, proposal)
        if issues:
            raise ProposalRejectedError(issues[0].message, issues)

        merged = draft.model_copy(update={"sections": apply_proposal(draft.sections, proposal)})
        updated = self._store.save_draft(intake_id, merged)
        return DraftUpdate(record=updated, validation=validate_flow(merged.sections, self._policy))

    # Public viewer

    def get_published(self, slug: str) -> tuple[IntakeRecord, PublishedIntake]:
        record = self._store.get_by_slug(slug)
        if record is None or record.published is None:
            raise IntakeNotFoundError(slug)
        return record, record.published

    def next_section(self, slug: str, section_id: str, answers: Mapping[str, Any]) -> str | None:
        _, published = self.get_published(slug)
        for section in published.sections:
            if section.id == section_id:
                return resolve_next(section, answers)
        raise SectionNotFoundError(slug, section_id)

    def submit(
        self,
        slug: str,
        answers: Mapping[str, Any],
        metadata: Mapping[str, Any] | None = None,
    ) -> SubmissionRecord:
        """Validate answers against the published snapshot and store the sanitized copy.

        Raises:
            IntakeNotFoundError: Unknown slug or the intake is not published.
            SubmissionRejectedError: Per-block validation errors.
        """
        record, published = self.get_published(slug)
        bounded = SubmissionMetadata.from_raw(metadata)

        visited: tuple[str, ...] | None = None
        if published.metadata.mode == "guided":
            visited = bounded.visited_section_ids or tuple(
                trace_path(published.sections, sanitize_answers(answers))
            )
            bounded = bounded.model_copy(update={"visited_section_ids": visited})

        result = validate_submission(published.sections, answers, visited)
        if not result.valid:
            raise SubmissionRejectedError(result)

        submission = self._store.add_submission(
            record.id, answers=result.sanitized, metadata=bounded
        )
        logger.info(
            "Stored submission",
            extra={
                "intake_id": record.id,
                "submission_id": submission.id,
                "answers": len(result.sanitized),
            },
        )
        self._notify(
            self._pubsub.publish_submission_received if self._pubsub else None,
            intake_id=record.id,
            submission_id=submission.id,
        )
        return submission

    def list_submissions(self, intake_id: str, *, limit: int = 100) -> list[SubmissionRecord]:
        return self._store.list_submissions(intake_id, limit=limit)

    def _snapshot_draft(self, record: IntakeRecord) -> IntakeDraft:
        if record.draft is None or not record.draft.sections:
            raise DraftStructureError("Flow must have at least one section.")
        return record.draft.model_copy(deep=True)

    def _notify(self, publish: Callable[..., str] | None, **kwargs: Any) -> None:
        if publish is None:
            return
        try:
            publish(**kwargs)
        except Exception as exc:
            logger.warning(
                "Event publishing failed (non-fatal)",
                exc_info=True,
                extra={"error": str(exc), **{k: str(v) for k, v in kwargs.items()}},
            )


__all__ = ["DraftUpdate", "IntakeService", "PublishOutcome", "RoutingSuggestion"]
