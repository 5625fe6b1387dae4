from __future__ import annotations

from typing import Sequence

from .models.validation import FlowIssue, FlowValidationResult, SubmissionResult


class IntakeFlowError(Exception):
    """Base class for errors raised by the intake flow engine."""


class IntakeNotFoundError(IntakeFlowError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Intake not found: {key}")


class SectionNotFoundError(IntakeFlowError):
    def __init__(self, slug: str, section_id: str) -> None:
        self.slug = slug
        self.section_id = section_id
        super().__init__(f"Section {section_id} not found in intake {slug}")


class FeatureUnavailableError(IntakeFlowError):
    """An optional collaborator (such as the routing generator) is not configured."""


class DraftStructureError(IntakeFlowError):
    """The draft is missing data the validators need (no draft, no sections)."""


class PublishRejectedError(IntakeFlowError):
    def __init__(self, result: FlowValidationResult) -> None:
        self.result = result
        super().__init__("; ".join(result.error_messages) or "Flow validation failed")


class SubmissionRejectedError(IntakeFlowError):
    def __init__(self, result: SubmissionResult) -> None:
        self.result = result
        super().__init__(f"Submission rejected with {len(result.errors)} error(s)")


class ProposalRejectedError(IntakeFlowError):
    def __init__(self, message: str, issues: Sequence[FlowIssue] = ()) -> None:
        self.issues = tuple(issues)
        super().__init__(message)


class RateLimitExceeded(IntakeFlowError):
    def __init__(self, key: str, retry_after: float) -> None:
        self.key = key
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for {key}")


__all__ = [
    "DraftStructureError",
    "FeatureUnavailableError",
    "IntakeFlowError",
    "IntakeNotFoundError",
    "ProposalRejectedError",
    "PublishRejectedError",
    "RateLimitExceeded",
    "SectionNotFoundError",
    "SubmissionRejectedError",
]
