from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import Field

from .block import IntakeModel

MAX_VISITED_SECTIONS = 100
MAX_SECTION_ID_LENGTH = 200
MAX_TIMESTAMP_LENGTH = 64


class SubmissionMetadata(IntakeModel):
    visited_section_ids: tuple[str, ...] = Field(default_factory=tuple)
    submitted_at: str | None = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | None) -> "SubmissionMetadata":
        """Keep only the bounded fields we persist; every other key is dropped."""
        if not isinstance(raw, Mapping):
            return cls()

        visited = raw.get("visitedSectionIds", raw.get("visited_section_ids"))
        visited_ids: list[str] = []
        if isinstance(visited, (list, tuple)):
            for item in visited[:MAX_VISITED_SECTIONS]:
                if isinstance(item, str):
                    visited_ids.append(item[:MAX_SECTION_ID_LENGTH])

        submitted_at = raw.get("submittedAt", raw.get("submitted_at"))
        if not isinstance(submitted_at, str):
            submitted_at = None
        else:
            submitted_at = submitted_at[:MAX_TIMESTAMP_LENGTH]

        return cls(visited_section_ids=tuple(visited_ids), submitted_at=submitted_at)


class SubmissionRecord(IntakeModel):
    id: str
    intake_id: str
    answers: Mapping[str, Any] = Field(default_factory=dict)
    metadata: SubmissionMetadata = Field(default_factory=SubmissionMetadata)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = ["SubmissionMetadata", "SubmissionRecord"]
