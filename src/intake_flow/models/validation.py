from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from pydantic import Field

from .block import IntakeModel


class Severity(str, Enum):
    error = "error"
    warning = "warning"


class FlowIssue(IntakeModel):
    severity: Severity
    code: str
    message: str
    section_id: str | None = None
    rule_id: str | None = None
    block_id: str | None = None


class FlowStats(IntakeModel):
    start_sections: tuple[str, ...] = Field(default_factory=tuple)
    end_sections: tuple[str, ...] = Field(default_factory=tuple)
    unreachable_sections: tuple[str, ...] = Field(default_factory=tuple)
    total_sections: int = 0


class FlowValidationResult(IntakeModel):
    is_valid: bool
    errors: tuple[FlowIssue, ...] = Field(default_factory=tuple)
    warnings: tuple[FlowIssue, ...] = Field(default_factory=tuple)
    stats: FlowStats = Field(default_factory=FlowStats)

    @property
    def error_messages(self) -> list[str]:
        return [issue.message for issue in self.errors]


class SubmissionError(IntakeModel):
    block_id: str
    label: str
    message: str


class SubmissionResult(IntakeModel):
    valid: bool
    errors: tuple[SubmissionError, ...] = Field(default_factory=tuple)
    sanitized: Mapping[str, Any] = Field(default_factory=dict)


__all__ = [
    "FlowIssue",
    "FlowStats",
    "FlowValidationResult",
    "Severity",
    "SubmissionError",
    "SubmissionResult",
]
