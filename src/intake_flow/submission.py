from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from .block_schema import derive_schema
from .models.intake import Section
from .models.validation import SubmissionError, SubmissionResult

logger = logging.getLogger(__name__)

MAX_STRING_LENGTH = 10_000
MAX_ARRAY_ITEMS = 500
MAX_OBJECT_KEYS = 100
MAX_KEY_LENGTH = 200
MAX_DEPTH = 8


def sanitize_value(value: Any, *, _depth: int = 0) -> Any:
    """Bound a respondent-supplied value before it is validated or stored.

    Strings are truncated then trimmed, containers are capped and recursed into, and
    nesting beyond ``MAX_DEPTH`` collapses to None. Applying it twice changes nothing.
    """
    if isinstance(value, str):
        return value[:MAX_STRING_LENGTH].strip()
    if isinstance(value, (bool, int, float)) or value is None:
        return value
    if _depth >= MAX_DEPTH:
        return None
    if isinstance(value, (list, tuple)):
        return [sanitize_value(item, _depth=_depth + 1) for item in list(value)[:MAX_ARRAY_ITEMS]]
    if isinstance(value, Mapping):
        cleaned: dict[str, Any] = {}
        for key, item in list(value.items())[:MAX_OBJECT_KEYS]:
            cleaned[str(key)[:MAX_KEY_LENGTH]] = sanitize_value(item, _depth=_depth + 1)
        return cleaned
    # Anything else is not JSON data; store its text form.
    return str(value)[:MAX_STRING_LENGTH].strip()


def sanitize_answers(answers: Mapping[str, Any]) -> dict[str, Any]:
    return {
        str(block_id)[:MAX_KEY_LENGTH]: sanitize_value(value)
        for block_id, value in answers.items()
    }


def _sections_in_scope(
    sections: Sequence[Section],
    visited_section_ids: Iterable[str] | None,
) -> list[Section]:
    if visited_section_ids is None:
        return list(sections)
    visited = set(visited_section_ids)
    return [section for section in sections if section.id in visited]


def validate_submission(
    sections: Sequence[Section],
    answers: Mapping[str, Any],
    visited_section_ids: Iterable[str] | None = None,
) -> SubmissionResult:
    """Validate and sanitize an answer set against a published section graph.

    With ``visited_section_ids`` only blocks of those sections are validated; values
    for other blocks are still sanitized and carried through.
    """
    if not isinstance(answers, Mapping):
        raise TypeError(f"answers must be a mapping, got {type(answers).__name__}")

    sanitized = sanitize_answers(answers)
    errors: list[SubmissionError] = []

    for section in _sections_in_scope(sections, visited_section_ids):
        for block in section.blocks:
            schema = derive_schema(block)
            if schema is None:
                continue
            value, problems = schema.validate(sanitized.get(block.id))
            for message in problems:
                errors.append(
                    SubmissionError(block_id=block.id, label=schema.label, message=message)
                )
            if block.id in sanitized:
                sanitized[block.id] = value

    if errors:
        logger.info(
            "Submission failed validation",
            extra={"errors": len(errors), "blocks": sorted({e.block_id for e in errors})},
        )
    return SubmissionResult(valid=not errors, errors=tuple(errors), sanitized=sanitized)


__all__ = [
    "MAX_ARRAY_ITEMS",
    "MAX_DEPTH",
    "MAX_OBJECT_KEYS",
    "MAX_STRING_LENGTH",
    "sanitize_answers",
    "sanitize_value",
    "validate_submission",
]
