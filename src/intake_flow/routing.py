from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from .models.intake import RoutingRule, Section


def _answer_matches(answer: Any, expected: str | None) -> bool:
    if expected is None:
        return False
    if isinstance(answer, str):
        return answer == expected
    if isinstance(answer, (list, tuple)):
        return any(isinstance(item, str) and item == expected for item in answer)
    return False


def match_conditional(rules: Iterable[RoutingRule], answers: Mapping[str, Any]) -> RoutingRule | None:
    """First phase: the first ``equals`` rule whose condition holds."""
    for rule in rules:
        if rule.operator != "equals" or not rule.from_block_id:
            continue
        if _answer_matches(answers.get(rule.from_block_id), rule.value):
            return rule
    return None


def match_fallback(rules: Iterable[RoutingRule]) -> RoutingRule | None:
    """Second phase: the section's ``any`` rule, if it has one."""
    for rule in rules:
        if rule.operator == "any":
            return rule
    return None


def resolve_next(section: Section, answers: Mapping[str, Any]) -> str | None:
    """Return the id of the section that follows ``section``, or None when it is terminal.

    Every ``equals`` rule is evaluated before any ``any`` rule, whatever their order in
    the list. A multi-valued answer matches when it contains the rule value.
    """
    rule = match_conditional(section.routing, answers) or match_fallback(section.routing)
    return rule.next_section_id if rule else None


def trace_path(
    sections: Sequence[Section],
    answers: Mapping[str, Any],
    *,
    start: str | None = None,
) -> list[str]:
    """Walk the resolver from the entry section and return the visited section ids.

    Stops at a terminal section, at a target that is not in the graph, or before
    revisiting a section.
    """
    by_id = {section.id: section for section in sections}
    current = start if start is not None else (sections[0].id if sections else None)
    path: list[str] = []
    seen: set[str] = set()
    while current is not None and current in by_id and current not in seen:
        path.append(current)
        seen.add(current)
        current = resolve_next(by_id[current], answers)
    return path


__all__ = ["match_conditional", "match_fallback", "resolve_next", "trace_path"]
