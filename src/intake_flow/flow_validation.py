from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping, Sequence

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from .block_schema import block_label
from .models.block import (
    BookCallBlock,
    ImageChoiceBlock,
    LinkPreviewBlock,
    QuestionBlock,
    choice_values,
    is_answer_block,
)
from .models.intake import RoutingRule, Section
from .models.validation import FlowIssue, FlowStats, FlowValidationResult, Severity
from .routing import match_fallback

logger = logging.getLogger(__name__)

_HTTP_URL = TypeAdapter(AnyHttpUrl)


@dataclass(frozen=True)
class FlowPolicy:
    unreachable_is_error: bool = False


def _error(code: str, message: str, **ids: str | None) -> FlowIssue:
    return FlowIssue(severity=Severity.error, code=code, message=message, **ids)


def _warning(code: str, message: str, **ids: str | None) -> FlowIssue:
    return FlowIssue(severity=Severity.warning, code=code, message=message, **ids)


def _title(section: Section) -> str:
    return section.title or "Untitled Section"


def check_rule_integrity(section: Section, section_ids: Iterable[str]) -> list[FlowIssue]:
    """Referential integrity of every rule in ``section``.

    Shared by publish-time validation and the AI routing proposal check.
    """
    known = set(section_ids)
    issues: list[FlowIssue] = []
    for rule in section.routing:
        ids = {"section_id": section.id, "rule_id": rule.id}
        if rule.next_section_id not in known:
            issues.append(
                _error(
                    "missing_target_section",
                    f"Routing rule '{rule.id}' in '{_title(section)}' points to missing "
                    f"section '{rule.next_section_id}'.",
                    **ids,
                )
            )
        if rule.operator == "equals":
            issues.extend(_check_condition(section, rule))
    return issues


def _check_condition(section: Section, rule: RoutingRule) -> list[FlowIssue]:
    ids = {"section_id": section.id, "rule_id": rule.id}
    if not rule.from_block_id or rule.value is None:
        return [
            _error(
                "incomplete_rule",
                f"Routing rule '{rule.id}' in '{_title(section)}' needs both a question "
                "and a value.",
                **ids,
            )
        ]

    block = section.find_block(rule.from_block_id)
    if block is None:
        return [
            _error(
                "missing_source_block",
                f"Routing rule '{rule.id}' references block '{rule.from_block_id}', "
                f"which is not in section '{_title(section)}'.",
                block_id=rule.from_block_id,
                **ids,
            )
        ]
    if not is_answer_block(block):
        return [
            _error(
                "non_answer_block",
                f"Routing rule '{rule.id}' references block '{block.id}', which does not "
                "collect an answer.",
                block_id=block.id,
                **ids,
            )
        ]

    values = choice_values(block)
    if values is None:
        return [
            _error(
                "non_choice_block",
                f"Routing rule '{rule.id}' references '{block_label(block)}', which is not "
                "a choice question.",
                block_id=block.id,
                **ids,
            )
        ]
    if rule.value not in values:
        return [
            _error(
                "invalid_rule_value",
                f"Routing condition value '{rule.value}' does not exist in the options of "
                f"'{block_label(block)}'.",
                block_id=block.id,
                **ids,
            )
        ]
    return []


def check_fallbacks(section: Section) -> list[FlowIssue]:
    count = sum(1 for rule in section.routing if rule.operator == "any")
    if count > 1:
        return [
            _error(
                "duplicate_fallback",
                f"Section '{_title(section)}' has {count} fallback ('any') routes. "
                "Only one is allowed.",
                section_id=section.id,
            )
        ]
    return []


def _check_structure(sections: Sequence[Section]) -> tuple[list[FlowIssue], list[FlowIssue]]:
    errors: list[FlowIssue] = []
    warnings: list[FlowIssue] = []
    seen_sections: set[str] = set()
    block_owner: dict[str, str] = {}

    for section in sections:
        if section.id in seen_sections:
            errors.append(
                _error(
                    "duplicate_section",
                    f"Section id '{section.id}' is used more than once.",
                    section_id=section.id,
                )
            )
        seen_sections.add(section.id)

        local: set[str] = set()
        for block in section.blocks:
            if block.id in local:
                errors.append(
                    _error(
                        "duplicate_block",
                        f"Block id '{block.id}' appears twice in '{_title(section)}'.",
                        section_id=section.id,
                        block_id=block.id,
                    )
                )
                continue
            local.add(block.id)
            owner = block_owner.setdefault(block.id, section.id)
            if owner != section.id:
                warnings.append(
                    _warning(
                        "shared_block_id",
                        f"Block id '{block.id}' is used in sections '{owner}' and "
                        f"'{section.id}'; their answers will overwrite each other.",
                        section_id=section.id,
                        block_id=block.id,
                    )
                )
    return errors, warnings


def _check_blocks(section: Section) -> tuple[list[FlowIssue], list[FlowIssue]]:
    errors: list[FlowIssue] = []
    warnings: list[FlowIssue] = []
    title = _title(section)

    for block in section.blocks:
        ids = {"section_id": section.id, "block_id": block.id}
        if isinstance(block, BookCallBlock):
            if not block.booking_url:
                errors.append(
                    _error(
                        "invalid_booking_url",
                        f'"Book a Call" block in "{title}" is missing a booking URL.',
                        **ids,
                    )
                )
            else:
                try:
                    _HTTP_URL.validate_python(block.booking_url)
                except ValidationError:
                    errors.append(
                        _error(
                            "invalid_booking_url",
                            f'"Book a Call" block in "{title}" has an invalid URL. '
                            "Must be http:// or https://.",
                            **ids,
                        )
                    )

        elif isinstance(block, LinkPreviewBlock):
            if block.max_items is not None and block.max_items <= 0:
                warnings.append(
                    _warning(
                        "link_max_items",
                        f'"Link Preview" block in "{title}" has max links set to '
                        f"{block.max_items}.",
                        **ids,
                    )
                )

        elif isinstance(block, (QuestionBlock, ImageChoiceBlock)):
            values = choice_values(block)
            if values is not None and len(values) < 2:
                warnings.append(
                    _warning(
                        "sparse_options",
                        f"'{block_label(block)}' in \"{title}\" offers fewer than two options.",
                        **ids,
                    )
                )
    return errors, warnings


def build_edges(sections: Sequence[Section]) -> dict[str, list[str]]:
    """Adjacency over rules whose target exists, in rule order without repeats."""
    known = {section.id for section in sections}
    edges: dict[str, list[str]] = {section.id: [] for section in sections}
    for section in sections:
        targets = edges[section.id]
        for rule in section.routing:
            if rule.next_section_id in known and rule.next_section_id not in targets:
                targets.append(rule.next_section_id)
    return edges


def _reachable(entry: str, edges: Mapping[str, Sequence[str]]) -> set[str]:
    reachable = {entry}
    queue = deque([entry])
    while queue:
        current = queue.popleft()
        for nxt in edges.get(current, ()):
            if nxt not in reachable:
                reachable.add(nxt)
                queue.append(nxt)
    return reachable


def _can_finish(
    edges: Mapping[str, Sequence[str]],
    open_ended: Iterable[str] = (),
) -> set[str]:
    """Sections from which the flow can reach completion.

    A section completes when it has no outgoing edge, or when it is in ``open_ended``
    (no fallback rule, so an unmatched answer resolves to None).
    """
    incoming: dict[str, list[str]] = {node: [] for node in edges}
    for node, targets in edges.items():
        for target in targets:
            incoming[target].append(node)

    finish = {node for node, targets in edges.items() if not targets}
    finish.update(node for node in open_ended if node in edges)
    queue = deque(finish)
    while queue:
        current = queue.popleft()
        for prev in incoming.get(current, ()):
            if prev not in finish:
                finish.add(prev)
                queue.append(prev)
    return finish


def find_cycles(entry: str, edges: Mapping[str, Sequence[str]]) -> list[list[str]]:
    """Depth-first search from ``entry``; each back-edge onto the recursion stack is a cycle."""
    visited: set[str] = set()
    on_stack: set[str] = set()
    stack: list[str] = []
    cycles: list[list[str]] = []
    seen: set[frozenset[str]] = set()

    visited.add(entry)
    on_stack.add(entry)
    stack.append(entry)
    pending: list[Iterator[str]] = [iter(edges.get(entry, ()))]

    while pending:
        nxt = next(pending[-1], None)
        if nxt is None:
            pending.pop()
            on_stack.discard(stack.pop())
            continue
        if nxt in on_stack:
            cycle = stack[stack.index(nxt):]
            key = frozenset(cycle)
            if key not in seen:
                seen.add(key)
                cycles.append(cycle)
        elif nxt not in visited:
            visited.add(nxt)
            on_stack.add(nxt)
            stack.append(nxt)
            pending.append(iter(edges.get(nxt, ())))
    return cycles


def _check_cycles(
    sections: Sequence[Section],
    entry: str,
    edges: Mapping[str, Sequence[str]],
) -> tuple[list[FlowIssue], list[FlowIssue]]:
    errors: list[FlowIssue] = []
    warnings: list[FlowIssue] = []
    open_ended = [section.id for section in sections if match_fallback(section.routing) is None]
    finish = _can_finish(edges, open_ended)

    for cycle in find_cycles(entry, edges):
        path = " → ".join(f"'{node}'" for node in [*cycle, cycle[0]])
        if any(node in finish for node in cycle):
            warnings.append(
                _warning(
                    "escapable_cycle",
                    f"This flow contains a loop ({path}). Respondents can leave it.",
                    section_id=cycle[0],
                )
            )
        else:
            errors.append(
                _error(
                    "inescapable_cycle",
                    f"Sections {path} form a loop with no route to the end of the form.",
                    section_id=cycle[0],
                )
            )
    return errors, warnings


def validate_flow(
    sections: Sequence[Section],
    policy: FlowPolicy | None = None,
) -> FlowValidationResult:
    """Prove a section graph is safe to publish.

    Every problem found is reported; nothing is raised for data-shape issues.
    """
    policy = policy or FlowPolicy()
    sections = tuple(sections)

    if not sections:
        return FlowValidationResult(
            is_valid=False,
            errors=(_error("empty_flow", "Flow must have at least one section."),),
        )

    errors, warnings = _check_structure(sections)
    section_ids = [section.id for section in sections]

    for section in sections:
        errors.extend(check_rule_integrity(section, section_ids))
        errors.extend(check_fallbacks(section))
        block_errors, block_warnings = _check_blocks(section)
        errors.extend(block_errors)
        warnings.extend(block_warnings)

    edges = build_edges(sections)
    entry = sections[0].id
    reachable = _reachable(entry, edges)

    unreachable: list[str] = []
    for section in sections:
        if section.id in reachable or section.id in unreachable:
            continue
        unreachable.append(section.id)
        message = f"Section '{_title(section)}' is unreachable from the start."
        if policy.unreachable_is_error:
            errors.append(_error("unreachable_section", message, section_id=section.id))
        else:
            warnings.append(_warning("unreachable_section", message, section_id=section.id))

    cycle_errors, cycle_warnings = _check_cycles(sections, entry, edges)
    errors.extend(cycle_errors)
    warnings.extend(cycle_warnings)

    last = sections[-1]
    if last.routing:
        warnings.append(
            _warning(
                "terminal_has_routes",
                f"The last section '{_title(last)}' has routing rules; confirm it should not "
                "lead to completion.",
                section_id=last.id,
            )
        )

    incoming = {target for targets in edges.values() for target in targets}
    start_sections = tuple(node for node in edges if node not in incoming)
    end_sections = tuple(node for node, targets in edges.items() if not targets)
    if not end_sections:
        warnings.append(
            _warning("no_terminal_section", "No end sections defined (flow might loop forever).")
        )

    result = FlowValidationResult(
        is_valid=not errors,
        errors=tuple(errors),
        warnings=tuple(warnings),
        stats=FlowStats(
            start_sections=start_sections,
            end_sections=end_sections,
            unreachable_sections=tuple(unreachable),
            total_sections=len(sections),
        ),
    )
    logger.debug(
        "Validated flow",
        extra={
            "sections": len(sections),
            "errors": len(result.errors),
            "warnings": len(result.warnings),
        },
    )
    return result


__all__ = [
    "FlowPolicy",
    "build_edges",
    "check_fallbacks",
    "check_rule_integrity",
    "find_cycles",
    "validate_flow",
]
