from __future__ import annotations

import json
import logging
from typing import Any, Protocol, Sequence

from pydantic import Field, ValidationError

from .errors import ProposalRejectedError
from .flow_validation import check_fallbacks, check_rule_integrity
from .models.block import ImageChoiceBlock, IntakeModel, QuestionBlock
from .models.intake import RoutingRule, Section
from .models.validation import FlowIssue, Severity

logger = logging.getLogger(__name__)

MIN_SECTIONS_FOR_ROUTING = 2

ROUTING_INSTRUCTIONS = """You design the navigation of guided intake forms. Connect the
sections below with routing rules that form a logical flow.

Rules:
1. Reply with JSON only, matching the response schema.
2. Use only section ids and block ids that appear in the data.
3. An "equals" rule needs "fromBlockId" and "value". The value must be one of the block's
   options: the option text for select/multi questions, the option "id" for image choices.
4. An "any" rule is the fallback; omit "fromBlockId" and "value". At most one per section.
5. "equals" rules are evaluated before the "any" rule.
6. Give no rules to the last logical section; it leads to completion automatically.
7. Every other section needs at least one outgoing rule.

Response schema:
{
  "routing": [
    {
      "sectionId": "source section id",
      "rules": [
        {"id": "rule_1", "operator": "equals", "fromBlockId": "block id",
         "value": "option", "nextSectionId": "target section id"}
      ]
    }
  ],
  "explanation": "one or two sentences"
}
"""


class SectionRouting(IntakeModel):
    section_id: str
    rules: tuple[RoutingRule, ...] = Field(default_factory=tuple)


class RoutingProposal(IntakeModel):
    routing: tuple[SectionRouting, ...] = Field(default_factory=tuple)
    explanation: str | None = None


class JsonGenerator(Protocol):
    def generate_json(self, prompt: str, *, temperature: float = ...) -> Any:
        ...


def summarize_sections(sections: Sequence[Section]) -> list[dict[str, Any]]:
    """Redacted view of the graph: ids and labels, plus options for choice blocks only."""
    summary: list[dict[str, Any]] = []
    for section in sections:
        blocks: list[dict[str, Any]] = []
        for block in section.blocks:
            entry: dict[str, Any] = {"id": block.id, "type": block.type}
            if isinstance(block, QuestionBlock):
                entry["inputType"] = block.input_type
                entry["label"] = block.label
                if block.input_type in ("select", "multi"):
                    entry["options"] = list(block.options or ())
            elif isinstance(block, ImageChoiceBlock):
                entry["label"] = block.label
                entry["options"] = [
                    {"id": option.id, "label": option.label or "Untitled"}
                    for option in block.options
                ]
            else:
                label = getattr(block, "label", None) or getattr(block, "text", None)
                entry["label"] = (label or "(content)")[:60]
            blocks.append(entry)
        summary.append(
            {
                "id": section.id,
                "title": section.title or "Untitled Section",
                "blocks": blocks,
            }
        )
    return summary


def check_proposal(sections: Sequence[Section], proposal: RoutingProposal) -> list[FlowIssue]:
    """Integrity issues in a proposal; an empty list means it can be merged."""
    by_id = {section.id: section for section in sections}
    section_ids = list(by_id)
    issues: list[FlowIssue] = []
    proposed: set[str] = set()

    for entry in proposal.routing:
        section = by_id.get(entry.section_id)
        if section is None:
            issues.append(
                FlowIssue(
                    severity=Severity.error,
                    code="unknown_section",
                    message=f"Proposal references non-existent section: {entry.section_id}",
                    section_id=entry.section_id,
                )
            )
            continue
        if entry.section_id in proposed:
            issues.append(
                FlowIssue(
                    severity=Severity.error,
                    code="duplicate_proposal_entry",
                    message=f"Proposal lists section {entry.section_id} more than once.",
                    section_id=entry.section_id,
                )
            )
            continue
        proposed.add(entry.section_id)

        candidate = section.model_copy(update={"routing": entry.rules})
        issues.extend(check_rule_integrity(candidate, section_ids))
        issues.extend(check_fallbacks(candidate))
    return issues


def apply_proposal(sections: Sequence[Section], proposal: RoutingProposal) -> tuple[Section, ...]:
    """Return new sections with routing replaced for every section the proposal covers."""
    replacements = {entry.section_id: entry.rules for entry in proposal.routing}
    return tuple(
        section.model_copy(update={"routing": replacements[section.id]})
        if section.id in replacements
        else section
        for section in sections
    )


def build_prompt(sections: Sequence[Section], intent: str | None = None) -> str:
    summary = json.dumps(summarize_sections(sections), ensure_ascii=False, indent=2)
    request = (
        f'Author\'s routing intent: "{intent}"'
        if intent
        else "Create the most logical flow for these sections."
    )
    return (
        f"{ROUTING_INSTRUCTIONS}\n"
        f"Sections:\n{summary}\n\n"
        f"{request}\n"
        "Branch on select and image choice questions where the options suggest different "
        "paths; connect other sections with a fallback rule."
    )


def parse_proposal(payload: Any) -> RoutingProposal:
    try:
        return RoutingProposal.model_validate(payload)
    except ValidationError as exc:
        raise ProposalRejectedError(
            f"Generated routing did not match the expected structure: {exc.error_count()} problem(s)"
        ) from exc


class RoutingProposalGenerator:
    def __init__(self, generator: JsonGenerator, *, temperature: float = 0.4) -> None:
        self._generator = generator
        self._temperature = temperature

    def propose(self, sections: Sequence[Section], *, intent: str | None = None) -> RoutingProposal:
        if len(sections) < MIN_SECTIONS_FOR_ROUTING:
            raise ProposalRejectedError("At least 2 sections are required to generate routing.")

        try:
            payload = self._generator.generate_json(
                build_prompt(sections, intent), temperature=self._temperature
            )
        except ValueError as exc:
            raise ProposalRejectedError("Failed to parse generated routing") from exc
        proposal = parse_proposal(payload)
        issues = check_proposal(sections, proposal)
        if issues:
            logger.warning(
                "Rejected generated routing",
                extra={"issues": [issue.code for issue in issues]},
            )
            raise ProposalRejectedError(issues[0].message, issues)

        logger.info(
            "Generated routing proposal",
            extra={
                "sections": len(proposal.routing),
                "rules": sum(len(entry.rules) for entry in proposal.routing),
            },
        )
        return proposal


__all__ = [
    "RoutingProposal",
    "RoutingProposalGenerator",
    "SectionRouting",
    "apply_proposal",
    "build_prompt",
    "check_proposal",
    "parse_proposal",
    "summarize_sections",
]
