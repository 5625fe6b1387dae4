import json

import pytest

from intake_flow.errors import ProposalRejectedError
from intake_flow.routing_proposal import (
    RoutingProposal,
    RoutingProposalGenerator,
    apply_proposal,
    build_prompt,
    check_proposal,
    summarize_sections,
)
from intake_flow.vertex_ai_adapter import strip_code_fence


class FakeGenerator:
    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.prompts = []

    def generate_json(self, prompt, *, temperature=0.4):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.payload


GOOD_PAYLOAD = {
    "routing": [
        {
            "sectionId": "s_start",
            "rules": [
                {
                    "id": "r1",
                    "operator": "equals",
                    "fromBlockId": "q_plan",
                    "value": "Basic",
                    "nextSectionId": "s_basic",
                },
                {"id": "r2", "operator": "any", "nextSectionId": "s_pro"},
            ],
        },
        {"sectionId": "s_basic", "rules": [{"id": "r3", "operator": "any", "nextSectionId": "s_done"}]},
    ],
    "explanation": "Basic customers skip the pro questions.",
}


def test_summary_exposes_options_only_for_choice_blocks(plan_sections):
    summary = summarize_sections(plan_sections)
    start, _, pro, done = summary

    assert start["id"] == "s_start"
    plan = next(block for block in start["blocks"] if block["id"] == "q_plan")
    assert plan["options"] == ["Basic", "Pro"]
    style = next(block for block in pro["blocks"] if block["id"] == "ic_style")
    assert style["options"] == [
        {"id": "opt_minimal", "label": "Minimal"},
        {"id": "opt_bold", "label": "Bold"},
    ]
    notes = next(block for block in done["blocks"] if block["id"] == "q_notes")
    assert "options" not in notes
    assert "imageUrl" not in json.dumps(summary)


def test_prompt_carries_intent_and_section_ids(plan_sections):
    prompt = build_prompt(plan_sections, "Send pro customers to the pro page")
    assert '"s_pro"' in prompt
    assert "Send pro customers to the pro page" in prompt


def test_generator_returns_checked_proposal(plan_sections):
    fake = FakeGenerator(GOOD_PAYLOAD)
    proposal = RoutingProposalGenerator(fake).propose(plan_sections, intent="split by plan")

    assert len(fake.prompts) == 1
    assert proposal.routing[0].section_id == "s_start"
    assert proposal.explanation == "Basic customers skip the pro questions."


def test_unknown_ids_are_rejected_not_coerced(plan_sections):
    payload = {
        "routing": [
            {"sectionId": "s_start", "rules": [{"id": "r1", "operator": "any", "nextSectionId": "s_ghost"}]},
            {"sectionId": "s_phantom", "rules": []},
        ]
    }
    with pytest.raises(ProposalRejectedError) as excinfo:
        RoutingProposalGenerator(FakeGenerator(payload)).propose(plan_sections)

    codes = [issue.code for issue in excinfo.value.issues]
    assert codes == ["missing_target_section", "unknown_section"]


def test_invalid_option_value_is_rejected(plan_sections):
    proposal = RoutingProposal.model_validate(
        {
            "routing": [
                {
                    "sectionId": "s_start",
                    "rules": [
                        {
                            "id": "r1",
                            "operator": "equals",
                            "fromBlockId": "q_plan",
                            "value": "Enterprise",
                            "nextSectionId": "s_pro",
                        }
                    ],
                }
            ]
        }
    )
    assert [issue.code for issue in check_proposal(plan_sections, proposal)] == ["invalid_rule_value"]


def test_bad_json_and_bad_shape_are_rejected(plan_sections):
    with pytest.raises(ProposalRejectedError, match="Failed to parse generated routing"):
        RoutingProposalGenerator(FakeGenerator(error=ValueError("bad json"))).propose(plan_sections)

    with pytest.raises(ProposalRejectedError, match="expected structure"):
        RoutingProposalGenerator(FakeGenerator({"routing": "nope"})).propose(plan_sections)


def test_needs_two_sections(plan_sections):
    fake = FakeGenerator(GOOD_PAYLOAD)
    with pytest.raises(ProposalRejectedError):
        RoutingProposalGenerator(fake).propose(plan_sections[:1])
    assert fake.prompts == []


def test_apply_replaces_only_proposed_sections(plan_sections):
    proposal = RoutingProposal.model_validate(GOOD_PAYLOAD)
    merged = apply_proposal(plan_sections, proposal)

    assert [rule.id for rule in merged[0].routing] == ["r1", "r2"]
    assert [rule.id for rule in merged[1].routing] == ["r3"]
    assert merged[2] == plan_sections[2]
    assert plan_sections[0].routing[0].id == "r_fallback"


def test_strip_code_fence():
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence("```\n[]\n```") == "[]"
    assert strip_code_fence(' {"a": 1} ') == '{"a": 1}'
