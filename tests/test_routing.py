from intake_flow.models.intake import Section
from intake_flow.routing import match_conditional, match_fallback, resolve_next, trace_path


def make_section(section_id: str, routing=(), blocks=()) -> Section:
    return Section.model_validate(
        {"id": section_id, "title": section_id, "blocks": list(blocks), "routing": list(routing)}
    )


def test_equals_rule_wins_over_earlier_fallback(plan_sections):
    start = plan_sections[0]
    assert start.routing[0].operator == "any"

    assert resolve_next(start, {"q_plan": "Pro"}) == "s_pro"
    assert resolve_next(start, {"q_plan": "Basic"}) == "s_basic"
    assert resolve_next(start, {}) == "s_basic"


def test_terminal_section_resolves_to_none(plan_sections):
    assert resolve_next(plan_sections[-1], {"q_notes": "hi"}) is None


def test_equals_without_fallback_can_end_the_flow():
    section = make_section(
        "a",
        routing=[
            {"id": "r1", "operator": "equals", "fromBlockId": "q", "value": "x", "nextSectionId": "b"}
        ],
    )
    assert resolve_next(section, {"q": "x"}) == "b"
    assert resolve_next(section, {"q": "y"}) is None


def test_multi_answer_matches_by_membership():
    section = make_section(
        "a",
        routing=[
            {"id": "r1", "operator": "equals", "fromBlockId": "q", "value": "Design", "nextSectionId": "b"},
            {"id": "r2", "operator": "any", "nextSectionId": "c"},
        ],
    )
    assert resolve_next(section, {"q": ["Copy", "Design"]}) == "b"
    assert resolve_next(section, {"q": ["Copy"]}) == "c"


def test_first_matching_equals_rule_in_list_order():
    section = make_section(
        "a",
        routing=[
            {"id": "r1", "operator": "equals", "fromBlockId": "q", "value": "A", "nextSectionId": "b"},
            {"id": "r2", "operator": "equals", "fromBlockId": "q", "value": "B", "nextSectionId": "c"},
        ],
    )
    assert match_conditional(section.routing, {"q": ["B", "A"]}).id == "r1"


def test_non_string_answers_never_match():
    section = make_section(
        "a",
        routing=[
            {"id": "r1", "operator": "equals", "fromBlockId": "q", "value": "1", "nextSectionId": "b"},
        ],
    )
    assert resolve_next(section, {"q": 1}) is None
    assert resolve_next(section, {"q": {"value": "1"}}) is None
    assert resolve_next(section, {"q": [1]}) is None


def test_match_fallback_returns_first_any_rule():
    section = make_section(
        "a",
        routing=[
            {"id": "r1", "operator": "any", "nextSectionId": "b"},
            {"id": "r2", "operator": "any", "nextSectionId": "c"},
        ],
    )
    assert match_fallback(section.routing).id == "r1"


def test_trace_path_follows_answers(plan_sections):
    assert trace_path(plan_sections, {"q_plan": "Pro"}) == ["s_start", "s_pro", "s_done"]
    assert trace_path(plan_sections, {"q_plan": "Basic"}) == ["s_start", "s_basic", "s_done"]


def test_trace_path_stops_before_revisiting_and_at_missing_targets():
    loop = [
        make_section("a", routing=[{"id": "r1", "operator": "any", "nextSectionId": "b"}]),
        make_section("b", routing=[{"id": "r2", "operator": "any", "nextSectionId": "a"}]),
    ]
    assert trace_path(loop, {}) == ["a", "b"]

    dangling = [make_section("a", routing=[{"id": "r1", "operator": "any", "nextSectionId": "gone"}])]
    assert trace_path(dangling, {}) == ["a"]
    assert trace_path([], {}) == []


def test_single_fallback_ignores_answers():
    section = make_section("a", routing=[{"id": "r1", "operator": "any", "nextSectionId": "b"}])
    for answers in ({}, {"q": "x"}, {"q": ["y", "z"]}, {"other": 3}):
        assert resolve_next(section, answers) == "b"
