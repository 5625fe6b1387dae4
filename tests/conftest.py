from __future__ import annotations

from pathlib import Path

import pytest

from intake_flow.models.intake import IntakeDraft

FIXTURES = Path(__file__).resolve().parents[1] / "data" / "intakes"


def load_draft(name: str) -> IntakeDraft:
    fixture_path = FIXTURES / f"{name}.json"
    return IntakeDraft.model_validate_json(fixture_path.read_text(encoding="utf-8"))


@pytest.fixture
def plan_draft() -> IntakeDraft:
    return load_draft("plan_branching")


@pytest.fixture
def plan_sections(plan_draft):
    return plan_draft.sections
