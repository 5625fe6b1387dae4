import pytest
from fastapi.testclient import TestClient

from intake_flow.intake_service import IntakeService
from intake_flow.intake_store import InMemoryIntakeStore
from intake_flow.rate_limit import SlidingWindowRateLimiter
from intake_flow.routing_proposal import RoutingProposalGenerator
from services.api import main


class StaticGenerator:
    def __init__(self, payload):
        self.payload = payload

    def generate_json(self, prompt, *, temperature=0.4):
        return self.payload


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main, "service", IntakeService(InMemoryIntakeStore()))
    monkeypatch.setattr(
        main, "rate_limiter", SlidingWindowRateLimiter(max_requests=3, window_seconds=60)
    )
    return TestClient(main.app)


@pytest.fixture
def draft_payload(plan_draft):
    return plan_draft.model_dump(mode="json", by_alias=True)


def create_intake(client, draft_payload=None) -> dict:
    response = client.post("/v1/intakes", json={"title": "Kickoff", "workspaceId": "ws_1"})
    assert response.status_code == 201
    record = response.json()
    if draft_payload is not None:
        saved = client.put(f"/v1/intakes/{record['id']}/draft", json=draft_payload)
        assert saved.status_code == 200
    return record


def publish(client, draft_payload) -> dict:
    record = create_intake(client, draft_payload)
    response = client.post(f"/v1/intakes/{record['id']}/publish")
    assert response.status_code == 200
    return response.json()


def test_healthcheck(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-ID"]


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-42"})
    assert response.headers["X-Request-ID"] == "req-42"


def test_create_get_and_list(client):
    record = create_intake(client)

    assert record["workspaceId"] == "ws_1"
    assert record["slug"].startswith("kickoff-")
    assert client.get(f"/v1/intakes/{record['id']}").json()["id"] == record["id"]

    listed = client.get("/v1/intakes", params={"workspace_id": "ws_1"}).json()
    assert [item["id"] for item in listed] == [record["id"]]
    assert client.get("/v1/intakes", params={"workspace_id": "other"}).json() == []

    missing = client.get("/v1/intakes/intake_missing")
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Intake not found"}


def test_validate_reports_stats(client, draft_payload):
    record = create_intake(client, draft_payload)
    body = client.post(f"/v1/intakes/{record['id']}/validate").json()

    assert body["isValid"] is True
    assert body["stats"]["startSections"] == ["s_start"]
    assert body["stats"]["totalSections"] == 4


def test_publish_and_answer_end_to_end(client, draft_payload):
    published = publish(client, draft_payload)
    slug = published["slug"]
    assert published["warnings"] == []
    assert published["publishedAt"]

    public = client.get(f"/v1/public/intakes/{slug}").json()
    assert [section["id"] for section in public["sections"]] == ["s_start", "s_basic", "s_pro", "s_done"]

    next_response = client.post(
        f"/v1/public/intakes/{slug}/next",
        json={"sectionId": "s_start", "answers": {"q_plan": "Pro"}},
    )
    assert next_response.json() == {"nextSectionId": "s_pro"}
    last = client.post(f"/v1/public/intakes/{slug}/next", json={"sectionId": "s_done"})
    assert last.json() == {"nextSectionId": None}

    submitted = client.post(
        f"/v1/public/intakes/{slug}/submissions",
        json={
            "answers": {"q_plan": "Pro", "q_budget": "2500", "b_call": True},
            "metadata": {"visitedSectionIds": ["s_start", "s_pro", "s_done"]},
        },
    )
    assert submitted.status_code == 201
    submission_id = submitted.json()["id"]

    submissions = client.get(f"/v1/intakes/{published['id']}/submissions").json()
    assert submissions[0]["id"] == submission_id
    assert submissions[0]["answers"]["q_budget"] == 2500
    assert submissions[0]["metadata"]["visitedSectionIds"] == ["s_start", "s_pro", "s_done"]


def test_publish_rejects_with_every_error(client, draft_payload):
    start = draft_payload["sections"][0]
    start["routing"] = [
        {"id": "r1", "operator": "any", "nextSectionId": "s_gone"},
        {"id": "r2", "operator": "any", "nextSectionId": "s_basic"},
    ]
    record = create_intake(client, draft_payload)

    response = client.post(f"/v1/intakes/{record['id']}/publish")

    assert response.status_code == 422
    body = response.json()
    assert body["detail"] == "Flow validation failed"
    assert len(body["errors"]) == 2
    assert any("s_gone" in message for message in body["errors"])
    assert client.get(f"/v1/intakes/{record['id']}").json()["published"] is None


def test_publish_without_sections_is_a_bad_request(client):
    record = create_intake(client)
    response = client.post(f"/v1/intakes/{record['id']}/publish")
    assert response.status_code == 400


def test_unpublished_intake_is_hidden(client, draft_payload):
    record = create_intake(client, draft_payload)
    assert client.get(f"/v1/public/intakes/{record['slug']}").status_code == 404


def test_unknown_section_in_next_is_404(client, draft_payload):
    slug = publish(client, draft_payload)["slug"]
    response = client.post(f"/v1/public/intakes/{slug}/next", json={"sectionId": "s_nope"})
    assert response.status_code == 404


def test_submission_errors_are_per_block(client, draft_payload):
    slug = publish(client, draft_payload)["slug"]
    response = client.post(
        f"/v1/public/intakes/{slug}/submissions",
        json={"answers": {"q_plan": "Basic", "q_name": ""}},
    )

    assert response.status_code == 422
    assert response.json()["errors"] == [
        {"blockId": "q_name", "label": "Company name", "message": "Company name is required"}
    ]


def test_submission_answers_must_be_an_object(client, draft_payload):
    slug = publish(client, draft_payload)["slug"]
    response = client.post(f"/v1/public/intakes/{slug}/submissions", json={"answers": ["x"]})
    assert response.status_code == 422


def test_submissions_are_rate_limited(client, draft_payload):
    slug = publish(client, draft_payload)["slug"]
    body = {"answers": {"q_plan": "Basic", "q_name": "Acme"}}
    headers = {"X-Forwarded-For": "203.0.113.7"}

    statuses = [
        client.post(f"/v1/public/intakes/{slug}/submissions", json=body, headers=headers).status_code
        for _ in range(4)
    ]
    assert statuses == [201, 201, 201, 429]

    blocked = client.post(f"/v1/public/intakes/{slug}/submissions", json=body, headers=headers)
    assert int(blocked.headers["Retry-After"]) >= 1

    other = client.post(
        f"/v1/public/intakes/{slug}/submissions",
        json=body,
        headers={"X-Forwarded-For": "198.51.100.1"},
    )
    assert other.status_code == 201


def test_routing_generation_needs_configuration(client, draft_payload):
    record = create_intake(client, draft_payload)
    response = client.post(f"/v1/intakes/{record['id']}/routing:generate", json={"intent": "x"})
    assert response.status_code == 503


def test_generate_and_apply_routing(monkeypatch, client, draft_payload):
    payload = {
        "routing": [
            {"sectionId": "s_basic", "rules": [{"id": "r_new", "operator": "any", "nextSectionId": "s_pro"}]}
        ],
        "explanation": "Everyone sees the pro questions.",
    }
    generator = RoutingProposalGenerator(StaticGenerator(payload))
    monkeypatch.setattr(main, "service", IntakeService(InMemoryIntakeStore(), routing_generator=generator))
    record = create_intake(client, draft_payload)

    generated = client.post(f"/v1/intakes/{record['id']}/routing:generate")
    assert generated.status_code == 200
    proposal = generated.json()["proposal"]
    assert proposal["explanation"] == "Everyone sees the pro questions."

    applied = client.post(f"/v1/intakes/{record['id']}/routing:apply", json=proposal)
    assert applied.status_code == 200
    sections = applied.json()["record"]["draft"]["sections"]
    assert sections[1]["routing"][0]["nextSectionId"] == "s_pro"


def test_generated_routing_with_unknown_ids_is_422(monkeypatch, client, draft_payload):
    payload = {
        "routing": [
            {"sectionId": "s_basic", "rules": [{"id": "r_new", "operator": "any", "nextSectionId": "s_ghost"}]}
        ]
    }
    generator = RoutingProposalGenerator(StaticGenerator(payload))
    monkeypatch.setattr(main, "service", IntakeService(InMemoryIntakeStore(), routing_generator=generator))
    record = create_intake(client, draft_payload)

    response = client.post(f"/v1/intakes/{record['id']}/routing:generate", json={"intent": "loop"})

    assert response.status_code == 422
    assert [issue["code"] for issue in response.json()["issues"]] == ["missing_target_section"]


def test_unexpected_errors_are_generic(monkeypatch, client):
    def boom(**kwargs):
        raise RuntimeError("secret internals")

    monkeypatch.setattr(main.service, "list_intakes", boom)
    response = TestClient(main.app, raise_server_exceptions=False).get("/v1/intakes")

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal error"}
