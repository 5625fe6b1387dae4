from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import Field

from intake_flow.errors import (
    DraftStructureError,
    FeatureUnavailableError,
    IntakeNotFoundError,
    ProposalRejectedError,
    PublishRejectedError,
    RateLimitExceeded,
    SectionNotFoundError,
    SubmissionRejectedError,
)
from intake_flow.firestore_intake_store import FirestoreIntakeStore
from intake_flow.flow_validation import FlowPolicy
from intake_flow.intake_service import IntakeService
from intake_flow.intake_store import InMemoryIntakeStore
from intake_flow.logging_config import set_request_id, setup_logging
from intake_flow.models.block import IntakeModel
from intake_flow.models.intake import IntakeDraft, IntakeRecord, PublishedIntake
from intake_flow.models.submission import SubmissionRecord
from intake_flow.models.validation import FlowIssue, FlowValidationResult
from intake_flow.pubsub_client import TOPIC_INTAKE_PUBLISHED, TOPIC_SUBMISSION_RECEIVED, PubSubClient
from intake_flow.rate_limit import SlidingWindowRateLimiter, client_ip
from intake_flow.routing_proposal import RoutingProposal, RoutingProposalGenerator
from intake_flow.vertex_ai_adapter import VertexAIAdapter


class CreateIntakeRequest(IntakeModel):
    title: str = Field(default="Untitled intake", max_length=200)
    workspace_id: str


class PublishResponse(IntakeModel):
    id: str
    slug: str
    published_at: datetime
    warnings: tuple[FlowIssue, ...]


class GenerateRoutingRequest(IntakeModel):
    intent: str | None = Field(default=None, max_length=2000)


class RoutingSuggestionResponse(IntakeModel):
    proposal: RoutingProposal
    validation: FlowValidationResult


class ApplyRoutingResponse(IntakeModel):
    record: IntakeRecord
    validation: FlowValidationResult


class NextSectionRequest(IntakeModel):
    section_id: str
    answers: dict[str, Any] = Field(default_factory=dict)


class NextSectionResponse(IntakeModel):
    next_section_id: str | None


class SubmitRequest(IntakeModel):
    answers: dict[str, Any]
    metadata: dict[str, Any] | None = None


class SubmitResponse(IntakeModel):
    id: str


# Environment configuration
ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")
PROJECT_ID = os.getenv("PROJECT_ID")
VERTEX_LOCATION = os.getenv("VERTEX_LOCATION", "us-central1")
VERTEX_MODEL = os.getenv("VERTEX_MODEL", "gemini-1.5-pro")
PUBSUB_TOPIC_INTAKE_PUBLISHED = os.getenv("PUBSUB_TOPIC_INTAKE_PUBLISHED", TOPIC_INTAKE_PUBLISHED)
PUBSUB_TOPIC_SUBMISSION_RECEIVED = os.getenv(
    "PUBSUB_TOPIC_SUBMISSION_RECEIVED", TOPIC_SUBMISSION_RECEIVED
)
UNREACHABLE_SECTIONS_FATAL = os.getenv("UNREACHABLE_SECTIONS_FATAL", "false").lower() == "true"
SUBMISSION_RATE_LIMIT = int(os.getenv("SUBMISSION_RATE_LIMIT", "10"))
SUBMISSION_RATE_WINDOW_SECONDS = float(os.getenv("SUBMISSION_RATE_WINDOW_SECONDS", "60"))

# Setup logging
setup_logging(environment=ENVIRONMENT, project_id=PROJECT_ID)
logger = logging.getLogger(__name__)

app = FastAPI(title="Intake Flow API", version="0.1.0")

# Use Firestore in production, in-memory for dev
if ENVIRONMENT == "dev":
    intake_store = InMemoryIntakeStore()
else:
    intake_store = FirestoreIntakeStore(project_id=PROJECT_ID)

# Events and routing proposals need a GCP project
pubsub_client = (
    PubSubClient(
        project_id=PROJECT_ID,
        published_topic=PUBSUB_TOPIC_INTAKE_PUBLISHED,
        submission_topic=PUBSUB_TOPIC_SUBMISSION_RECEIVED,
    )
    if PROJECT_ID
    else None
)
routing_generator = (
    RoutingProposalGenerator(
        VertexAIAdapter(project_id=PROJECT_ID, location=VERTEX_LOCATION, model_name=VERTEX_MODEL)
    )
    if PROJECT_ID
    else None
)

service = IntakeService(
    intake_store,
    policy=FlowPolicy(unreachable_is_error=UNREACHABLE_SECTIONS_FATAL),
    pubsub_client=pubsub_client,
    routing_generator=routing_generator,
)
rate_limiter = SlidingWindowRateLimiter(
    max_requests=SUBMISSION_RATE_LIMIT,
    window_seconds=SUBMISSION_RATE_WINDOW_SECONDS,
)


@app.middleware("http")
async def bind_request_id(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    set_request_id(request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(IntakeNotFoundError)
async def handle_not_found(request: Request, exc: IntakeNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "Intake not found"})


@app.exception_handler(SectionNotFoundError)
async def handle_section_not_found(request: Request, exc: SectionNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "Section not found"})


@app.exception_handler(DraftStructureError)
async def handle_draft_structure(request: Request, exc: DraftStructureError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PublishRejectedError)
async def handle_publish_rejected(request: Request, exc: PublishRejectedError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Flow validation failed",
            "errors": exc.result.error_messages,
            "issues": [
                issue.model_dump(mode="json", by_alias=True)
                for issue in exc.result.errors + exc.result.warnings
            ],
        },
    )


@app.exception_handler(SubmissionRejectedError)
async def handle_submission_rejected(request: Request, exc: SubmissionRejectedError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Submission validation failed",
            "errors": [error.model_dump(mode="json", by_alias=True) for error in exc.result.errors],
        },
    )


@app.exception_handler(ProposalRejectedError)
async def handle_proposal_rejected(request: Request, exc: ProposalRejectedError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "detail": str(exc),
            "issues": [issue.model_dump(mode="json", by_alias=True) for issue in exc.issues],
        },
    )


@app.exception_handler(RateLimitExceeded)
async def handle_rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please try again later."},
        headers={"Retry-After": str(max(1, round(exc.retry_after)))},
    )


@app.exception_handler(FeatureUnavailableError)
async def handle_unavailable(request: Request, exc: FeatureUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error",
        exc_info=exc,
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(status_code=500, content={"detail": "Internal error"})


# Authoring


@app.post("/v1/intakes", response_model=IntakeRecord, status_code=201)
async def create_intake(request: CreateIntakeRequest) -> IntakeRecord:
    return service.create_intake(title=request.title, workspace_id=request.workspace_id)


@app.get("/v1/intakes", response_model=list[IntakeRecord])
async def list_intakes(workspace_id: str | None = Query(default=None)) -> list[IntakeRecord]:
    return service.list_intakes(workspace_id=workspace_id)


@app.get("/v1/intakes/{intake_id}", response_model=IntakeRecord)
async def get_intake(intake_id: str) -> IntakeRecord:
    return service.get_intake(intake_id)


@app.put("/v1/intakes/{intake_id}/draft", response_model=IntakeRecord)
async def save_draft(intake_id: str, draft: IntakeDraft) -> IntakeRecord:
    return service.save_draft(intake_id, draft)


@app.post("/v1/intakes/{intake_id}/validate", response_model=FlowValidationResult)
async def validate_draft(intake_id: str) -> FlowValidationResult:
    return service.validate_draft(intake_id)


@app.post("/v1/intakes/{intake_id}/publish", response_model=PublishResponse)
async def publish_intake(intake_id: str) -> PublishResponse:
    outcome = service.publish(intake_id)
    published = outcome.record.published
    return PublishResponse(
        id=outcome.record.id,
        slug=published.slug,
        published_at=published.published_at,
        warnings=outcome.validation.warnings,
    )


@app.post("/v1/intakes/{intake_id}/routing:generate", response_model=RoutingSuggestionResponse)
async def generate_routing(
    intake_id: str, request: GenerateRoutingRequest | None = None
) -> RoutingSuggestionResponse:
    suggestion = service.suggest_routing(intake_id, intent=request.intent if request else None)
    return RoutingSuggestionResponse(proposal=suggestion.proposal, validation=suggestion.validation)


@app.post("/v1/intakes/{intake_id}/routing:apply", response_model=ApplyRoutingResponse)
async def apply_routing(intake_id: str, proposal: RoutingProposal) -> ApplyRoutingResponse:
    update = service.apply_routing(intake_id, proposal)
    return ApplyRoutingResponse(record=update.record, validation=update.validation)


@app.get("/v1/intakes/{intake_id}/submissions", response_model=list[SubmissionRecord])
async def list_submissions(
    intake_id: str, limit: int = Query(default=100, ge=1, le=500)
) -> list[SubmissionRecord]:
    return service.list_submissions(intake_id, limit=limit)


# Public viewer


@app.get("/v1/public/intakes/{slug}", response_model=PublishedIntake)
async def get_public_intake(slug: str) -> PublishedIntake:
    _, published = service.get_published(slug)
    return published


@app.post("/v1/public/intakes/{slug}/next", response_model=NextSectionResponse)
async def next_section(slug: str, request: NextSectionRequest) -> NextSectionResponse:
    return NextSectionResponse(
        next_section_id=service.next_section(slug, request.section_id, request.answers)
    )


@app.post("/v1/public/intakes/{slug}/submissions", response_model=SubmitResponse, status_code=201)
async def submit_intake(slug: str, request: SubmitRequest, http_request: Request) -> SubmitResponse:
    key = client_ip(http_request.headers, http_request.client.host if http_request.client else None)
    limit = rate_limiter.check(key)
    if not limit.allowed:
        logger.warning("Submission rate limited", extra={"client": key, "slug": slug})
        raise RateLimitExceeded(key, limit.retry_after)

    submission = service.submit(slug, request.answers, request.metadata)
    return SubmitResponse(id=submission.id)


@app.get("/health")
async def healthcheck() -> JSONResponse:
    return JSONResponse({"status": "ok"})
