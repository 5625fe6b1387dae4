from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import Field, model_validator

from .block import Block, IntakeModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoutingRule(IntakeModel):
    id: str
    operator: Literal["equals", "any"]
    from_block_id: str | None = None
    value: str | None = None
    next_section_id: str

    @property
    def is_fallback(self) -> bool:
        return self.operator == "any"


class BackgroundStyle(IntakeModel):
    type: Literal[
        "none", "color", "image", "video", "gradient", "pattern", "animated_gradient"
    ] = "none"
    color: str | None = None
    image_url: str | None = None
    video_url: str | None = None
    overlay_opacity: float | None = None
    overlay_color: str | None = None
    blur_px: float | None = None
    gradient_preset: str | None = None
    animated_gradient_colors: tuple[str, ...] | None = None


class IntakeTheme(IntakeModel):
    accent_color: str | None = None
    card_background_color: str | None = None
    font_color: str | None = None
    background: BackgroundStyle | None = None


class Section(IntakeModel):
    id: str
    title: str = ""
    description: str | None = None
    blocks: tuple[Block, ...] = Field(default_factory=tuple)
    routing: tuple[RoutingRule, ...] = Field(default_factory=tuple)

    @model_validator(mode="before")
    @classmethod
    def _null_routing(cls, data):
        # Drafts saved before routing existed carry "routing": null.
        if isinstance(data, dict) and data.get("routing") is None:
            data = {**data, "routing": ()}
        return data

    def find_block(self, block_id: str) -> Block | None:
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None


class IntakeMetadata(IntakeModel):
    title: str = "Untitled intake"
    description: str | None = None
    estimated_time: str | None = None
    completion_text: str | None = None
    completion_next_steps: str | None = None
    completion_button_label: str | None = None
    completion_button_url: str | None = None
    mode: Literal["guided", "document"] = "guided"
    color_mode: Literal["light", "dark"] | None = None
    theme: IntakeTheme | None = None


class IntakeDraft(IntakeModel):
    metadata: IntakeMetadata = Field(default_factory=IntakeMetadata)
    sections: tuple[Section, ...] = Field(default_factory=tuple)


class PublishedIntake(IntakeModel):
    slug: str
    metadata: IntakeMetadata
    sections: tuple[Section, ...]
    published_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_draft(cls, draft: IntakeDraft, *, slug: str) -> "PublishedIntake":
        snapshot = draft.model_copy(deep=True)
        return cls(slug=slug, metadata=snapshot.metadata, sections=snapshot.sections)


class IntakeRecord(IntakeModel):
    id: str
    workspace_id: str
    title: str
    slug: str
    draft: IntakeDraft = Field(default_factory=IntakeDraft)
    published: PublishedIntake | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_published(self) -> bool:
        return self.published is not None


__all__ = [
    "BackgroundStyle",
    "IntakeDraft",
    "IntakeMetadata",
    "IntakeRecord",
    "IntakeTheme",
    "PublishedIntake",
    "RoutingRule",
    "Section",
]
