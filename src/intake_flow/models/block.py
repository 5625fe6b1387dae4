from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag
from pydantic.alias_generators import to_camel


class IntakeModel(BaseModel):
    """Immutable base for every graph value; edits produce new instances."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


InputType = Literal["short", "long", "select", "multi", "slider", "number", "date", "file"]

PRESENTATION_TYPES = frozenset(
    {"context", "heading", "divider", "image_display", "video_embed", "quote"}
)
ANSWER_TYPES = frozenset(
    {"question", "image_choice", "link_preview", "image_moodboard", "this_not_this", "book_call"}
)


class ContextBlock(IntakeModel):
    id: str
    type: Literal["context"] = "context"
    text: str = ""


class HeadingBlock(IntakeModel):
    id: str
    type: Literal["heading"] = "heading"
    text: str = ""
    level: Literal["h1", "h2", "h3"] = "h2"


class DividerBlock(IntakeModel):
    id: str
    type: Literal["divider"] = "divider"
    style: Literal["solid", "dashed", "dotted"] = "solid"


class ImageDisplayBlock(IntakeModel):
    id: str
    type: Literal["image_display"] = "image_display"
    image_url: str = ""
    alt: str | None = None
    caption: str | None = None


class VideoEmbedBlock(IntakeModel):
    id: str
    type: Literal["video_embed"] = "video_embed"
    video_url: str = ""
    caption: str | None = None


class QuoteBlock(IntakeModel):
    id: str
    type: Literal["quote"] = "quote"
    text: str = ""
    attribution: str | None = None


class AnswerBlock(IntakeModel):
    id: str
    label: str = ""
    helper_text: str | None = None
    required: bool = False


class QuestionBlock(AnswerBlock):
    type: Literal["question"] = "question"
    input_type: InputType = "short"
    options: tuple[str, ...] | None = None


class ImageChoiceOption(IntakeModel):
    id: str
    image_url: str = ""
    label: str | None = None


class ImageChoiceBlock(AnswerBlock):
    type: Literal["image_choice"] = "image_choice"
    multi: bool = False
    options: tuple[ImageChoiceOption, ...] = Field(default_factory=tuple)


class LinkPreviewBlock(AnswerBlock):
    type: Literal["link_preview"] = "link_preview"
    max_items: int | None = None


class ImageItem(IntakeModel):
    id: str
    image_url: str = ""
    caption: str | None = None


class ImageMoodboardBlock(AnswerBlock):
    type: Literal["image_moodboard"] = "image_moodboard"
    items: tuple[ImageItem, ...] = Field(default_factory=tuple)


class ThisNotThisBlock(AnswerBlock):
    type: Literal["this_not_this"] = "this_not_this"
    items: tuple[ImageItem, ...] = Field(default_factory=tuple)


class BookCallBlock(AnswerBlock):
    type: Literal["book_call"] = "book_call"
    booking_url: str = ""
    title: str | None = None
    text: str | None = None
    button_label: str | None = None
    open_in_new_tab: bool | None = None
    required_to_continue: bool = False

    @property
    def is_required(self) -> bool:
        return self.required or self.required_to_continue


class UnknownBlock(IntakeModel):
    """A block kind this version does not know about. Extra fields are preserved."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str


def _block_tag(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    if kind in PRESENTATION_TYPES or kind in ANSWER_TYPES:
        return kind
    return "unknown"


Block = Annotated[
    Union[
        Annotated[ContextBlock, Tag("context")],
        Annotated[HeadingBlock, Tag("heading")],
        Annotated[DividerBlock, Tag("divider")],
        Annotated[ImageDisplayBlock, Tag("image_display")],
        Annotated[VideoEmbedBlock, Tag("video_embed")],
        Annotated[QuoteBlock, Tag("quote")],
        Annotated[QuestionBlock, Tag("question")],
        Annotated[ImageChoiceBlock, Tag("image_choice")],
        Annotated[LinkPreviewBlock, Tag("link_preview")],
        Annotated[ImageMoodboardBlock, Tag("image_moodboard")],
        Annotated[ThisNotThisBlock, Tag("this_not_this")],
        Annotated[BookCallBlock, Tag("book_call")],
        Annotated[UnknownBlock, Tag("unknown")],
    ],
    Discriminator(_block_tag),
]


def is_answer_block(block: Any) -> bool:
    return isinstance(block, AnswerBlock)


def choice_values(block: Any) -> tuple[str, ...] | None:
    """Return the enumerable answer values of a choice block, or None if it has none.

    Select and multi questions answer with the option string itself; image choice
    answers with the option id.
    """
    if isinstance(block, QuestionBlock) and block.input_type in ("select", "multi"):
        return tuple(block.options or ())
    if isinstance(block, ImageChoiceBlock):
        return tuple(option.id for option in block.options)
    return None


__all__ = [
    "AnswerBlock",
    "Block",
    "BookCallBlock",
    "ContextBlock",
    "DividerBlock",
    "HeadingBlock",
    "ImageChoiceBlock",
    "ImageChoiceOption",
    "ImageDisplayBlock",
    "ImageItem",
    "ImageMoodboardBlock",
    "InputType",
    "IntakeModel",
    "LinkPreviewBlock",
    "QuestionBlock",
    "QuoteBlock",
    "ThisNotThisBlock",
    "UnknownBlock",
    "VideoEmbedBlock",
    "choice_values",
    "is_answer_block",
]
