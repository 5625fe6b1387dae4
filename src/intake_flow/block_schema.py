from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Callable, Union

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    FiniteFloat,
    TypeAdapter,
    ValidationError,
)

from .models.block import (
    AnswerBlock,
    BookCallBlock,
    ImageChoiceBlock,
    ImageMoodboardBlock,
    LinkPreviewBlock,
    QuestionBlock,
    ThisNotThisBlock,
    UnknownBlock,
)


def _reject_bool(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("booleans are not numbers")
    return value


class _LinkItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    url: AnyHttpUrl


class _BucketSort(BaseModel):
    model_config = ConfigDict(extra="forbid")

    yes: list[str] = Field(default_factory=list)
    no: list[str] = Field(default_factory=list)


_Number = Annotated[
    Union[int, FiniteFloat],
    BeforeValidator(_reject_bool),
]

_TEXT = TypeAdapter(str)
_TEXT_LIST = TypeAdapter(list[str])
_NUMBER = TypeAdapter(_Number)
_LINKS = TypeAdapter(list[Union[AnyHttpUrl, _LinkItem]])
_BUCKETS = TypeAdapter(_BucketSort)
_FLAG = TypeAdapter(bool)
_ANYTHING = TypeAdapter(Any)

TEXT_INPUTS = frozenset({"short", "long", "select", "date", "file"})
NUMERIC_INPUTS = frozenset({"slider", "number"})


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _present(value: Any) -> bool:
    return not _is_blank(value)


def _any_sorted(value: _BucketSort) -> bool:
    return bool(value.yes or value.no)


def _clicked(value: bool) -> bool:
    return value is True


@dataclass(frozen=True)
class BlockSchema:
    """Value contract for one answer-producing block."""

    block_id: str
    label: str
    required: bool
    adapter: TypeAdapter
    shape_message: str
    required_message: str
    coerces: bool = False
    required_check: Callable[[Any], bool] = _present
    max_items: int | None = None

    def validate(self, value: Any) -> tuple[Any, list[str]]:
        """Validate an already-sanitized value.

        Returns the value to persist (coerced for numeric inputs, unchanged otherwise)
        and the list of error messages.
        """
        if _is_blank(value):
            return value, [self.required_message] if self.required else []

        try:
            parsed = self.adapter.validate_python(value)
        except ValidationError:
            return value, [self.shape_message]

        problems: list[str] = []
        if self.required and not self.required_check(parsed):
            problems.append(self.required_message)
        if self.max_items and isinstance(parsed, list) and len(parsed) > self.max_items:
            problems.append(f"{self.label} accepts at most {self.max_items} item(s)")
        return (parsed if self.coerces else value), problems


def block_label(block: Any) -> str:
    if isinstance(block, BookCallBlock):
        return block.label or block.title or "Book a call"
    return getattr(block, "label", None) or block.id


def derive_schema(block: Any) -> BlockSchema | None:
    """Map a block to its answer contract; presentation blocks have none."""
    label = block_label(block)

    if isinstance(block, QuestionBlock):
        return _question_schema(block, label)

    if isinstance(block, ImageChoiceBlock):
        if block.multi:
            return BlockSchema(
                block_id=block.id,
                label=label,
                required=block.required,
                adapter=_TEXT_LIST,
                shape_message=f"{label} must be a list of choices",
                required_message=f"Select at least one image for {label}",
            )
        return BlockSchema(
            block_id=block.id,
            label=label,
            required=block.required,
            adapter=_TEXT,
            shape_message=f"{label} must be a single choice",
            required_message=f"{label} is required",
        )

    if isinstance(block, LinkPreviewBlock):
        max_items = block.max_items if block.max_items and block.max_items > 0 else None
        return BlockSchema(
            block_id=block.id,
            label=label,
            required=block.required,
            adapter=_LINKS,
            shape_message=f"{label} must contain valid absolute http(s) links",
            required_message=f"Add at least one link for {label}",
            max_items=max_items,
        )

    if isinstance(block, ImageMoodboardBlock):
        return BlockSchema(
            block_id=block.id,
            label=label,
            required=block.required,
            adapter=_TEXT_LIST,
            shape_message=f"{label} must be a ranked list of images",
            required_message=f"Rank at least one image for {label}",
        )

    if isinstance(block, ThisNotThisBlock):
        return BlockSchema(
            block_id=block.id,
            label=label,
            required=block.required,
            adapter=_BUCKETS,
            shape_message=f"{label} must sort images into 'yes' and 'no'",
            required_message=f"Sort at least one image for {label}",
            required_check=_any_sorted,
        )

    if isinstance(block, BookCallBlock):
        return BlockSchema(
            block_id=block.id,
            label=label,
            required=block.is_required,
            adapter=_FLAG,
            shape_message=f"{label} must be true or false",
            required_message=f"Book a call before continuing ({label})",
            required_check=_clicked,
        )

    if isinstance(block, UnknownBlock):
        return _permissive_schema(block, label)

    if isinstance(block, AnswerBlock):
        # An answer kind added to the model without a dedicated arm yet.
        return _permissive_schema(block, label)

    return None


def _question_schema(block: QuestionBlock, label: str) -> BlockSchema:
    if block.input_type in TEXT_INPUTS:
        return BlockSchema(
            block_id=block.id,
            label=label,
            required=block.required,
            adapter=_TEXT,
            shape_message=f"{label} must be text",
            required_message=f"{label} is required",
        )
    if block.input_type == "multi":
        return BlockSchema(
            block_id=block.id,
            label=label,
            required=block.required,
            adapter=_TEXT_LIST,
            shape_message=f"{label} must be a list of options",
            required_message=f"Select at least one option for {label}",
        )
    if block.input_type in NUMERIC_INPUTS:
        return BlockSchema(
            block_id=block.id,
            label=label,
            required=block.required,
            adapter=_NUMBER,
            shape_message=f"{label} must be a number",
            required_message=f"{label} is required",
            coerces=True,
        )
    return _permissive_schema(block, label)


def _permissive_schema(block: Any, label: str) -> BlockSchema:
    return BlockSchema(
        block_id=block.id,
        label=label,
        required=False,
        adapter=_ANYTHING,
        shape_message=f"{label} is invalid",
        required_message=f"{label} is required",
    )


__all__ = ["BlockSchema", "block_label", "derive_schema"]
