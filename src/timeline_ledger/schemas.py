"""Input models for ledger operations.

Callers may pass either a model instance or a plain mapping; ``parse_model``
turns pydantic failures into ``timeline_ledger.errors.ValidationError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5
MIN_CARD_COUNT = 1
MAX_CARD_COUNT = 50

ModelT = TypeVar("ModelT", bound=BaseModel)


class SessionCreate(BaseModel):
    """Request body for starting a session."""

    model_config = ConfigDict(extra="ignore")

    player_name: str = Field(min_length=1, max_length=100)
    difficulty_level: int = Field(ge=MIN_DIFFICULTY, le=MAX_DIFFICULTY)
    card_count: int = Field(ge=MIN_CARD_COUNT, le=MAX_CARD_COUNT)
    categories: list[str] = Field(min_length=1)
    start_time: datetime | None = None

    @field_validator("player_name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("player_name must not be blank")
        return value

    @field_validator("categories")
    @classmethod
    def _normalize_categories(cls, value: list[str]) -> list[str]:
        labels = sorted({label.strip() for label in value if label and label.strip()})
        if not labels:
            raise ValueError("at least one category is required")
        return labels


class MoveInput(BaseModel):
    """One card placement to record against a session."""

    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(min_length=1)
    card_id: int
    position_before: int | None = Field(default=None, ge=0)
    position_after: int = Field(ge=0)
    is_correct: bool
    move_number: int = Field(ge=1)
    time_taken_seconds: int | None = Field(default=None, ge=0)


class SessionStatusPatch(BaseModel):
    """Extra fields merged into a status transition."""

    model_config = ConfigDict(extra="forbid")

    score: int | None = Field(default=None, ge=0)
    end_time: datetime | None = None
    duration_seconds: int | None = Field(default=None, ge=0)


class MoveUpdate(BaseModel):
    """Administrative correction of a recorded move."""

    model_config = ConfigDict(extra="forbid")

    position_before: int | None = Field(default=None, ge=0)
    position_after: int | None = Field(default=None, ge=0)
    is_correct: bool | None = None
    time_taken_seconds: int | None = Field(default=None, ge=0)


def parse_model(model_cls: type[ModelT], data: Any) -> ModelT:
    """Coerce ``data`` into ``model_cls``.

    Raises:
        ValidationError: If required fields are missing or out of range
    """
    if isinstance(data, model_cls):
        return data
    if data is None:
        raise ValidationError(f"{model_cls.__name__} data is required")
    if isinstance(data, BaseModel):
        data = data.model_dump()
    if not isinstance(data, Mapping):
        raise ValidationError(
            f"{model_cls.__name__} expects a mapping, got {type(data).__name__}"
        )

    try:
        return model_cls.model_validate(dict(data))
    except PydanticValidationError as e:
        errors = e.errors()
        fields = [".".join(str(part) for part in err["loc"]) for err in errors]
        first = errors[0]
        message = f"Invalid {model_cls.__name__}: {fields[0]}: {first['msg']}"
        raise ValidationError(
            message,
            field=fields[0] if fields else None,
            details={"fields": fields},
        ) from e
