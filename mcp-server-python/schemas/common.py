"""Shared schema primitives for MCP tool request/response models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


def validate_optional_non_empty_str(value: Optional[str], field_name: str) -> Optional[str]:
    """Validate optional string fields that cannot be empty/whitespace."""
    if value is None:
        return None
    if not value.strip():
        raise ValueError(f"Invalid {field_name}: cannot be empty")
    return value


def validate_positive_id(value: int, field_name: str) -> int:
    """Validate integer identifiers (bool is rejected by strict mode upstream)."""
    if value < 1:
        raise ValueError(f"Invalid {field_name}: must be a positive integer")
    return value


class StrictIgnoreRequest(BaseModel):
    """Request base with strict typing and ignored unknown fields."""

    model_config = ConfigDict(extra="ignore", strict=True)


class StrictResponse(BaseModel):
    """Response/result base with strict typing and forbidden unknown fields."""

    model_config = ConfigDict(extra="forbid")


class CamelDocument(BaseModel):
    """Base for stored documents exchanged with camelCase keys.

    Python attributes stay snake_case; ``model_dump(by_alias=True)`` yields
    the camelCase wire shape. Unknown keys are dropped on load.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class DbPathMixin(BaseModel):
    """Reusable db_path field validation."""

    db_path: Optional[str] = None

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, value: Optional[str]) -> Optional[str]:
        return validate_optional_non_empty_str(value, "db_path")


class JobIdMixin(BaseModel):
    """Reusable job_id field validation."""

    job_id: int

    @field_validator("job_id")
    @classmethod
    def validate_job_id(cls, value: int) -> int:
        return validate_positive_id(value, "job_id")


class ActorMixin(BaseModel):
    """Optional acting user recorded in lifecycle and audit stamps."""

    actor: Optional[str] = None

    @field_validator("actor")
    @classmethod
    def validate_actor(cls, value: Optional[str]) -> Optional[str]:
        return validate_optional_non_empty_str(value, "actor")
