"""Convert Pydantic validation errors to the ToolError contract."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from models.errors import ToolError, create_validation_error


def _loc_to_field(loc: tuple[Any, ...]) -> str:
    # Union members add their type name to the location; drop those
    parts = [str(part) for part in loc if part != "__root__" and not _is_union_tag(part)]
    return ".".join(parts)


def _is_union_tag(part: Any) -> bool:
    return isinstance(part, str) and ("[" in part or part in {"int", "str", "bool", "float", "date", "datetime"})


def _clean_pydantic_message(message: str) -> str:
    for prefix in ("Value error, ", "Assertion failed, "):
        if message.startswith(prefix):
            return message[len(prefix) :]
    return message


def map_pydantic_validation_error(error: ValidationError) -> ToolError:
    """
    Map a Pydantic ValidationError to a VALIDATION_ERROR ToolError.

    Only the first issue is reported. Missing fields read as
    ``Missing required parameter: 'name'``; other issues as
    ``Invalid name: <reason>``.
    """
    issues = error.errors()
    if not issues:
        return create_validation_error("Invalid input")

    first = issues[0]
    field = _loc_to_field(tuple(first.get("loc", ())))
    message = _clean_pydantic_message(first.get("msg", "Invalid input"))

    if field and first.get("type") == "missing":
        return create_validation_error(f"Missing required parameter: '{field}'")
    # Field validators already name the field ("Invalid job_id: ...")
    if message.startswith("Invalid "):
        return create_validation_error(message)
    if field:
        return create_validation_error(f"Invalid {field}: {message}")
    return create_validation_error(message)
