"""Convert Pydantic validation errors to the pipeline ToolError contract."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from models.errors import ToolError, create_validation_error


def _loc_to_field(loc: tuple[Any, ...]) -> str:
    parts = [str(part) for part in loc if part != "__root__"]
    return ".".join(parts)


def _clean_pydantic_message(issue: dict[str, Any]) -> str:
    message = issue.get("msg", "Invalid input")
    if message.startswith("Value error, "):
        return message[len("Value error, ") :]
    if issue.get("type") == "missing":
        return "Field required"
    return message


def map_pydantic_validation_error(error: ValidationError) -> ToolError:
    """
    Map a Pydantic ValidationError to a VALIDATION_ERROR ToolError.

    The first issue is reported, with its dotted field path (e.g.
    ``history.0.role``); the number of further issues is appended so
    callers know to fix more than one field.
    """
    issues = error.errors()
    if not issues:
        return create_validation_error("Invalid input")

    first = issues[0]
    field = _loc_to_field(first.get("loc", ()))
    message = _clean_pydantic_message(first)

    if field:
        text = f"Invalid {field}: {message}"
    else:
        text = message

    if len(issues) > 1:
        text = f"{text} (and {len(issues) - 1} more)"
    return create_validation_error(text)
