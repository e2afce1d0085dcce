"""Input validation for workflow names, types, and descriptions."""

from __future__ import annotations

import re

from .config import DEFAULT_MAX_DESCRIPTION_LENGTH
from .errors import InvalidInputError
from .models import WorkflowType

MAX_NAME_LENGTH = 64

# Alphanumeric and hyphens, no leading or trailing hyphen
_NAME_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?$")


def validate_workflow_name(name: str) -> None:
    if not name:
        raise InvalidInputError("invalid workflow name: name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidInputError(
            f"invalid workflow name: name too long (max {MAX_NAME_LENGTH} characters)"
        )
    # Path traversal gets its own message
    if ".." in name or "/" in name or "\\" in name:
        raise InvalidInputError(
            "invalid workflow name: name cannot contain path traversal sequences"
        )
    if not _NAME_RE.match(name):
        raise InvalidInputError(
            "invalid workflow name: must contain only alphanumeric characters and "
            "hyphens, and cannot start or end with hyphen"
        )


def validate_workflow_type(value: str | WorkflowType) -> WorkflowType:
    try:
        return WorkflowType(value)
    except ValueError:
        raise InvalidInputError(
            f"invalid workflow type: {value!r} (must be 'feature' or 'fix')"
        ) from None


def validate_description(
    description: str, max_length: int = DEFAULT_MAX_DESCRIPTION_LENGTH,
) -> None:
    if not description:
        raise InvalidInputError("description cannot be empty")
    if len(description) > max_length:
        over = len(description) - max_length
        raise InvalidInputError(
            f"description too long: {len(description)} characters "
            f"(max {max_length} characters, {over} over limit)"
        )
