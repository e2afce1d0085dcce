"""Extract and validate structured JSON from assistant output."""

from __future__ import annotations

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import OutputParseError
from .models import ImplementationSummary, Plan, PRSplitPlan, RefactoringSummary

_JSON_BLOCK_RE = re.compile(r"```json\s*\n(.*?)```", re.DOTALL)
PREVIEW_LENGTH = 500

M = TypeVar("M", bound=BaseModel)


def preview(output: str, limit: int = PREVIEW_LENGTH) -> str:
    if not output:
        return "(empty output)"
    if len(output) <= limit:
        return output
    return f"{output[:limit]}...\n(truncated, showing first {limit} chars)"


def extract_json(output: str) -> Any:
    """Return the JSON document carried by assistant output.

    Accepts a bare JSON document, a CLI result envelope with
    ``structured_output``, or the first valid fenced ```json block.
    """
    trimmed = output.strip()
    try:
        document = json.loads(trimmed)
    except json.JSONDecodeError:
        pass
    else:
        if (
            isinstance(document, dict)
            and document.get("type") == "result"
            and document.get("structured_output") is not None
        ):
            return document["structured_output"]
        return document

    blocks = _JSON_BLOCK_RE.findall(output)
    if not blocks:
        raise OutputParseError(
            f"No JSON found in assistant output.\n\nOutput preview:\n{preview(output)}"
        )
    for block in blocks:
        block = block.strip()
        if not block:
            continue
        try:
            return json.loads(block)
        except json.JSONDecodeError:
            continue
    raise OutputParseError(
        f"No valid JSON block in assistant output.\n\nOutput preview:\n{preview(output)}"
    )


def _parse(model: type[M], data: Any, label: str, require_summary: bool = True) -> M:
    if isinstance(data, str):
        data = extract_json(data)
    if not isinstance(data, dict):
        raise OutputParseError(f"{label} must be a JSON object, got {type(data).__name__}")
    try:
        parsed = model.model_validate(data)
    except ValidationError as e:
        raise OutputParseError(f"Invalid {label}: {e}") from e
    if require_summary and not parsed.summary:
        raise OutputParseError(f"{label} missing required field 'summary'")
    return parsed


def parse_plan(data: Any) -> Plan:
    return _parse(Plan, data, "plan")


def parse_implementation_summary(data: Any) -> ImplementationSummary:
    return _parse(ImplementationSummary, data, "implementation summary")


def parse_refactoring_summary(data: Any) -> RefactoringSummary:
    return _parse(RefactoringSummary, data, "refactoring summary")


def parse_pr_split_plan(data: Any) -> PRSplitPlan:
    return _parse(PRSplitPlan, data, "PR split plan", require_summary=False)
