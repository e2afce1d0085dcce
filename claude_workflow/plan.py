"""Plan loading, validation, and rendering."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError

from .errors import InvalidInputError
from .models import Plan

MAX_SUMMARY_PHASES = 5


def validate_plan(plan: Plan) -> None:
    if not plan.summary:
        raise InvalidInputError("plan validation failed: summary is required")
    if not plan.phases:
        raise InvalidInputError("plan validation failed: phases must not be empty")
    if not plan.work_streams:
        raise InvalidInputError("plan validation failed: work_streams must not be empty")


def load_external_plan(path: Path) -> Plan:
    """Read and validate a plan written outside the Planning phase."""
    try:
        raw = path.read_text()
    except OSError as e:
        raise InvalidInputError(f"failed to read plan file {path}: {e}") from e
    try:
        plan = Plan.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise InvalidInputError(f"failed to parse plan file {path}: {e}") from e
    validate_plan(plan)
    return plan


def format_plan_summary(plan: Plan) -> str:
    """Short text summary shown at plan confirmation."""
    lines = ["Plan Summary", "=" * 40, plan.summary, "", "Phases:"]
    for i, phase in enumerate(plan.phases):
        if i >= MAX_SUMMARY_PHASES:
            lines.append(f"  ... and {len(plan.phases) - MAX_SUMMARY_PHASES} more")
            break
        lines.append(
            f"  {i + 1}. {phase.name} "
            f"({phase.estimated_files} files, ~{phase.estimated_lines} lines)"
        )
    lines.append("")
    if plan.complexity:
        lines.append(f"Complexity: {plan.complexity}")
    lines.append(
        f"Total: ~{plan.estimated_total_lines} lines across "
        f"{plan.estimated_total_files} files"
    )
    return "\n".join(lines)


def render_plan_markdown(plan: Plan) -> str:
    """Full plan as Markdown, written beside plan.json."""
    out = ["# Plan", "", plan.summary, ""]
    if plan.context_type or plan.complexity:
        out += [
            f"- Context: {plan.context_type or 'n/a'}",
            f"- Complexity: {plan.complexity or 'n/a'}",
            f"- Estimated size: ~{plan.estimated_total_lines} lines, "
            f"{plan.estimated_total_files} files",
            "",
        ]

    if plan.architecture.overview or plan.architecture.components:
        out += ["## Architecture", ""]
        if plan.architecture.overview:
            out += [plan.architecture.overview, ""]
        out += [f"- {c}" for c in plan.architecture.components]
        out.append("")

    if plan.phases:
        out += ["## Phases", ""]
        for i, phase in enumerate(plan.phases, 1):
            out.append(
                f"{i}. **{phase.name}** ({phase.estimated_files} files, "
                f"~{phase.estimated_lines} lines)"
            )
            if phase.description:
                out.append(f"   {phase.description}")
        out.append("")

    if plan.work_streams:
        out += ["## Work streams", ""]
        for stream in plan.work_streams:
            deps = f" (after {', '.join(stream.depends_on)})" if stream.depends_on else ""
            out.append(f"### {stream.name}{deps}")
            out += [f"- {task}" for task in stream.tasks]
            out.append("")

    if plan.risks:
        out += ["## Risks", ""]
        out += [f"- {risk}" for risk in plan.risks]
        out.append("")

    return "\n".join(out)
