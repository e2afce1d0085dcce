"""Tests for plan validation, loading, and rendering."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import PLAN_OUTPUT

from claude_workflow.errors import InvalidInputError
from claude_workflow.models import Plan, PlanPhase
from claude_workflow.plan import (
    format_plan_summary,
    load_external_plan,
    render_plan_markdown,
    validate_plan,
)


@pytest.fixture
def plan() -> Plan:
    return Plan.model_validate(PLAN_OUTPUT)


class TestValidatePlan:
    def test_valid(self, plan):
        validate_plan(plan)

    @pytest.mark.parametrize("field, value", [
        ("summary", ""),
        ("phases", []),
        ("work_streams", []),
    ])
    def test_required_parts(self, plan, field, value):
        broken = plan.model_copy(update={field: value})
        with pytest.raises(InvalidInputError, match=field):
            validate_plan(broken)


class TestLoadExternalPlan:
    def test_loads(self, tmp_path: Path, plan):
        path = tmp_path / "plan.json"
        path.write_text(json.dumps(PLAN_OUTPUT))
        assert load_external_plan(path) == plan

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(InvalidInputError, match="failed to read"):
            load_external_plan(tmp_path / "nope.json")

    def test_bad_json(self, tmp_path: Path):
        path = tmp_path / "plan.json"
        path.write_text("{")
        with pytest.raises(InvalidInputError, match="failed to parse"):
            load_external_plan(path)

    def test_incomplete_plan(self, tmp_path: Path):
        path = tmp_path / "plan.json"
        path.write_text(json.dumps({"summary": "x"}))
        with pytest.raises(InvalidInputError, match="phases"):
            load_external_plan(path)


class TestFormatting:
    def test_summary(self, plan):
        text = format_plan_summary(plan)
        assert text.splitlines()[0] == "Plan Summary"
        assert "  1. Route (2 files, ~40 lines)" in text
        assert "Complexity: low" in text
        assert "Total: ~40 lines across 2 files" in text

    def test_summary_caps_phases(self, plan):
        many = plan.model_copy(update={
            "phases": [PlanPhase(name=f"P{i}") for i in range(8)],
        })
        text = format_plan_summary(many)
        assert "  5. P4" in text
        assert "P5" not in text
        assert "... and 3 more" in text

    def test_markdown(self, plan):
        text = render_plan_markdown(plan)
        assert text.startswith("# Plan\n\nAdd a /health endpoint")
        assert "## Architecture" in text
        assert "- api" in text
        assert "1. **Route** (2 files, ~40 lines)" in text
        assert "### api" in text
        assert "- add route" in text
        assert "## Risks" in text

    def test_markdown_dependencies(self, plan):
        plan.work_streams[0].depends_on = ["db"]
        assert "### api (after db)" in render_plan_markdown(plan)
