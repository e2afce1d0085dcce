"""Tests for prompts, plan confirmation, worktrees, progress summaries, and log formatting."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

import pytest
from conftest import PLAN_OUTPUT, FakeGit, check, checks_json

from claude_workflow import human_input
from claude_workflow.checks import parse_ci_output
from claude_workflow.classifier import CIFailureClassifier
from claude_workflow.config import WorkflowConfig
from claude_workflow.executor import summarize_tool_use
from claude_workflow.human_input import ConfirmationDecision, TerminalConfirmer, parse_confirmation
from claude_workflow.logging_config import JSONFormatter, run_log_path
from claude_workflow.models import Plan, PRMetrics, WorkflowType
from claude_workflow.prompts import (
    build_fix_ci_prompt,
    build_implementation_prompt,
    build_planning_prompt,
    build_pr_split_prompt,
)
from claude_workflow.worktree import WorktreeManager, worktree_branch


class TestPrompts:
    def test_planning_without_feedback(self):
        prompt = build_planning_prompt(WorkflowType.FIX, "Fix the login redirect")
        assert "planning a fix" in prompt
        assert "Fix the login redirect" in prompt
        assert "Reviewer feedback" not in prompt

    def test_planning_numbers_feedback(self):
        prompt = build_planning_prompt(WorkflowType.FEATURE, "x", ["smaller", "add tests"])
        assert "1. smaller\n2. add tests" in prompt

    def test_implementation_embeds_plan(self):
        prompt = build_implementation_prompt(Plan.model_validate(PLAN_OUTPUT), "develop")
        assert "Add a /health endpoint" in prompt
        assert "against `develop`" in prompt

    def test_fix_ci_lists_jobs(self):
        result = parse_ci_output(checks_json(check("unit-tests", "FAILURE", 60)))
        classified = CIFailureClassifier().classify_result(result)
        prompt = build_fix_ci_prompt(42, classified)
        assert "pull request #42" in prompt
        assert "- unit-tests (FAILURE):" in prompt
        assert classified.recommended_action in prompt

    def test_pr_split_lists_files(self):
        metrics = PRMetrics(
            lines_changed=400, files_changed=2,
            files_added=["new.py"], files_modified=["old.py"],
        )
        prompt = build_pr_split_prompt(metrics, "", 100, 10)
        assert "(400 lines across 2 files; limits are 100 lines and 10 files)" in prompt
        assert "  - new.py" in prompt
        assert "Deleted:\n  (none)" in prompt
        assert "(no commits)" in prompt


class TestConfirmation:
    @pytest.mark.parametrize("text", ["y", "YES", " y "])
    def test_approve(self, text):
        assert parse_confirmation(text).decision == ConfirmationDecision.APPROVE

    @pytest.mark.parametrize("text", ["n", "No"])
    def test_cancel(self, text):
        assert parse_confirmation(text).decision == ConfirmationDecision.CANCEL

    def test_feedback(self):
        confirmation = parse_confirmation(" split the API work ")
        assert confirmation.decision == ConfirmationDecision.FEEDBACK
        assert confirmation.feedback == "split the API work"

    def test_blank_asks_again(self):
        assert parse_confirmation("   ") is None

    @pytest.mark.asyncio
    async def test_terminal_reprompts_on_blank(self, monkeypatch, capsys):
        answers = iter(["", "y"])

        async def fake_input(prompt):
            return next(answers)

        monkeypatch.setattr(human_input, "_async_input", fake_input)
        confirmation = await TerminalConfirmer().confirm(Plan.model_validate(PLAN_OUTPUT))

        assert confirmation.decision == ConfirmationDecision.APPROVE
        assert "Plan Summary" in capsys.readouterr().out


class TestWorktrees:
    @pytest.mark.asyncio
    async def test_create_adds_worktree_on_workflow_branch(self, tmp_path: Path):
        git = FakeGit()
        manager = WorktreeManager(git, tmp_path, tmp_path / ".claude" / "workflow")

        path = await manager.create("demo")

        assert path == (tmp_path / ".claude" / "worktrees" / "demo").resolve()
        assert git.calls == [("worktree_add", "workflow/demo")]
        assert worktree_branch("demo") == "workflow/demo"

    @pytest.mark.asyncio
    async def test_existing_worktree_reused(self, tmp_path: Path):
        git = FakeGit()
        manager = WorktreeManager(git, tmp_path, tmp_path / "wf")
        path = manager.path_for("demo")
        path.mkdir(parents=True)
        (path / ".git").write_text("gitdir: elsewhere\n")

        assert await manager.create("demo") == path
        assert git.calls == []

        await manager.delete(path)
        assert git.calls == [("worktree_remove", str(path))]

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, tmp_path: Path):
        git = FakeGit()
        manager = WorktreeManager(git, tmp_path, tmp_path / "wf")
        await manager.delete(tmp_path / "nowhere")
        await manager.delete(None)
        assert git.calls == []


class TestToolSummaries:
    def test_file_tools(self):
        assert summarize_tool_use("Edit", {"file_path": "app.py"}) == "Edit app.py"

    def test_long_bash_truncated(self):
        summary = summarize_tool_use("Bash", {"command": "x" * 100})
        assert summary == "Bash $ " + "x" * 77 + "..."

    def test_search_tools(self):
        assert summarize_tool_use("Grep", {"pattern": "def main"}) == "Grep /def main/"
        assert summarize_tool_use("Glob", {"pattern": "**/*.py"}) == "Glob **/*.py"

    def test_unknown_tool(self):
        assert summarize_tool_use("WebFetch", {"url": "x"}) == "WebFetch"


class TestJSONFormatter:
    def test_fields(self):
        record = logging.LogRecord(
            "claude_workflow", logging.WARNING, __file__, 1, "CI failed on %s", ("#42",), None,
        )
        record.workflow = "demo"
        entry = json.loads(JSONFormatter().format(record))
        assert entry["level"] == "WARNING"
        assert entry["message"] == "CI failed on #42"
        assert entry["workflow"] == "demo"
        assert "timestamp" in entry

    def test_run_log_path(self, tmp_path: Path):
        config = WorkflowConfig(project_dir=tmp_path)
        path = run_log_path(config, datetime(2024, 3, 5, 14, 7, 9))
        assert path == tmp_path / ".claude" / "workflow" / "logs" / "run-20240305-140709.jsonl"
