"""Shared test fixtures and in-memory fakes for the git, gh, and assistant gateways."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from claude_workflow.clock import FakeClock
from claude_workflow.commands import CommandResult, CommandRunner
from claude_workflow.config import WorkflowConfig
from claude_workflow.errors import NoPullRequestError
from claude_workflow.executor import AssistantExecutor, AssistantProgress, ExecuteRequest, ExecuteResult
from claude_workflow.gh import ReviewGateway
from claude_workflow.git import GitGateway
from claude_workflow.human_input import Confirmation, ConfirmationDecision, PlanConfirmer
from claude_workflow.models import Plan, PRMetrics
from claude_workflow.orchestrator import Orchestrator
from claude_workflow.state import StateManager

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

PLAN_OUTPUT = {
    "summary": "Add a /health endpoint",
    "context_type": "feature",
    "complexity": "low",
    "architecture": {"overview": "One new route", "components": ["api"]},
    "phases": [
        {"name": "Route", "description": "Add the handler", "estimated_files": 2, "estimated_lines": 40},
    ],
    "work_streams": [{"name": "api", "tasks": ["add route", "add test"]}],
    "risks": ["none"],
    "estimated_total_lines": 40,
    "estimated_total_files": 2,
}

IMPLEMENTATION_OUTPUT = {
    "summary": "Added the /health endpoint",
    "files_changed": ["app/routes.py", "tests/test_routes.py"],
    "lines_added": 38,
    "lines_removed": 2,
    "tests_added": 1,
    "pr_number": 42,
    "pr_url": "https://github.com/acme/app/pull/42",
}

REFACTORING_OUTPUT = {
    "summary": "Extracted the status helper",
    "files_changed": ["app/routes.py"],
    "improvements_made": ["removed duplication"],
}

SPLIT_PLAN_OUTPUT = {
    "strategy": "files",
    "parent_title": "Health endpoint",
    "parent_description": "Adds /health",
    "child_prs": [
        {"title": "Add route", "description": "Handler only", "files": ["app/routes.py"]},
        {"title": "Add tests", "description": "Tests", "files": ["tests/test_routes.py"]},
    ],
    "summary": "Split into handler and tests",
}


def check(name: str, state: str, seconds: float | None = None) -> dict:
    """One ``gh pr checks --json`` record; ``seconds`` sets its duration."""
    record = {"name": name, "state": state, "startedAt": "", "completedAt": ""}
    if seconds is not None:
        record["startedAt"] = T0.isoformat().replace("+00:00", "Z")
        record["completedAt"] = (T0 + timedelta(seconds=seconds)).isoformat().replace("+00:00", "Z")
    return record


def checks_json(*records: dict) -> str:
    return json.dumps(list(records))


PASSING_CHECKS = checks_json(check("build", "SUCCESS", 60), check("test", "SUCCESS", 120))


# --- Fakes ---


class FakeCommandRunner(CommandRunner):
    """Records every command and replays queued results (success by default)."""

    def __init__(self, *results: CommandResult):
        super().__init__()
        self.calls: list[tuple[str, ...]] = []
        self.cwds: list[Path | str | None] = []
        self.results = list(results)

    def queue(self, stdout: str = "", stderr: str = "", returncode: int = 0) -> None:
        self.results.append(CommandResult(stdout=stdout, stderr=stderr, returncode=returncode))

    async def run(self, name, *args, cwd=None, timeout=None, env=None) -> CommandResult:
        self.calls.append((name, *args))
        self.cwds.append(cwd)
        if self.results:
            return self.results.pop(0)
        return CommandResult(stdout="", stderr="", returncode=0)


class FakeGit(GitGateway):
    """Records verbs (without cwd). ``failures`` maps a call prefix to the error it raises."""

    def __init__(self, branch: str = "workflow/demo", metrics: PRMetrics | None = None):
        self.branch = branch
        self.metrics = metrics or PRMetrics(lines_changed=40, files_changed=2)
        self.log = "abc123 Add route\ndef456 Add tests"
        self.calls: list[tuple] = []
        self.failures: dict[str, Exception] = {}

    def _record(self, verb: str, *args) -> None:
        self.calls.append((verb, *args))
        key = " ".join([verb, *(str(a) for a in args)])
        for prefix, exc in self.failures.items():
            if key == prefix or key.startswith(prefix + " "):
                raise exc

    def verbs(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def current_branch(self, cwd):
        self._record("current_branch")
        return self.branch

    async def push(self, cwd, branch):
        self._record("push", branch)

    async def worktree_add(self, cwd, path, branch):
        self._record("worktree_add", branch)

    async def worktree_remove(self, cwd, path):
        self._record("worktree_remove", str(path))

    async def commits(self, cwd, base):
        self._record("commits", base)
        return [line.split()[0] for line in self.log.splitlines()]

    async def commit_log(self, cwd, base):
        self._record("commit_log", base)
        return self.log

    async def cherry_pick(self, cwd, commit):
        self._record("cherry_pick", commit)

    async def create_branch(self, cwd, name, base):
        self._record("create_branch", name, base)

    async def checkout_branch(self, cwd, name):
        self._record("checkout_branch", name)

    async def delete_branch(self, cwd, name, force=False):
        self._record("delete_branch", name, force)

    async def delete_remote_branch(self, cwd, name):
        self._record("delete_remote_branch", name)

    async def commit_empty(self, cwd, message):
        self._record("commit_empty", message)

    async def checkout_files(self, cwd, source, files):
        self._record("checkout_files", source, tuple(files))

    async def commit_all(self, cwd, message):
        self._record("commit_all", message)

    async def diff_stat(self, cwd, base):
        self._record("diff_stat", base)
        return self.metrics


class FakeGh(ReviewGateway):
    """In-memory review system. ``checks`` is a queue; the last entry repeats."""

    def __init__(self, current_pr: int | None = 42):
        self.current_pr = current_pr
        self.next_pr = 100
        self.checks: list[str] = [PASSING_CHECKS]
        self.checks_by_pr: dict[int, list[str]] = {}
        self.run_id: int | None = 555
        self.calls: list[tuple] = []
        self.failures: dict[str, Exception] = {}

    def _record(self, verb: str, *args) -> None:
        self.calls.append((verb, *args))
        key = " ".join([verb, *(str(a) for a in args)])
        for prefix, exc in self.failures.items():
            if key == prefix or key.startswith(prefix + " "):
                raise exc

    def verbs(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def pr_create(self, cwd, title, body, head, base):
        self._record("pr_create", head, base)
        number = self.next_pr
        self.next_pr += 1
        return f"https://github.com/acme/app/pull/{number}\n"

    async def pr_edit(self, cwd, number, body):
        self._record("pr_edit", number)
        self.last_edit_body = body

    async def pr_close(self, cwd, number):
        self._record("pr_close", number)

    async def current_pr_number(self, cwd):
        self._record("current_pr_number")
        if self.current_pr is None:
            raise NoPullRequestError("no PR found for the current branch")
        return self.current_pr

    async def pr_checks(self, cwd, number, fields):
        self._record("pr_checks", number)
        queue = self.checks_by_pr.get(number, self.checks)
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    async def latest_run_id(self, cwd, number):
        self._record("latest_run_id", number)
        return self.run_id

    async def run_rerun(self, cwd, run_id):
        self._record("run_rerun", run_id)


class FakeExecutor(AssistantExecutor):
    """Answers by the requested schema's title; queued answers win over defaults.

    A queued Exception is raised, an ExecuteResult is returned as-is, and
    anything else becomes the structured output.
    """

    def __init__(self):
        self.requests: list[ExecuteRequest] = []
        self.queued: dict[str, list] = {}
        self.defaults = {
            "Plan": PLAN_OUTPUT,
            "ImplementationSummary": IMPLEMENTATION_OUTPUT,
            "RefactoringSummary": REFACTORING_OUTPUT,
            "PRSplitPlan": SPLIT_PLAN_OUTPUT,
        }

    def queue(self, title: str, *answers) -> None:
        self.queued.setdefault(title, []).extend(answers)

    def titles(self) -> list[str]:
        return [(r.json_schema or {}).get("title", "") for r in self.requests]

    async def execute(self, request, on_progress=None):
        self.requests.append(request)
        title = (request.json_schema or {}).get("title", "")
        queue = self.queued.get(title)
        answer = queue.pop(0) if queue else self.defaults.get(title)
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, ExecuteResult):
            return answer
        if on_progress is not None:
            on_progress(AssistantProgress(type="text", message="working", tool_count=1))
        if answer is None:
            return ExecuteResult(output="Pushed a fix", tool_count=2)
        return ExecuteResult(
            output=json.dumps(answer), structured_output=answer, tool_count=3, cost_usd=0.1,
        )


class FakeConfirmer(PlanConfirmer):
    """Replays queued decisions; approves once the queue is empty."""

    def __init__(self, *confirmations: Confirmation):
        self.confirmations = list(confirmations)
        self.plans: list[Plan] = []

    async def confirm(self, plan):
        self.plans.append(plan)
        if self.confirmations:
            return self.confirmations.pop(0)
        return Confirmation(decision=ConfirmationDecision.APPROVE)


# --- Fixtures ---


@pytest.fixture
def config(tmp_path: Path) -> WorkflowConfig:
    return WorkflowConfig(
        project_dir=tmp_path,
        structured_log=False,
        max_fix_attempts=3,
        persistent_failure_threshold=3,
    )


@pytest.fixture
def state(config: WorkflowConfig) -> StateManager:
    return StateManager(config.workflows_dir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=T0)


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def fake_gh() -> FakeGh:
    return FakeGh()


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def fake_confirmer() -> FakeConfirmer:
    return FakeConfirmer()


@pytest.fixture
def orchestrator(
    config: WorkflowConfig,
    state: StateManager,
    fake_git: FakeGit,
    fake_gh: FakeGh,
    fake_executor: FakeExecutor,
    fake_confirmer: FakeConfirmer,
    clock: FakeClock,
) -> Orchestrator:
    return Orchestrator(
        config,
        state=state,
        executor=fake_executor,
        git=fake_git,
        gh=fake_gh,
        clock=clock,
        confirmer=fake_confirmer,
    )
