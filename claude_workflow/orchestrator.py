"""Workflow orchestrator: phase state machine with artifact prerequisites and resume."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from .checks import CheckCIOptions, CIChecker, CIProgressEvent
from .classifier import CIFailureCategory, CIFailureClassifier, CIFailureHistory
from .clock import Clock
from .commands import CommandRunner
from .errors import (
    CIFailedError,
    InvalidInputError,
    MissingPrerequisiteError,
    NoPullRequestError,
    OrchestratorError,
    OutputParseError,
    PreconditionError,
    PRSplitError,
    RollbackError,
    StateCorruptionError,
    UserCancelledError,
    WorkflowExistsError,
    WorkflowNotFoundError,
)
from .executor import AssistantExecutor, AssistantProgress, ClaudeExecutor, ExecuteRequest, ExecuteResult
from .gh import GhRunner, ReviewGateway, parse_pr_number
from .git import GitGateway, GitRunner
from .human_input import ConfirmationDecision, PlanConfirmer, TerminalConfirmer
from .logging_config import setup_logger
from .models import (
    ArtifactType,
    ImplementationSummary,
    Phase,
    PhaseStatus,
    Plan,
    PRMetrics,
    PRSplitPlan,
    PRSplitResult,
    RefactoringSummary,
    Workflow,
    WorkflowError,
    WorkflowInfo,
    WorkflowType,
)
from .parser import (
    parse_implementation_summary,
    parse_plan,
    parse_pr_split_plan,
    parse_refactoring_summary,
    preview,
)
from .plan import load_external_plan, render_plan_markdown, validate_plan
from .pr_split import PRSplitManager
from .prompts import (
    build_fix_ci_prompt,
    build_implementation_prompt,
    build_planning_prompt,
    build_pr_split_prompt,
    build_refactoring_prompt,
)
from .state import StateManager
from .validation import validate_description, validate_workflow_name, validate_workflow_type
from .worktree import WorktreeManager

if TYPE_CHECKING:
    from .config import WorkflowConfig


# Artifacts that must be recorded before a phase may run
PHASE_PREREQUISITES: dict[Phase, list[ArtifactType]] = {
    Phase.PLANNING: [],
    Phase.CONFIRMATION: [ArtifactType.PLAN],
    Phase.IMPLEMENTATION: [ArtifactType.PLAN, ArtifactType.APPROVAL],
    Phase.REFACTORING: [ArtifactType.PLAN, ArtifactType.APPROVAL, ArtifactType.IMPLEMENTATION],
    Phase.PR_SPLIT: [
        ArtifactType.PLAN, ArtifactType.APPROVAL, ArtifactType.IMPLEMENTATION, ArtifactType.PR,
    ],
}

# Artifact recorded when a phase completes
PHASE_ARTIFACTS: dict[Phase, ArtifactType] = {
    Phase.PLANNING: ArtifactType.PLAN,
    Phase.CONFIRMATION: ArtifactType.APPROVAL,
    Phase.IMPLEMENTATION: ArtifactType.IMPLEMENTATION,
    Phase.REFACTORING: ArtifactType.PR,
}

PR_TITLE_LENGTH = 72


def missing_prerequisites(workflow: Workflow, phase: Phase) -> list[ArtifactType]:
    return [a for a in PHASE_PREREQUISITES.get(phase, []) if not workflow.has_artifact(a)]


def _pr_title(text: str, fallback: str) -> str:
    line = text.strip().split("\n", 1)[0] or fallback
    if len(line) > PR_TITLE_LENGTH:
        line = line[:PR_TITLE_LENGTH - 3] + "..."
    return line


class Orchestrator:
    """Drives workflows through Planning → Confirmation → Implementation → Refactoring → PR split.

    Every external capability (git, gh, the assistant, the operator, time)
    is injected; the defaults talk to the real tools.
    """

    def __init__(
        self,
        config: WorkflowConfig,
        state: StateManager | None = None,
        executor: AssistantExecutor | None = None,
        git: GitGateway | None = None,
        gh: ReviewGateway | None = None,
        clock: Clock | None = None,
        confirmer: PlanConfirmer | None = None,
        worktrees: WorktreeManager | None = None,
    ):
        self.config = config
        self.logger = setup_logger(config)
        runner = CommandRunner(config.command_timeout_seconds, config.env)
        self.git = git or GitRunner(runner)
        self.gh = gh or GhRunner(runner)
        self.clock = clock or Clock()
        self.state = state or StateManager(config.workflows_dir)
        self.executor = executor or ClaudeExecutor(config)
        self.confirmer = confirmer or TerminalConfirmer()
        self.worktrees = worktrees or WorktreeManager(
            self.git, config.project_dir, config.workflows_dir,
        )
        self.classifier = CIFailureClassifier(config.persistent_failure_threshold)
        self.split_manager = PRSplitManager(self.git, self.gh)
        self._shutdown_requested = False

        self._phase_runners: dict[Phase, Callable[[Workflow], Any]] = {
            Phase.PLANNING: self._run_planning,
            Phase.CONFIRMATION: self._run_confirmation,
            Phase.IMPLEMENTATION: self._run_implementation,
            Phase.REFACTORING: self._run_refactoring,
            Phase.PR_SPLIT: self._run_pr_split,
        }

    # --- Public operations ---

    async def start(
        self,
        name: str,
        description: str,
        workflow_type: str | WorkflowType = WorkflowType.FEATURE,
        split_pr: bool | None = None,
        plan_path: Path | None = None,
    ) -> Workflow:
        """Create a workflow and run it until it completes, fails, or is interrupted.

        A previous workflow of the same name is replaced only if it failed.
        With ``plan_path`` the plan is taken from that file and Planning is
        marked complete without running the assistant.
        """
        validate_workflow_name(name)
        wf_type = validate_workflow_type(workflow_type)
        validate_description(description, self.config.max_description_length)
        external_plan = load_external_plan(plan_path) if plan_path else None

        with self.state.lock(name):
            if self.state.exists(name):
                try:
                    existing = self.state.load(name)
                except StateCorruptionError as e:
                    raise WorkflowExistsError(f"Workflow '{name}' already exists ({e})") from e
                if existing.current_phase != Phase.FAILED:
                    raise WorkflowExistsError(
                        f"Workflow '{name}' already exists (phase {existing.current_phase.value})"
                    )
                self.logger.info(f"Replacing failed workflow '{name}'")
                await self._remove_worktree(existing)
                self.state.delete(name)

            workflow = self.state.init_state(
                name,
                description,
                wf_type,
                self.clock.now(),
                split_pr=self.config.split_pr if split_pr is None else split_pr,
            )
            self.logger.info(f"Started {wf_type.value} workflow '{name}'")

            if external_plan is not None:
                self._store_plan(workflow, external_plan)
                self._complete_phase(workflow, Phase.PLANNING, Phase.CONFIRMATION)
                self.logger.info(f"Using plan from {plan_path}; skipping planning")

            await self._run(workflow)
        return workflow

    async def resume(self, name: str) -> Workflow:
        """Continue a workflow from its current phase."""
        validate_workflow_name(name)
        self._require_existing(name)
        with self.state.lock(name):
            workflow = self.state.load(name)
            if workflow.current_phase == Phase.COMPLETED:
                raise PreconditionError(f"Workflow '{name}' is already completed")
            if workflow.current_phase == Phase.FAILED:
                message = workflow.error.message if workflow.error else "unknown error"
                raise PreconditionError(
                    f"Workflow '{name}' failed with a non-recoverable error and cannot be "
                    f"resumed: {message}. Delete it and start again."
                )
            missing = missing_prerequisites(workflow, workflow.current_phase)
            if missing:
                raise MissingPrerequisiteError(workflow.current_phase, missing)

            self.logger.info(f"Resuming workflow '{name}' at {workflow.current_phase.value}")
            workflow.error = None
            self._save(workflow)
            await self._run(workflow)
        return workflow

    def status(self, name: str) -> Workflow:
        validate_workflow_name(name)
        return self.state.load(name)

    def list_workflows(self) -> list[WorkflowInfo]:
        return self.state.list_workflows()

    async def delete(self, name: str) -> None:
        """Remove a workflow's state and, best-effort, its worktree."""
        validate_workflow_name(name)
        self._require_existing(name)
        with self.state.lock(name):
            workflow = self.state.load(name)
            await self._remove_worktree(workflow)
            self.state.delete(name)
        self.logger.info(f"Deleted workflow '{name}'")

    def _require_existing(self, name: str) -> None:
        # Checked before locking so an unknown name leaves nothing on disk
        if not self.state.exists(name):
            raise WorkflowNotFoundError(f"Workflow '{name}' not found")

    async def clean(self) -> list[str]:
        """Delete every completed workflow. Returns the names removed."""
        removed = []
        for info in self.state.list_workflows():
            if info.status != "completed":
                continue
            try:
                await self.delete(info.name)
            except OrchestratorError as e:
                self.logger.warning(f"Could not delete '{info.name}': {e}")
                continue
            removed.append(info.name)
        return removed

    # --- Run loop ---

    async def _run(self, workflow: Workflow) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

        self.logger.info("=" * 60)
        self.logger.info(f"Workflow: {workflow.name} ({workflow.type.value})")
        self.logger.info(f"Project: {self.config.project_dir}")
        self.logger.info("=" * 60)

        try:
            while not workflow.is_terminal and not self._shutdown_requested:
                await self._execute_phase(workflow)
                if workflow.error is not None:
                    break
        except (KeyboardInterrupt, asyncio.CancelledError):
            self.logger.info("Interrupted by user")
            raise
        finally:
            ClaudeExecutor.kill_active_subprocess()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

        self.logger.info("=" * 60)
        if workflow.error is not None:
            self.logger.error(f"Workflow stopped in {workflow.error.phase.value}: {workflow.error.message}")
            if workflow.error.recoverable:
                self.logger.info(f"  Fix the problem, then run: claude-workflow resume {workflow.name}")
        elif workflow.current_phase == Phase.COMPLETED:
            self.logger.info(f"Workflow '{workflow.name}' completed")
        else:
            self.logger.info(f"Workflow '{workflow.name}' paused at {workflow.current_phase.value}")
        self.logger.info("=" * 60)

    def _handle_shutdown_signal(self, sig: signal.Signals) -> None:
        """Handle SIGINT/SIGTERM: kill the assistant and stop after the current phase."""
        sig_name = sig.name
        if self._shutdown_requested:
            self.logger.warning(f"Second {sig_name} received, force exiting")
            ClaudeExecutor.kill_active_subprocess()
            raise SystemExit(1)

        self._shutdown_requested = True
        self.logger.info(f"{sig_name} received, shutting down gracefully...")
        self.logger.info("  (press Ctrl-C again to force-quit)")
        ClaudeExecutor.kill_active_subprocess()

    async def _execute_phase(self, workflow: Workflow) -> None:
        """Run the current phase once and record its outcome.

        Missing prerequisites raise before anything is written. Phase
        failures are recorded on the workflow and not re-raised.
        """
        phase = workflow.current_phase
        missing = missing_prerequisites(workflow, phase)
        if missing:
            raise MissingPrerequisiteError(phase, missing)

        state = workflow.phase(phase)
        state.status = PhaseStatus.IN_PROGRESS
        state.attempts += 1
        state.started_at = self.clock.now()
        state.completed_at = None
        workflow.error = None
        self._save(workflow)
        self.logger.info(f"--- {phase.value} (attempt {state.attempts}) ---")

        try:
            next_phase = await self._phase_runners[phase](workflow)
        except OrchestratorError as e:
            self._fail_phase(workflow, phase, e)
            return

        # Runners that move the workflow themselves return None
        if next_phase is not None:
            self._complete_phase(workflow, phase, next_phase)

    def _complete_phase(self, workflow: Workflow, phase: Phase, next_phase: Phase) -> None:
        state = workflow.phase(phase)
        state.status = PhaseStatus.COMPLETED
        state.completed_at = self.clock.now()
        artifact = PHASE_ARTIFACTS.get(phase)
        if artifact is not None:
            workflow.record_artifact(artifact)
        workflow.current_phase = next_phase
        if next_phase in workflow.phases:
            workflow.phase(next_phase).status = PhaseStatus.PENDING
        self._save(workflow)
        self.logger.info(f"{phase.value} completed → {next_phase.value}")

    def _fail_phase(self, workflow: Workflow, phase: Phase, error: OrchestratorError) -> None:
        workflow.error = WorkflowError(
            message=str(error),
            phase=phase,
            timestamp=self.clock.now(),
            recoverable=error.recoverable,
        )
        workflow.phase(phase).status = PhaseStatus.FAILED
        if not error.recoverable:
            workflow.current_phase = Phase.FAILED
        self._save(workflow)
        kind = "recoverable" if error.recoverable else "non-recoverable"
        self.logger.error(f"{phase.value} failed ({kind}): {error}")

    def _save(self, workflow: Workflow) -> None:
        workflow.updated_at = self.clock.now()
        self.state.save(workflow)

    # --- Phases ---

    async def _run_planning(self, workflow: Workflow) -> Phase:
        feedback = workflow.phase(Phase.PLANNING).feedback
        prompt = build_planning_prompt(workflow.type, workflow.description, feedback)
        result = await self._execute(
            workflow,
            prompt,
            cwd=self.config.project_dir,
            timeout=self.config.timeouts.planning,
            schema=Plan.model_json_schema(),
            model=self.config.planning_model,
        )
        plan = self._parse_output(workflow, Phase.PLANNING, result, parse_plan)
        try:
            validate_plan(plan)
        except InvalidInputError as e:
            self.state.save_raw_output(workflow.name, Phase.PLANNING, result.output)
            raise OutputParseError(str(e)) from e
        self._store_plan(workflow, plan)
        return Phase.CONFIRMATION

    async def _run_confirmation(self, workflow: Workflow) -> Phase | None:
        plan = self.state.load_plan(workflow.name)
        confirmation = await self.confirmer.confirm(plan)

        if confirmation.decision == ConfirmationDecision.APPROVE:
            self.logger.info("Plan approved")
            return Phase.IMPLEMENTATION
        if confirmation.decision == ConfirmationDecision.CANCEL:
            raise UserCancelledError("Workflow cancelled by user at plan confirmation")

        # Feedback: back to Planning with the plan withdrawn
        self.logger.info(f"Plan feedback received: {preview(confirmation.feedback, 120)}")
        planning = workflow.phase(Phase.PLANNING)
        planning.feedback.append(confirmation.feedback)
        planning.status = PhaseStatus.PENDING
        planning.completed_at = None
        workflow.withdraw_artifact(ArtifactType.PLAN)
        workflow.phase(Phase.CONFIRMATION).status = PhaseStatus.PENDING
        workflow.current_phase = Phase.PLANNING
        self._save(workflow)
        return None

    async def _run_implementation(self, workflow: Workflow) -> Phase:
        cwd = await self._ensure_worktree(workflow)
        plan = self.state.load_plan(workflow.name)
        prompt = build_implementation_prompt(plan, self.config.main_branch)
        result = await self._execute(
            workflow,
            prompt,
            cwd=cwd,
            timeout=self.config.timeouts.implementation,
            schema=ImplementationSummary.model_json_schema(),
        )
        summary = self._parse_output(
            workflow, Phase.IMPLEMENTATION, result, parse_implementation_summary,
        )
        self.state.save_phase_output(workflow.name, Phase.IMPLEMENTATION, summary)
        self.logger.info(
            f"  Implemented: {len(summary.files_changed)} files, "
            f"+{summary.lines_added}/-{summary.lines_removed}, {summary.tests_added} tests"
        )

        workflow.pr_number = summary.pr_number or await self._ensure_pull_request(
            cwd, _pr_title(summary.summary, workflow.name), summary.summary,
        )
        self._save(workflow)
        self.logger.info(f"  Pull request #{workflow.pr_number}")

        await self._ci_gate(workflow, cwd, self.config.timeouts.implementation)
        return Phase.REFACTORING

    async def _run_refactoring(self, workflow: Workflow) -> Phase:
        cwd = await self._ensure_worktree(workflow)
        plan = self.state.load_plan(workflow.name)
        prompt = build_refactoring_prompt(plan, self.config.main_branch)
        result = await self._execute(
            workflow,
            prompt,
            cwd=cwd,
            timeout=self.config.timeouts.refactoring,
            schema=RefactoringSummary.model_json_schema(),
        )
        summary = self._parse_output(
            workflow, Phase.REFACTORING, result, parse_refactoring_summary,
        )
        self.state.save_phase_output(workflow.name, Phase.REFACTORING, summary)
        self.logger.info(f"  Refactored: {len(summary.improvements_made)} improvements")

        if not workflow.pr_number:
            workflow.pr_number = await self._ensure_pull_request(
                cwd, _pr_title(workflow.description, workflow.name), summary.summary,
            )
            self._save(workflow)
        await self._ci_gate(workflow, cwd, self.config.timeouts.refactoring)
        return Phase.PR_SPLIT

    async def _run_pr_split(self, workflow: Workflow) -> Phase | None:
        cwd = await self._ensure_worktree(workflow)
        state = workflow.phase(Phase.PR_SPLIT)

        split_result = self.state.load_phase_output(workflow.name, Phase.PR_SPLIT, PRSplitResult)
        if split_result is None:
            metrics = await self.git.diff_stat(cwd, self.config.main_branch)
            state.metrics = metrics
            too_large = (
                metrics.lines_changed > self.config.max_lines
                or metrics.files_changed > self.config.max_files
            )
            if not (workflow.split_pr and too_large):
                reason = "not requested" if not workflow.split_pr else "within size limits"
                state.required = False
                state.status = PhaseStatus.SKIPPED
                state.completed_at = self.clock.now()
                workflow.current_phase = Phase.COMPLETED
                self._save(workflow)
                self.logger.info(
                    f"  PR split skipped ({reason}): {metrics.lines_changed} lines, "
                    f"{metrics.files_changed} files"
                )
                return None

            state.required = True
            self._save(workflow)
            split_result = await self._split(workflow, cwd, metrics)
        else:
            self.logger.info("  Split already created; re-checking child PRs")

        for i, child in enumerate(split_result.child_prs):
            is_last = i == len(split_result.child_prs) - 1
            options = CheckCIOptions(
                skip_e2e=not is_last, e2e_test_pattern=self.config.e2e_test_pattern,
            )
            self.logger.info(f"  Checking CI for child PR #{child.number}: {child.title}")
            result = await self._ci_checker(cwd).wait_for_ci_with_progress(
                child.number,
                self.config.ci_check_timeout_seconds,
                options,
                on_progress=self._on_ci_progress,
            )
            if not result.passed:
                jobs = ", ".join(result.failed_jobs + result.cancelled_jobs) or result.status.value
                raise CIFailedError(f"CI failed on child PR #{child.number}: {jobs}")
        return Phase.COMPLETED

    async def _split(self, workflow: Workflow, cwd: Path, metrics: PRMetrics) -> PRSplitResult:
        source_branch = await self.git.current_branch(cwd)
        commits = await self.git.commit_log(cwd, self.config.main_branch)
        prompt = build_pr_split_prompt(
            metrics, commits, self.config.max_lines, self.config.max_files,
        )
        result = await self._execute(
            workflow,
            prompt,
            cwd=cwd,
            timeout=self.config.timeouts.pr_split,
            schema=PRSplitPlan.model_json_schema(),
        )
        plan = self._parse_output(workflow, Phase.PR_SPLIT, result, parse_pr_split_plan)
        if not plan.child_prs:
            self.state.save_raw_output(workflow.name, Phase.PR_SPLIT, result.output)
            raise OutputParseError("split plan has no child PRs")
        self.logger.info(f"  Split plan: {plan.strategy.value}, {len(plan.child_prs)} child PRs")

        try:
            split_result = await self.split_manager.execute_split(
                cwd, plan, source_branch, self.config.main_branch,
            )
        except PRSplitError as e:
            self.logger.error(f"  PR split failed: {e}; rolling back")
            try:
                await self.split_manager.rollback(cwd, e.result)
            except RollbackError as rb:
                for err in rb.errors:
                    self.logger.error(f"  Rollback: {err}")
            raise

        self.state.save_phase_output(workflow.name, Phase.PR_SPLIT, split_result)
        parent = split_result.parent_pr
        self.logger.info(
            f"  Created parent PR #{parent.number if parent else 0} with "
            f"{len(split_result.child_prs)} child PRs"
        )
        return split_result

    # --- Helpers ---

    def _store_plan(self, workflow: Workflow, plan: Plan) -> None:
        self.state.save_plan(workflow.name, plan)
        self.state.save_plan_markdown(workflow.name, render_plan_markdown(plan))
        self.state.save_phase_output(workflow.name, Phase.PLANNING, plan)

    async def _execute(
        self,
        workflow: Workflow,
        prompt: str,
        cwd: Path,
        timeout: float,
        schema: dict[str, Any] | None = None,
        model: str | None = None,
    ) -> ExecuteResult:
        request = ExecuteRequest(
            prompt=prompt, cwd=cwd, timeout=timeout, json_schema=schema, model=model,
        )
        result = await self.executor.execute(request, on_progress=self._on_assistant_progress)
        cost = f", ${result.cost_usd:.2f}" if result.cost_usd is not None else ""
        self.logger.info(
            f"  Assistant finished in {result.duration_seconds:.0f}s "
            f"({result.tool_count} tool calls{cost})",
            extra={"workflow": workflow.name},
        )
        return result

    def _parse_output(self, workflow: Workflow, phase: Phase, result: ExecuteResult, parse):
        data = result.structured_output if result.structured_output is not None else result.output
        try:
            return parse(data)
        except OutputParseError:
            self.state.save_raw_output(workflow.name, phase, result.output)
            self.logger.error(f"  Unparseable output: {preview(result.output)}")
            raise

    async def _ensure_worktree(self, workflow: Workflow) -> Path:
        if workflow.worktree_path:
            return Path(workflow.worktree_path)
        path = await self.worktrees.create(workflow.name)
        workflow.worktree_path = str(path)
        self._save(workflow)
        return path

    async def _remove_worktree(self, workflow: Workflow) -> None:
        if not workflow.worktree_path:
            return
        try:
            await self.worktrees.delete(workflow.worktree_path)
        except OrchestratorError as e:
            self.logger.warning(f"Could not remove worktree {workflow.worktree_path}: {e}")

    async def _ensure_pull_request(self, cwd: Path, title: str, body: str) -> int:
        """Push the current branch and return its PR, creating one if needed."""
        branch = await self.git.current_branch(cwd)
        await self.git.push(cwd, branch)
        try:
            return await self.gh.current_pr_number(cwd)
        except NoPullRequestError:
            self.logger.info(f"  No pull request for {branch}; creating one")
        url = await self.gh.pr_create(cwd, title, body, branch, self.config.main_branch)
        return parse_pr_number(url)

    def _ci_checker(self, cwd: Path) -> CIChecker:
        return CIChecker(
            self.gh,
            cwd,
            clock=self.clock,
            check_interval=self.config.ci_check_interval_seconds,
            command_timeout=self.config.command_timeout_seconds,
            initial_delay=self.config.ci_initial_delay_seconds,
            progress_interval=self.config.ci_progress_interval_seconds,
        )

    async def _ci_gate(self, workflow: Workflow, cwd: Path, fix_timeout: float) -> None:
        """Wait for CI on the workflow's PR, fixing or re-running until it passes.

        Raises CIFailedError on a persistent failure pattern or when the fix
        attempts run out.
        """
        checker = self._ci_checker(cwd)
        history = CIFailureHistory()
        pr_number = workflow.pr_number or 0
        max_attempts = max(self.config.max_fix_attempts, 1)

        for attempt in range(1, max_attempts + 1):
            # After a rerun or a pushed fix the current status is stale until
            # the new run has had its initial delay
            result = await checker.wait_for_ci_with_progress(
                pr_number,
                self.config.ci_check_timeout_seconds,
                CheckCIOptions(immediate_check=attempt == 1),
                on_progress=self._on_ci_progress,
            )
            if result.passed:
                self.logger.info(f"  CI passed on PR #{pr_number}")
                return

            history.record(result)
            classified = self.classifier.classify_result(result, history)
            self.logger.warning(
                f"  CI failed (attempt {attempt}/{max_attempts}): {classified.category.value}"
            )
            for reason in classified.reasons:
                self.logger.warning(f"    {reason.job}: {reason.explanation}")

            if classified.category == CIFailureCategory.PERSISTENT:
                raise CIFailedError(
                    f"CI failure on PR #{pr_number} is persistent: {classified.recommended_action}"
                )
            if attempt == max_attempts:
                break

            if classified.category == CIFailureCategory.INFRASTRUCTURE:
                run_id = await self.gh.latest_run_id(cwd, pr_number)
                if run_id is not None:
                    self.logger.info(f"  Re-running failed jobs of run {run_id}")
                    await self.gh.run_rerun(cwd, run_id)
                    continue
                self.logger.warning("  No workflow run found to re-run; asking for a fix")

            await self._execute(
                workflow,
                build_fix_ci_prompt(pr_number, classified),
                cwd=cwd,
                timeout=fix_timeout,
            )

        raise CIFailedError(f"CI still failing on PR #{pr_number} after {max_attempts} attempts")

    def _on_assistant_progress(self, progress: AssistantProgress) -> None:
        self.logger.debug(f"  [{progress.type}] {progress.message}")

    def _on_ci_progress(self, event: CIProgressEvent) -> None:
        if event.type == "waiting":
            self.logger.debug(
                f"  Waiting for CI ({event.elapsed:.0f}s elapsed, "
                f"next check in {event.next_check_in:.0f}s)"
            )
        elif event.type == "retry":
            self.logger.warning(f"  CI check retry #{event.retry_attempt}")
