"""CLI entry point: claude-workflow start|resume|status|list|delete|clean."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Workflow, WorkflowInfo


def main(argv: list[str] | None = None) -> int:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--project", "-p", type=str, default=".",
        help="Project directory (default: current dir)",
    )
    common.add_argument(
        "--verbose", "-v", action="store_true",
        help="Verbose logging",
    )
    common.add_argument(
        "--base-dir", dest="base_dir", type=str,
        help="Workflow state directory (default: .claude/workflow)",
    )

    # Flags for commands that run the assistant
    run_opts = argparse.ArgumentParser(add_help=False)
    run_opts.add_argument("--model", type=str, help="Model override")
    run_opts.add_argument("--claude-path", dest="claude_path", type=str, help="Path to the claude CLI")
    for phase in ("planning", "implementation", "refactoring", "pr-split"):
        run_opts.add_argument(
            f"--timeout-{phase}", dest=f"timeout_{phase.replace('-', '_')}", type=float,
            help=f"{phase} phase timeout in seconds",
        )

    parser = argparse.ArgumentParser(
        prog="claude-workflow",
        description="Claude workflow orchestrator -- plan, implement, refactor, and split PRs",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- start ---
    start_cmd = subparsers.add_parser("start", parents=[common, run_opts], help="Start a new workflow")
    start_cmd.add_argument("name", type=str, help="Workflow name")
    start_cmd.add_argument("description", type=str, help="What to build or fix")
    start_cmd.add_argument(
        "--type", "-t", dest="workflow_type", type=str, default="feature",
        choices=["feature", "fix"], help="Workflow type (default: feature)",
    )
    start_cmd.add_argument(
        "--split-pr", dest="split_pr", action="store_true", default=None,
        help="Split the PR into a stacked chain when it exceeds the size limits",
    )
    start_cmd.add_argument(
        "--plan", dest="plan_path", type=str,
        help="Use an existing plan.json and skip planning",
    )
    start_cmd.add_argument("--main-branch", dest="main_branch", type=str, help="Base branch for PRs")
    start_cmd.add_argument("--max-lines", dest="max_lines", type=int, help="PR split line threshold")
    start_cmd.add_argument("--max-files", dest="max_files", type=int, help="PR split file threshold")

    # --- resume ---
    resume_cmd = subparsers.add_parser("resume", parents=[common, run_opts], help="Resume a workflow")
    resume_cmd.add_argument("name", type=str, help="Workflow name")

    # --- status ---
    status_cmd = subparsers.add_parser("status", parents=[common], help="Show a workflow's state")
    status_cmd.add_argument("name", type=str, help="Workflow name")

    # --- list ---
    subparsers.add_parser("list", parents=[common], help="List all workflows")

    # --- delete ---
    delete_cmd = subparsers.add_parser("delete", parents=[common], help="Delete a workflow")
    delete_cmd.add_argument("name", type=str, help="Workflow name")

    # --- clean ---
    subparsers.add_parser("clean", parents=[common], help="Delete completed workflows")

    args = parser.parse_args(argv)

    handlers = {
        "start": _start,
        "resume": _resume,
        "status": _status,
        "list": _list,
        "delete": _delete,
        "clean": _clean,
    }
    from .errors import OrchestratorError

    try:
        return handlers[args.command](args)
    except OrchestratorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        # Signal handler already cleaned up
        return 130


def _orchestrator(args: argparse.Namespace, **overrides):
    from .config import load_config
    from .orchestrator import Orchestrator

    config = load_config({"project": args.project, "base_dir": args.base_dir, **overrides})
    if args.verbose:
        config.log_level = "DEBUG"
    return Orchestrator(config)


def _run_overrides(args: argparse.Namespace) -> dict:
    return {
        "model": args.model,
        "claude_path": args.claude_path,
        "timeouts": {
            "planning": args.timeout_planning,
            "implementation": args.timeout_implementation,
            "refactoring": args.timeout_refactoring,
            "pr_split": args.timeout_pr_split,
        },
    }


def _start(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(
        args,
        **_run_overrides(args),
        main_branch=args.main_branch,
        max_lines=args.max_lines,
        max_files=args.max_files,
    )
    plan_path = Path(args.plan_path).resolve() if args.plan_path else None
    workflow = asyncio.run(orchestrator.start(
        args.name,
        args.description,
        args.workflow_type,
        split_pr=args.split_pr,
        plan_path=plan_path,
    ))
    return _exit_code(workflow)


def _resume(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args, **_run_overrides(args))
    workflow = asyncio.run(orchestrator.resume(args.name))
    return _exit_code(workflow)


def _status(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args)
    print(format_workflow(orchestrator.status(args.name)))
    return 0


def _list(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args)
    infos = orchestrator.list_workflows()
    if not infos:
        print("No workflows found.")
        return 0
    print(format_workflow_table(infos))
    return 0


def _delete(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args)
    asyncio.run(orchestrator.delete(args.name))
    print(f"Deleted workflow '{args.name}'")
    return 0


def _clean(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args)
    removed = asyncio.run(orchestrator.clean())
    if not removed:
        print("No completed workflows to clean.")
    for name in removed:
        print(f"  Removed {name}")
    return 0


def _exit_code(workflow: Workflow) -> int:
    return 1 if workflow.error is not None else 0


def format_workflow(workflow: Workflow) -> str:
    from .models import PHASE_ORDER, PhaseStatus

    symbols = {
        PhaseStatus.PENDING: "----",
        PhaseStatus.IN_PROGRESS: "....",
        PhaseStatus.COMPLETED: "DONE",
        PhaseStatus.FAILED: "FAIL",
        PhaseStatus.SKIPPED: "SKIP",
    }
    lines = [
        f"Workflow: {workflow.name} ({workflow.type.value})",
        f"Phase:    {workflow.current_phase.value}",
        f"Created:  {workflow.created_at:%Y-%m-%d %H:%M:%S}",
        f"Updated:  {workflow.updated_at:%Y-%m-%d %H:%M:%S}",
    ]
    if workflow.worktree_path:
        lines.append(f"Worktree: {workflow.worktree_path}")
    if workflow.pr_number:
        lines.append(f"PR:       #{workflow.pr_number}")
    lines.append("")
    for phase in PHASE_ORDER:
        state = workflow.phase(phase)
        extra = f" (attempts: {state.attempts})" if state.attempts > 1 else ""
        lines.append(f"  [{symbols[state.status]}] {phase.value}{extra}")
    if workflow.error is not None:
        kind = "recoverable" if workflow.error.recoverable else "non-recoverable"
        lines += ["", f"Error ({kind}, {workflow.error.phase.value}): {workflow.error.message}"]
    return "\n".join(lines)


def format_workflow_table(infos: list[WorkflowInfo]) -> str:
    width = max(len("NAME"), *(len(info.name) for info in infos))
    lines = [f"{'NAME':<{width}}  {'TYPE':<7}  {'PHASE':<14}  {'STATUS':<11}  UPDATED"]
    for info in infos:
        lines.append(
            f"{info.name:<{width}}  {info.type.value:<7}  {info.current_phase.value:<14}  "
            f"{info.status:<11}  {info.updated_at:%Y-%m-%d %H:%M}"
        )
    return "\n".join(lines)


def cli_entry() -> None:
    """Entry point for pyproject.toml console_scripts."""
    sys.exit(main())
