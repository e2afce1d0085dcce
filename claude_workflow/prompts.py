"""Prompt templates for each workflow phase."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .plan import render_plan_markdown

if TYPE_CHECKING:
    from .classifier import ClassifiedCIResult
    from .models import Plan, PRMetrics, WorkflowType

PLANNING_PROMPT_TEMPLATE = """\
You are planning a {workflow_type} for this repository. Do not modify any files.

## Request

{description}
{feedback_section}
## Protocol

1. **Explore**: Read the code that the request touches. Check `git log --oneline -10` for recent context.
2. **Design**: Decide on an architecture, the components involved, and the order of work.
3. **Estimate**: Break the work into phases with estimated file and line counts, and into work streams with their dependencies.
4. **Risks**: List what could go wrong.

## Output

Respond with a single JSON object matching the provided schema. The `summary` field is required.
"""

FEEDBACK_SECTION_TEMPLATE = """
## Reviewer feedback on earlier plans

{feedback_lines}

Revise the plan to address all of the feedback above.
"""

IMPLEMENTATION_PROMPT_TEMPLATE = """\
You are implementing an approved plan in this repository.

## Plan

{plan_markdown}

## Protocol

1. **Implement**: Work through the phases in order. Follow the project's existing patterns and conventions.
2. **Test**: Add or update tests for the new behaviour. Run the project's test suite and fix failures.
3. **Commit**: Commit your work in small, reviewable commits with descriptive messages.
4. **Pull request**: Push the current branch and open a pull request against `{main_branch}` with `gh pr create`.
5. **Report**: Respond with a JSON object matching the provided schema, including the PR number and URL.

## Important Rules

- Never use `--no-verify`, never force push, never push to `{main_branch}`.
- Do not merge the pull request.
"""

REFACTORING_PROMPT_TEMPLATE = """\
The plan below has been implemented on the current branch. Review and refactor it.

## Plan

{plan_markdown}

## Protocol

1. **Review**: Read the diff against `{main_branch}` (`git diff {main_branch}...HEAD`).
2. **Refactor**: Remove duplication, dead code, and unclear naming. Keep behaviour unchanged.
3. **Verify**: Run the test suite and fix anything you broke.
4. **Commit and push**: Commit the refactoring and push the current branch.
5. **Report**: Respond with a JSON object matching the provided schema.
"""

FIX_CI_PROMPT_TEMPLATE = """\
CI failed on pull request #{pr_number}. Fix the code so that CI passes.

## Failed jobs

{failure_lines}

## Assessment

{recommended_action}

## Protocol

1. **Investigate**: Use `gh pr checks {pr_number}` and `gh run view --log-failed` to read the failure logs.
2. **Fix**: Change the code or tests that cause the failures. Do not disable or skip tests.
3. **Verify**: Reproduce the failing checks locally where possible.
4. **Commit and push**: Commit the fix and push the current branch.
5. **Report**: Briefly summarize what you changed.
"""

PR_SPLIT_PROMPT_TEMPLATE = """\
The pull request on the current branch is too large to review in one piece \
({lines_changed} lines across {files_changed} files; limits are {max_lines} lines \
and {max_files} files). Propose how to split it into a chain of smaller pull requests.

## Files

Added:
{files_added}
Modified:
{files_modified}
Deleted:
{files_deleted}

## Commits (oldest first)

{commits}

## Protocol

1. Choose a strategy: `commits` when the commits already form coherent steps, otherwise `files`.
2. Write a parent PR title and description for the overall change.
3. Order the child PRs so each one builds on the previous one. Each child lists either
   commit hashes (strategy `commits`) or file paths (strategy `files`).
4. Do not create branches or pull requests yourself.

## Output

Respond with a single JSON object matching the provided schema.
"""


def _bullets(items: list[str], empty: str = "  (none)") -> str:
    if not items:
        return empty
    return "\n".join(f"  - {item}" for item in items)


def build_planning_prompt(
    workflow_type: WorkflowType, description: str, feedback: list[str] | None = None,
) -> str:
    feedback_section = ""
    if feedback:
        feedback_section = FEEDBACK_SECTION_TEMPLATE.format(
            feedback_lines="\n".join(f"{i + 1}. {item}" for i, item in enumerate(feedback)),
        )
    return PLANNING_PROMPT_TEMPLATE.format(
        workflow_type=workflow_type.value,
        description=description,
        feedback_section=feedback_section,
    )


def build_implementation_prompt(plan: Plan, main_branch: str) -> str:
    return IMPLEMENTATION_PROMPT_TEMPLATE.format(
        plan_markdown=render_plan_markdown(plan),
        main_branch=main_branch,
    )


def build_refactoring_prompt(plan: Plan, main_branch: str) -> str:
    return REFACTORING_PROMPT_TEMPLATE.format(
        plan_markdown=render_plan_markdown(plan),
        main_branch=main_branch,
    )


def build_fix_ci_prompt(pr_number: int, classified: ClassifiedCIResult) -> str:
    failure_lines = "\n".join(
        f"- {reason.job} ({reason.conclusion}): {reason.explanation}"
        for reason in classified.reasons
    ) or "- (no job details available)"
    return FIX_CI_PROMPT_TEMPLATE.format(
        pr_number=pr_number,
        failure_lines=failure_lines,
        recommended_action=classified.recommended_action,
    )


def build_pr_split_prompt(
    metrics: PRMetrics, commits: str, max_lines: int, max_files: int,
) -> str:
    return PR_SPLIT_PROMPT_TEMPLATE.format(
        lines_changed=metrics.lines_changed,
        files_changed=metrics.files_changed,
        max_lines=max_lines,
        max_files=max_files,
        files_added=_bullets(metrics.files_added),
        files_modified=_bullets(metrics.files_modified),
        files_deleted=_bullets(metrics.files_deleted),
        commits=commits or "(no commits)",
    )
