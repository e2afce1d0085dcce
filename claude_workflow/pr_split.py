"""PR split manager: build a stacked parent/child PR chain and unwind it on request."""

from __future__ import annotations

import logging
from pathlib import Path

from .errors import InvalidInputError, PRSplitError, RollbackError
from .gh import ReviewGateway, parse_pr_number
from .git import GitGateway
from .models import ChildPRPlan, PRInfo, PRSplitPlan, PRSplitResult, SplitStrategy

logger = logging.getLogger("claude_workflow")


def parent_branch_name(source_branch: str) -> str:
    return f"split/{source_branch}/parent"


def child_branch_name(source_branch: str, index: int) -> str:
    """Branch for the child at zero-based ``index``."""
    return f"split/{source_branch}/child-{index + 1}"


def child_pr_links(children: list[PRInfo]) -> str:
    return "\n".join(f"- #{child.number} - {child.title}" for child in children)


class PRSplitManager:
    """Creates the branch chain and PRs for a split plan.

    ``execute_split`` never rolls back on its own: on failure it raises
    PRSplitError carrying the partial result, and the caller decides
    whether to call ``rollback`` with it.
    """

    def __init__(self, git: GitGateway, gh: ReviewGateway):
        self.git = git
        self.gh = gh

    async def execute_split(
        self,
        cwd: Path,
        plan: PRSplitPlan | None,
        source_branch: str,
        main_branch: str,
    ) -> PRSplitResult:
        if plan is None:
            raise InvalidInputError("split plan cannot be empty")
        if not plan.child_prs:
            raise InvalidInputError("split plan must have at least one child PR")
        if not source_branch:
            raise InvalidInputError("source branch cannot be empty")
        if not main_branch:
            raise InvalidInputError("main branch cannot be empty")

        result = PRSplitResult(source_branch=source_branch, base_branch=main_branch)

        async def step(description: str, coro) -> None:
            try:
                await coro
            except Exception as e:
                raise PRSplitError(description, result, e) from e

        # Parent branch: a single empty marker commit off main
        parent = parent_branch_name(source_branch)
        logger.info(f"  Creating parent branch {parent}")
        await step("create parent branch", self.git.create_branch(cwd, parent, main_branch))
        result.branch_names.append(parent)
        await step("checkout parent branch", self.git.checkout_branch(cwd, parent))
        await step(
            "create empty commit on parent branch",
            self.git.commit_empty(cwd, f"Parent PR for split: {plan.parent_title}"),
        )
        await step("push parent branch", self.git.push(cwd, parent))

        # Child branches, each based on the previous one in the chain
        base = parent
        child_branches: list[str] = []
        for i, child in enumerate(plan.child_prs):
            branch = child_branch_name(source_branch, i)
            logger.info(f"  Creating child branch {branch} ({child.title})")
            await step(f"create child branch {i + 1}", self.git.create_branch(cwd, branch, base))
            result.branch_names.append(branch)
            child_branches.append(branch)
            await step(f"checkout child branch {i + 1}", self.git.checkout_branch(cwd, branch))
            await step(
                f"apply changes to child branch {i + 1}",
                self._apply_child_changes(cwd, plan.strategy, child, source_branch),
            )
            await step(f"push child branch {i + 1}", self.git.push(cwd, branch))
            base = branch

        # PRs only once every branch exists
        try:
            url = await self.gh.pr_create(
                cwd, plan.parent_title, plan.parent_description, parent, main_branch,
            )
            number = parse_pr_number(url)
        except Exception as e:
            raise PRSplitError("create parent PR", result, e) from e
        result.parent_pr = PRInfo(
            number=number, url=url.strip(),
            title=plan.parent_title, description=plan.parent_description,
        )
        logger.info(f"  Opened parent PR #{number}")

        base = parent
        for i, (child, branch) in enumerate(zip(plan.child_prs, child_branches)):
            try:
                url = await self.gh.pr_create(cwd, child.title, child.description, branch, base)
                number = parse_pr_number(url)
            except Exception as e:
                raise PRSplitError(f"create child PR {i + 1}", result, e) from e
            result.child_prs.append(PRInfo(
                number=number, url=url.strip(),
                title=child.title, description=child.description,
            ))
            logger.info(f"  Opened child PR #{number} -> {base}")
            base = branch

        body = (
            f"{plan.parent_description}\n\n## Child PRs\n\n{child_pr_links(result.child_prs)}"
        )
        await step(
            "update parent PR description",
            self.gh.pr_edit(cwd, result.parent_pr.number, body),
        )

        result.summary = plan.summary
        return result

    async def _apply_child_changes(
        self, cwd: Path, strategy: SplitStrategy, child: ChildPRPlan, source_branch: str,
    ) -> None:
        if strategy == SplitStrategy.BY_COMMITS:
            for commit in child.commits:
                await self.git.cherry_pick(cwd, commit)
        elif strategy == SplitStrategy.BY_FILES:
            await self.git.checkout_files(cwd, source_branch, child.files)
            await self.git.commit_all(cwd, child.title)
        else:
            raise InvalidInputError(f"unknown split strategy: {strategy}")

    async def rollback(self, cwd: Path, result: PRSplitResult) -> None:
        """Best-effort undo of a (possibly partial) split.

        Closes child PRs newest first, then the parent, then deletes remote
        and local branches newest first. Every step runs; failures are
        collected into a single RollbackError.
        """
        errors: list[Exception] = []

        async def attempt(description: str, coro) -> None:
            try:
                await coro
            except Exception as e:
                logger.warning(f"  Rollback: failed to {description}: {e}")
                errors.append(RuntimeError(f"failed to {description}: {e}"))

        for child in reversed(result.child_prs):
            await attempt(f"close child PR {child.number}", self.gh.pr_close(cwd, child.number))

        if result.parent_pr is not None and result.parent_pr.number > 0:
            await attempt(
                f"close parent PR {result.parent_pr.number}",
                self.gh.pr_close(cwd, result.parent_pr.number),
            )

        for branch in reversed(result.branch_names):
            await attempt(
                f"delete remote branch {branch}", self.git.delete_remote_branch(cwd, branch),
            )

        # A branch cannot be deleted while checked out
        if result.branch_names and result.source_branch:
            await attempt(
                f"checkout {result.source_branch}",
                self.git.checkout_branch(cwd, result.source_branch),
            )

        for branch in reversed(result.branch_names):
            await attempt(
                f"delete local branch {branch}",
                self.git.delete_branch(cwd, branch, force=True),
            )

        if errors:
            raise RollbackError(errors)
