"""Review-system gateway: the ``gh`` verbs used for pull requests and CI runs."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from .commands import CommandRunner
from .errors import CommandFailedError, InvalidInputError, NoPullRequestError

logger = logging.getLogger("claude_workflow")

# gh exits 1 when some checks failed and 8 when some are still pending;
# both still print the check list.
CHECKS_ANSWER_EXIT_CODES = (1, 8)

_NO_PR_MARKERS = ("no pull requests found", "no open pull requests")
_PR_NUMBER_RE = re.compile(r"/pull/(\d+)")


def _is_no_pr(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _NO_PR_MARKERS)


def parse_pr_number(url: str) -> int:
    """Extract the PR number from a pull request URL."""
    match = _PR_NUMBER_RE.search(url)
    if not match:
        raise CommandFailedError(f"could not parse PR number from {url!r}")
    return int(match.group(1))


class ReviewGateway(ABC):
    """Capability set of pull-request and CI verbs."""

    @abstractmethod
    async def pr_create(self, cwd: Path, title: str, body: str, head: str, base: str) -> str:
        """Open a pull request and return its URL."""

    @abstractmethod
    async def pr_edit(self, cwd: Path, number: int, body: str) -> None: ...

    @abstractmethod
    async def pr_close(self, cwd: Path, number: int) -> None: ...

    @abstractmethod
    async def current_pr_number(self, cwd: Path) -> int:
        """PR number of the checked-out branch. Raises NoPullRequestError."""

    @abstractmethod
    async def pr_checks(self, cwd: Path, number: int, fields: str) -> str:
        """Raw JSON check records for a PR (0 means the current branch's PR)."""

    @abstractmethod
    async def latest_run_id(self, cwd: Path, number: int) -> int | None: ...

    @abstractmethod
    async def run_rerun(self, cwd: Path, run_id: int) -> None:
        """Re-run only the failed jobs of a workflow run."""


class GhRunner(ReviewGateway):
    """ReviewGateway backed by the GitHub CLI."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    async def pr_create(self, cwd: Path, title: str, body: str, head: str, base: str) -> str:
        if not title.strip():
            raise InvalidInputError("PR title cannot be empty")
        if not head or not base:
            raise InvalidInputError("PR head and base branches cannot be empty")
        result = await self.runner.run(
            "gh", "pr", "create", "--title", title, "--body", body,
            "--head", head, "--base", base, cwd=cwd,
        )
        if not result.ok:
            raise CommandFailedError(
                "failed to create PR", returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
        return result.stdout.strip()

    async def pr_edit(self, cwd: Path, number: int, body: str) -> None:
        result = await self.runner.run(
            "gh", "pr", "edit", str(number), "--body", body, cwd=cwd,
        )
        if not result.ok:
            raise CommandFailedError(
                f"failed to edit PR {number}", returncode=result.returncode,
                stderr=result.stderr.strip(),
            )

    async def pr_close(self, cwd: Path, number: int) -> None:
        result = await self.runner.run("gh", "pr", "close", str(number), cwd=cwd)
        if not result.ok:
            raise CommandFailedError(
                f"failed to close PR {number}", returncode=result.returncode,
                stderr=result.stderr.strip(),
            )

    async def current_pr_number(self, cwd: Path) -> int:
        result = await self.runner.run(
            "gh", "pr", "view", "--json", "number", "-q", ".number", cwd=cwd,
        )
        if not result.ok:
            if _is_no_pr(result.stderr):
                raise NoPullRequestError("no PR found for the current branch")
            raise CommandFailedError(
                "failed to view PR", returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
        try:
            return int(result.stdout.strip())
        except ValueError:
            raise CommandFailedError(
                f"unexpected PR number output: {result.stdout.strip()!r}"
            ) from None

    async def pr_checks(self, cwd: Path, number: int, fields: str) -> str:
        args = ["pr", "checks"]
        if number > 0:
            args.append(str(number))
        args += ["--json", fields]
        result = await self.runner.run("gh", *args, cwd=cwd)
        if result.ok:
            return result.stdout
        if result.returncode in CHECKS_ANSWER_EXIT_CODES and result.stdout.strip():
            return result.stdout
        if _is_no_pr(result.stderr):
            raise NoPullRequestError(
                "no PR found for the current branch: ensure a PR exists before checking CI status"
            )
        raise CommandFailedError(
            "failed to check CI status", returncode=result.returncode,
            stderr=result.stderr.strip(),
        )

    async def latest_run_id(self, cwd: Path, number: int) -> int | None:
        head = await self.runner.run(
            "gh", "pr", "view", str(number), "--json", "headRefName", "-q", ".headRefName",
            cwd=cwd,
        )
        if not head.ok:
            raise CommandFailedError(
                f"failed to view PR {number}", returncode=head.returncode,
                stderr=head.stderr.strip(),
            )
        branch = head.stdout.strip()
        result = await self.runner.run(
            "gh", "run", "list", "--branch", branch, "--limit", "1",
            "--json", "databaseId", cwd=cwd,
        )
        if not result.ok:
            raise CommandFailedError(
                "failed to list workflow runs", returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
        try:
            runs = json.loads(result.stdout or "[]")
        except json.JSONDecodeError:
            return None
        if not runs:
            return None
        return int(runs[0]["databaseId"])

    async def run_rerun(self, cwd: Path, run_id: int) -> None:
        result = await self.runner.run("gh", "run", "rerun", str(run_id), "--failed", cwd=cwd)
        if not result.ok:
            raise CommandFailedError(
                f"failed to rerun workflow run {run_id}", returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
