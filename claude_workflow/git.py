"""Version-control gateway: the git verbs the orchestrator and split manager use."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from .commands import CommandResult, CommandRunner
from .errors import CommandFailedError, InvalidInputError
from .models import PRMetrics

logger = logging.getLogger("claude_workflow")

# " 3 files changed, 40 insertions(+), 2 deletions(-)"
_SUMMARY_FILES_RE = re.compile(r"(\d+) files? changed")
_SUMMARY_INSERT_RE = re.compile(r"(\d+) insertions?\(\+\)")
_SUMMARY_DELETE_RE = re.compile(r"(\d+) deletions?\(-\)")


def _require(value: str, what: str) -> None:
    if not value or not value.strip():
        raise InvalidInputError(f"{what} cannot be empty")


def parse_diff_stat(output: str) -> PRMetrics:
    """Turn ``git diff --stat --summary`` output into PRMetrics.

    The last summary line gives the totals. Per-file lines are classified as
    added or deleted when ``--summary`` reports ``create mode``/``delete mode``
    for them (or the stat line is tagged ``(new)``/``(gone)``); everything
    else counts as modified.
    """
    metrics = PRMetrics()
    created: set[str] = set()
    deleted: set[str] = set()
    stat_files: list[str] = []

    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("create mode "):
            created.add(line.split(maxsplit=3)[-1])
            continue
        if line.startswith("delete mode "):
            deleted.add(line.split(maxsplit=3)[-1])
            continue
        if "changed" in line and _SUMMARY_FILES_RE.search(line):
            metrics.files_changed = int(_SUMMARY_FILES_RE.search(line).group(1))
            lines = 0
            for pattern in (_SUMMARY_INSERT_RE, _SUMMARY_DELETE_RE):
                match = pattern.search(line)
                if match:
                    lines += int(match.group(1))
            metrics.lines_changed = lines
            continue
        if "|" in line:
            name = line.split("|", 1)[0].strip()
            if name.endswith(" (new)"):
                created.add(name[: -len(" (new)")].strip())
                name = name[: -len(" (new)")].strip()
            elif name.endswith(" (gone)"):
                deleted.add(name[: -len(" (gone)")].strip())
                name = name[: -len(" (gone)")].strip()
            stat_files.append(name)

    for name in stat_files:
        if name in created:
            metrics.files_added.append(name)
        elif name in deleted:
            metrics.files_deleted.append(name)
        else:
            metrics.files_modified.append(name)
    return metrics


class GitGateway(ABC):
    """Capability set of version-control verbs."""

    @abstractmethod
    async def current_branch(self, cwd: Path) -> str: ...

    @abstractmethod
    async def push(self, cwd: Path, branch: str) -> None:
        """Push ``branch`` to origin with upstream tracking."""

    @abstractmethod
    async def worktree_add(self, cwd: Path, path: Path, branch: str) -> None: ...

    @abstractmethod
    async def worktree_remove(self, cwd: Path, path: Path) -> None: ...

    @abstractmethod
    async def commits(self, cwd: Path, base: str) -> list[str]:
        """Commit hashes in ``base..HEAD``, oldest first."""

    @abstractmethod
    async def commit_log(self, cwd: Path, base: str) -> str:
        """One-line log of ``base..HEAD`` for prompts."""

    @abstractmethod
    async def cherry_pick(self, cwd: Path, commit: str) -> None: ...

    @abstractmethod
    async def create_branch(self, cwd: Path, name: str, base: str) -> None:
        """Create ``name`` pointing at ``base`` without checking it out."""

    @abstractmethod
    async def checkout_branch(self, cwd: Path, name: str) -> None: ...

    @abstractmethod
    async def delete_branch(self, cwd: Path, name: str, force: bool = False) -> None: ...

    @abstractmethod
    async def delete_remote_branch(self, cwd: Path, name: str) -> None: ...

    @abstractmethod
    async def commit_empty(self, cwd: Path, message: str) -> None: ...

    @abstractmethod
    async def checkout_files(self, cwd: Path, source: str, files: list[str]) -> None: ...

    @abstractmethod
    async def commit_all(self, cwd: Path, message: str) -> None: ...

    @abstractmethod
    async def diff_stat(self, cwd: Path, base: str) -> PRMetrics: ...


class GitRunner(GitGateway):
    """GitGateway backed by the ``git`` executable."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    async def _git(self, cwd: Path, *args: str, action: str) -> CommandResult:
        result = await self.runner.run("git", *args, cwd=cwd)
        if not result.ok:
            raise CommandFailedError(
                f"failed to {action}", returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
        return result

    async def current_branch(self, cwd: Path) -> str:
        result = await self._git(
            cwd, "rev-parse", "--abbrev-ref", "HEAD", action="get current branch",
        )
        return result.stdout.strip()

    async def push(self, cwd: Path, branch: str) -> None:
        _require(branch, "branch name")
        await self._git(cwd, "push", "-u", "origin", branch, action=f"push {branch}")

    async def worktree_add(self, cwd: Path, path: Path, branch: str) -> None:
        _require(str(path), "worktree path")
        _require(branch, "branch name")
        await self._git(
            cwd, "worktree", "add", "-b", branch, str(path), action="create worktree",
        )

    async def worktree_remove(self, cwd: Path, path: Path) -> None:
        _require(str(path), "worktree path")
        await self._git(
            cwd, "worktree", "remove", "--force", str(path), action="remove worktree",
        )

    async def commits(self, cwd: Path, base: str) -> list[str]:
        _require(base, "base branch")
        result = await self._git(
            cwd, "log", "--reverse", "--format=%H", f"{base}..HEAD", action="list commits",
        )
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def commit_log(self, cwd: Path, base: str) -> str:
        _require(base, "base branch")
        result = await self._git(
            cwd, "log", "--reverse", "--format=%H %s", f"{base}..HEAD",
            action="read commit log",
        )
        return result.stdout.strip()

    async def cherry_pick(self, cwd: Path, commit: str) -> None:
        _require(commit, "commit hash")
        await self._git(cwd, "cherry-pick", commit, action=f"cherry-pick {commit}")

    async def create_branch(self, cwd: Path, name: str, base: str) -> None:
        _require(name, "branch name")
        _require(base, "base branch")
        await self._git(cwd, "branch", name, base, action=f"create branch {name}")

    async def checkout_branch(self, cwd: Path, name: str) -> None:
        _require(name, "branch name")
        await self._git(cwd, "checkout", name, action=f"checkout {name}")

    async def delete_branch(self, cwd: Path, name: str, force: bool = False) -> None:
        _require(name, "branch name")
        flag = "-D" if force else "-d"
        await self._git(cwd, "branch", flag, name, action=f"delete branch {name}")

    async def delete_remote_branch(self, cwd: Path, name: str) -> None:
        _require(name, "branch name")
        await self._git(
            cwd, "push", "origin", "--delete", name, action=f"delete remote branch {name}",
        )

    async def commit_empty(self, cwd: Path, message: str) -> None:
        _require(message, "commit message")
        await self._git(
            cwd, "commit", "--allow-empty", "-m", message, action="create empty commit",
        )

    async def checkout_files(self, cwd: Path, source: str, files: list[str]) -> None:
        _require(source, "source branch")
        if not files:
            raise InvalidInputError("file list cannot be empty")
        await self._git(
            cwd, "checkout", source, "--", *files, action=f"checkout files from {source}",
        )

    async def commit_all(self, cwd: Path, message: str) -> None:
        _require(message, "commit message")
        await self._git(cwd, "add", "-A", action="stage changes")
        await self._git(cwd, "commit", "-m", message, action="commit changes")

    async def diff_stat(self, cwd: Path, base: str) -> PRMetrics:
        _require(base, "base branch")
        result = await self._git(
            cwd, "diff", "--stat", "--summary", f"{base}...HEAD", action="compute diff stat",
        )
        return parse_diff_stat(result.stdout)
