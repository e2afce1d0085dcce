"""Per-workflow git worktrees so workflows never touch the primary checkout."""

from __future__ import annotations

import logging
from pathlib import Path

from .errors import InvalidInputError
from .git import GitGateway

logger = logging.getLogger("claude_workflow")


def worktree_branch(name: str) -> str:
    return f"workflow/{name}"


class WorktreeManager:
    """Creates worktrees at ``<base_dir>/../worktrees/<name>`` on ``workflow/<name>``."""

    def __init__(self, git: GitGateway, repo_dir: Path, base_dir: Path):
        self.git = git
        self.repo_dir = repo_dir
        self.base_dir = base_dir

    def path_for(self, name: str) -> Path:
        return (self.base_dir / ".." / "worktrees" / name).resolve()

    def exists(self, path: Path | str | None) -> bool:
        if not path:
            return False
        path = Path(path)
        return path.is_dir() and (path / ".git").exists()

    async def create(self, name: str) -> Path:
        """Create the worktree for ``name``, or return it if it already exists."""
        if not name:
            raise InvalidInputError("workflow name cannot be empty")
        path = self.path_for(name)
        if self.exists(path):
            return path
        path.parent.mkdir(parents=True, exist_ok=True)
        branch = worktree_branch(name)
        logger.info(f"Creating worktree {path} on branch {branch}")
        await self.git.worktree_add(self.repo_dir, path, branch)
        return path

    async def delete(self, path: Path | str | None) -> None:
        """Remove a worktree. A no-op when nothing is there."""
        if not self.exists(path):
            return
        logger.info(f"Removing worktree {path}")
        await self.git.worktree_remove(self.repo_dir, Path(path))
