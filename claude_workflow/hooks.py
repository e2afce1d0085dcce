"""Hook callbacks that keep assistant sessions inside the review workflow."""

from __future__ import annotations

import logging
import re
import shlex
from typing import Any

logger = logging.getLogger("claude_workflow")

# ---------------------------------------------------------------------------
# Bash command rules
#
# Three layers:
#   1. BLOCKED_SUBSTRINGS: plain "in" check for obvious patterns
#   2. BLOCKED_PATTERNS:   regex checks on the whole command
#   3. _check_git_push:    token-level rules, applied to each part of a
#                          compound command
#
# The assistant may push its own feature branch. It may not skip hooks,
# rewrite remote history, touch protected branches, or merge PRs itself.
# ---------------------------------------------------------------------------

PROTECTED_BRANCHES: frozenset[str] = frozenset({"main", "master"})

BLOCKED_SUBSTRINGS: list[tuple[str, str]] = [
    # --- Destructive system commands ---
    ("mkfs.", "filesystem format"),
    (":(){:|:&};:", "fork bomb"),
    ("dd if=/dev/", "raw disk write"),
    ("> /dev/sd", "raw device write"),

    # --- Git: discarding work ---
    ("git reset --hard", "destructive history reset"),
    ("git clean -f", "force-delete untracked files"),
    ("git checkout .", "discard all working tree changes"),
    ("git restore .", "discard all working tree changes"),

    # --- Review discipline ---
    ("gh pr merge", "merging PRs is left to human reviewers"),
    ("gh pr review --approve", "approving PRs is left to human reviewers"),
]

BLOCKED_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(r"(^|\s)--no-verify(\s|$)"),
        "--no-verify bypasses git hooks",
    ),
    (
        re.compile(r"\bgit\s+branch\s+(-D|-d|--delete)\s+(.*\s)?(main|master)(\s|$)"),
        "deleting a protected branch",
    ),
    (
        re.compile(r"\b(curl|wget)\b.*\|\s*(sh|bash|zsh|python|node)\b"),
        "piping downloaded content to an interpreter",
    ),
    (
        re.compile(r"\bsudo\b"),
        "sudo",
    ),
    (
        re.compile(r"\brm\s+(-[a-zA-Z]*\s+)*-[a-zA-Z]*[rR][a-zA-Z]*\s+(/|~|\.|\.\.|\*)(\s|$)"),
        "recursive rm of root, home, or the working directory",
    ),
]

_SEPARATOR_RE = re.compile(r"&&|\|\||;|\n|\|")
_FORCE_FLAGS = {"-f", "--force", "--force-with-lease", "--force-if-includes"}
_ALL_FLAGS = {"--all", "--mirror"}


def _tokens(command: str) -> list[str]:
    try:
        return shlex.split(command)
    except ValueError:
        return command.split()


def _check_git_push(tokens: list[str]) -> str | None:
    """Rules for a single ``git push`` invocation."""
    if len(tokens) < 2 or tokens[0] != "git" or tokens[1] != "push":
        return None

    args = tokens[2:]
    flags = [a for a in args if a.startswith("-")]
    positional = [a for a in args if not a.startswith("-")]

    for flag in flags:
        if flag in _FORCE_FLAGS or flag.startswith("--force-with-lease="):
            return "force push"
        if flag in _ALL_FLAGS:
            return "push --all/--mirror includes protected branches"
        # Combined short flags such as -uf
        if re.fullmatch(r"-[a-zA-Z]+", flag) and "f" in flag[1:]:
            return "force push"

    deleting = "-d" in flags or "--delete" in flags
    # First positional is the remote, the rest are refspecs
    for refspec in positional[1:]:
        if refspec.startswith("+"):
            return "force push"
        source, _, dest = refspec.partition(":")
        target = (dest or source).removeprefix("refs/heads/")
        if target in PROTECTED_BRANCHES:
            if deleting or (dest and not source):
                return "deleting a protected branch"
            return "direct push to a protected branch"
    return None


def check_command_safety(command: str) -> str | None:
    """Check a Bash command against the rules above.

    Returns None if the command is allowed, or a reason string if blocked.
    """
    for pattern, reason in BLOCKED_SUBSTRINGS:
        if pattern in command:
            return reason

    for regex, reason in BLOCKED_PATTERNS:
        if regex.search(command):
            return reason

    for part in _SEPARATOR_RE.split(command):
        reason = _check_git_push(_tokens(part.strip()))
        if reason:
            return reason

    return None


class WorkflowHooks:
    """Hook callbacks for command safety and tool logging."""

    def __init__(self) -> None:
        self.tool_count = 0
        self.blocked: list[str] = []

    async def security_hook(
        self,
        input_data: dict[str, Any],
        tool_use_id: str | None,
        context: Any,
    ) -> dict[str, Any]:
        """Deny Bash commands that fail check_command_safety."""
        if input_data.get("hook_event_name") != "PreToolUse":
            return {}
        if input_data.get("tool_name") != "Bash":
            return {}

        command = input_data.get("tool_input", {}).get("command", "")
        reason = check_command_safety(command)
        if reason:
            logger.warning(f"BLOCKED: {reason}: {command}")
            self.blocked.append(command)
            return {
                "hookSpecificOutput": {
                    "hookEventName": "PreToolUse",
                    "permissionDecision": "deny",
                    "permissionDecisionReason": f"Blocked by workflow policy: {reason}",
                }
            }
        return {}

    async def post_tool_logger(
        self,
        input_data: dict[str, Any],
        tool_use_id: str | None,
        context: Any,
    ) -> dict[str, Any]:
        """Count tool calls and surface tool errors."""
        self.tool_count += 1
        tool_name = input_data.get("tool_name", "unknown")
        response = input_data.get("tool_response", "")
        if isinstance(response, dict) and response.get("is_error"):
            logger.warning(f"Tool {tool_name} error: {str(response)[:500]}")
        return {}

    async def stop_hook(
        self,
        input_data: dict[str, Any],
        tool_use_id: str | None,
        context: Any,
    ) -> dict[str, Any]:
        logger.info(f"Session stopping. Tools used: {self.tool_count}")
        return {}
