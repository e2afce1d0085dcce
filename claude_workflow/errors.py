"""Custom exception hierarchy for the workflow orchestrator."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ArtifactType, Phase, PRSplitResult


class OrchestratorError(Exception):
    """Base exception for the orchestrator.

    ``recoverable`` decides whether a failed workflow can be resumed.
    """

    recoverable: bool = True


# --- Preconditions (never retried) ---


class PreconditionError(OrchestratorError):
    """An operation was refused before it had any side effect."""


class InvalidInputError(PreconditionError):
    """Invalid name, type, description, branch, path or message."""

    recoverable = False


class MissingPrerequisiteError(PreconditionError):
    """A phase was entered without the artifacts it depends on."""

    def __init__(self, phase: Phase, missing: list[ArtifactType]):
        self.phase = phase
        self.missing = missing
        names = ", ".join(a.value for a in missing)
        super().__init__(f"Cannot enter {phase.value}: missing artifacts: {names}")


# --- Persisted state ---


class WorkflowNotFoundError(OrchestratorError):
    recoverable = False


class WorkflowExistsError(OrchestratorError):
    recoverable = False


class StateCorruptionError(OrchestratorError):
    """state.json or plan.json could not be parsed."""

    recoverable = False


class StateLockedError(OrchestratorError):
    """Another process holds the workflow lock."""


# --- External commands ---


class CommandError(OrchestratorError):
    """An external command could not complete."""


class CommandTimeoutError(CommandError):
    """An external command exceeded its deadline."""

    def __init__(self, command: str, seconds: float):
        self.command = command
        self.seconds = seconds
        super().__init__(f"{command} timed out after {seconds:.0f}s")


class ToolNotFoundError(CommandError):
    """The external executable is not installed or not on PATH."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"{tool} not found: is it installed?")


class CommandFailedError(CommandError):
    """An external command exited non-zero."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        detail = f" (stderr: {stderr})" if stderr else ""
        super().__init__(f"{message}{detail}")


class NoPullRequestError(CommandError):
    """The current branch has no pull request."""


# --- CI ---


class CITimeoutExhaustedError(CommandError):
    """CI status fetch kept timing out until the retry budget ran out."""

    def __init__(self, attempts: int, last: CommandTimeoutError):
        self.attempts = attempts
        self.last = last
        super().__init__(f"CI check failed after {attempts} attempts: {last}")


class CIWaitTimeoutError(OrchestratorError):
    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"CI check timeout after {seconds:.0f}s")


class CIFailedError(OrchestratorError):
    """CI kept failing: a persistent pattern, or the fix attempts ran out."""


# --- Assistant ---


class AssistantError(OrchestratorError):
    """The coding assistant failed or reported an error result."""


class AssistantTimeoutError(AssistantError):
    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"Assistant execution timeout after {seconds:.0f}s")


class OutputParseError(AssistantError):
    """Assistant output did not contain the expected JSON document."""


# --- PR split ---


class PRSplitError(OrchestratorError):
    """A split step failed; ``result`` holds everything created so far."""

    def __init__(self, step: str, result: PRSplitResult, cause: Exception):
        self.step = step
        self.result = result
        self.cause = cause
        super().__init__(f"failed to {step}: {cause}")


class RollbackError(OrchestratorError):
    """One or more rollback steps failed. All steps were still attempted."""

    def __init__(self, errors: list[Exception]):
        self.errors = errors
        joined = "; ".join(str(e) for e in errors)
        super().__init__(f"rollback encountered {len(errors)} error(s): {joined}")


class UserCancelledError(OrchestratorError):
    """The operator cancelled the workflow at plan confirmation."""

    recoverable = False
