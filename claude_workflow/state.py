"""State management: one directory per workflow holding state.json, the plan, and phase outputs."""

from __future__ import annotations

import fcntl
import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from .errors import (
    StateCorruptionError,
    StateLockedError,
    WorkflowExistsError,
    WorkflowNotFoundError,
)
from .models import (
    PHASE_ORDER,
    Phase,
    PhaseState,
    Plan,
    Workflow,
    WorkflowInfo,
    WorkflowType,
)

logger = logging.getLogger("claude_workflow")

T = TypeVar("T", bound=BaseModel)

STATE_FILE = "state.json"
PLAN_FILE = "plan.json"
PLAN_MARKDOWN_FILE = "plan.md"
PHASES_DIR = "phases"
LOCK_SUFFIX = ".lock"


def _atomic_write(path: Path, text: str) -> None:
    """Write to a sibling tmp file, then rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w") as f:
        f.write(text)
        if not text.endswith("\n"):
            f.write("\n")
    tmp_path.replace(path)


class WorkflowLock:
    """Exclusive, non-blocking advisory lock on one workflow.

    Held for a whole start/resume/delete so two processes never write the
    same state file.
    """

    def __init__(self, lock_path: Path, name: str):
        self.lock_path = lock_path
        self.name = name
        self._handle = None

    def __enter__(self) -> WorkflowLock:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_path, "w")
        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            raise StateLockedError(
                f"Workflow '{self.name}' is in use by another process"
            ) from None
        self._handle = handle
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._handle is None:
            return
        fcntl.flock(self._handle, fcntl.LOCK_UN)
        self._handle.close()
        self._handle = None


class StateManager:
    """Reads and writes workflow state under ``base_dir/<name>/``."""

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir

    # --- Paths ---

    def workflow_dir(self, name: str) -> Path:
        return self.base_dir / name

    def state_path(self, name: str) -> Path:
        return self.workflow_dir(name) / STATE_FILE

    def plan_path(self, name: str) -> Path:
        return self.workflow_dir(name) / PLAN_FILE

    def phase_output_path(self, name: str, phase: Phase) -> Path:
        return self.workflow_dir(name) / PHASES_DIR / f"{phase.value}.json"

    def raw_output_path(self, name: str, phase: Phase) -> Path:
        return self.workflow_dir(name) / PHASES_DIR / f"{phase.value}_raw.txt"

    def lock_path(self, name: str) -> Path:
        # Outside the workflow directory: delete() must not unlink a held lock
        return self.base_dir / f".{name}{LOCK_SUFFIX}"

    def lock(self, name: str) -> WorkflowLock:
        return WorkflowLock(self.lock_path(name), name)

    # --- Workflow state ---

    def exists(self, name: str) -> bool:
        return self.state_path(name).exists()

    def init_state(
        self,
        name: str,
        description: str,
        workflow_type: WorkflowType,
        now: datetime,
        split_pr: bool = False,
    ) -> Workflow:
        """Create and persist a fresh workflow positioned at Planning."""
        if self.exists(name):
            raise WorkflowExistsError(f"Workflow '{name}' already exists")
        workflow = Workflow(
            name=name,
            type=workflow_type,
            description=description,
            current_phase=Phase.PLANNING,
            created_at=now,
            updated_at=now,
            phases={phase: PhaseState() for phase in PHASE_ORDER},
            split_pr=split_pr,
        )
        self.save(workflow)
        return workflow

    def load(self, name: str) -> Workflow:
        path = self.state_path(name)
        if not path.exists():
            raise WorkflowNotFoundError(f"Workflow '{name}' not found")
        try:
            with open(path) as f:
                return Workflow.model_validate(json.load(f))
        except (json.JSONDecodeError, ValidationError) as e:
            raise StateCorruptionError(f"Corrupt state file {path}: {e}") from e

    def save(self, workflow: Workflow) -> None:
        _atomic_write(self.state_path(workflow.name), workflow.model_dump_json(indent=2))

    def delete(self, name: str) -> None:
        path = self.workflow_dir(name)
        if not self.exists(name):
            raise WorkflowNotFoundError(f"Workflow '{name}' not found")
        shutil.rmtree(path)

    def list_workflows(self) -> list[WorkflowInfo]:
        """Summaries of every readable workflow, sorted by name."""
        if not self.base_dir.exists():
            return []
        infos = []
        for entry in sorted(self.base_dir.iterdir()):
            if not entry.is_dir() or not (entry / STATE_FILE).exists():
                continue
            try:
                workflow = self.load(entry.name)
            except StateCorruptionError as e:
                logger.warning(f"Skipping {entry.name}: {e}")
                continue
            infos.append(WorkflowInfo(
                name=workflow.name,
                type=workflow.type,
                current_phase=workflow.current_phase,
                created_at=workflow.created_at,
                updated_at=workflow.updated_at,
                status=workflow_status(workflow),
            ))
        return infos

    # --- Plan and phase outputs ---

    def save_plan(self, name: str, plan: Plan) -> None:
        _atomic_write(self.plan_path(name), plan.model_dump_json(indent=2))

    def load_plan(self, name: str) -> Plan:
        path = self.plan_path(name)
        if not path.exists():
            raise WorkflowNotFoundError(f"No plan recorded for workflow '{name}'")
        try:
            with open(path) as f:
                return Plan.model_validate(json.load(f))
        except (json.JSONDecodeError, ValidationError) as e:
            raise StateCorruptionError(f"Corrupt plan file {path}: {e}") from e

    def save_plan_markdown(self, name: str, markdown: str) -> None:
        _atomic_write(self.workflow_dir(name) / PLAN_MARKDOWN_FILE, markdown)

    def save_phase_output(self, name: str, phase: Phase, output: BaseModel) -> None:
        _atomic_write(self.phase_output_path(name, phase), output.model_dump_json(indent=2))

    def load_phase_output(self, name: str, phase: Phase, model: type[T]) -> T | None:
        path = self.phase_output_path(name, phase)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                return model.model_validate(json.load(f))
        except (json.JSONDecodeError, ValidationError) as e:
            raise StateCorruptionError(f"Corrupt phase output {path}: {e}") from e

    def save_raw_output(self, name: str, phase: Phase, text: str) -> None:
        path = self.raw_output_path(name, phase)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)


def workflow_status(workflow: Workflow) -> str:
    if workflow.current_phase == Phase.COMPLETED:
        return "completed"
    if workflow.current_phase == Phase.FAILED:
        return "failed"
    return "in_progress"
