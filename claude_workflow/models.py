"""Data models for workflows, plans, and pull request splits."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class Phase(str, Enum):
    PLANNING = "PLANNING"
    CONFIRMATION = "CONFIRMATION"
    IMPLEMENTATION = "IMPLEMENTATION"
    REFACTORING = "REFACTORING"
    PR_SPLIT = "PR_SPLIT"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Executable phases in pipeline order. COMPLETED and FAILED are absorbing.
PHASE_ORDER: list[Phase] = [
    Phase.PLANNING,
    Phase.CONFIRMATION,
    Phase.IMPLEMENTATION,
    Phase.REFACTORING,
    Phase.PR_SPLIT,
]


class PhaseStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class WorkflowType(str, Enum):
    FEATURE = "feature"
    FIX = "fix"


class ArtifactType(str, Enum):
    PLAN = "plan"
    APPROVAL = "approval"
    IMPLEMENTATION = "implementation"
    PR = "pr"


class PRMetrics(BaseModel):
    """Diff statistics used to decide whether a PR should be split."""

    lines_changed: int = 0
    files_changed: int = 0
    files_added: list[str] = Field(default_factory=list)
    files_modified: list[str] = Field(default_factory=list)
    files_deleted: list[str] = Field(default_factory=list)


class PhaseState(BaseModel):
    status: PhaseStatus = PhaseStatus.PENDING
    attempts: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    feedback: list[str] = Field(default_factory=list)
    required: bool | None = None
    metrics: PRMetrics | None = None


class WorkflowError(BaseModel):
    """Terminal or resumable error recorded on a workflow."""

    message: str
    phase: Phase
    timestamp: datetime
    recoverable: bool


class Workflow(BaseModel):
    """Persisted state of one workflow: the unit of resumability."""

    version: str = "1.0"
    name: str
    type: WorkflowType
    description: str
    current_phase: Phase = Phase.PLANNING
    created_at: datetime
    updated_at: datetime
    phases: dict[Phase, PhaseState] = Field(default_factory=dict)
    artifacts: list[ArtifactType] = Field(default_factory=list)
    error: WorkflowError | None = None
    worktree_path: str | None = None
    pr_number: int | None = None
    split_pr: bool = False

    def phase(self, phase: Phase) -> PhaseState:
        return self.phases.setdefault(phase, PhaseState())

    def has_artifact(self, artifact: ArtifactType) -> bool:
        return artifact in self.artifacts

    def record_artifact(self, artifact: ArtifactType) -> None:
        if artifact not in self.artifacts:
            self.artifacts.append(artifact)

    def withdraw_artifact(self, artifact: ArtifactType) -> None:
        if artifact in self.artifacts:
            self.artifacts.remove(artifact)

    @property
    def is_terminal(self) -> bool:
        return self.current_phase in (Phase.COMPLETED, Phase.FAILED)


class WorkflowInfo(BaseModel):
    """Summary row for `list`."""

    name: str
    type: WorkflowType
    current_phase: Phase
    created_at: datetime
    updated_at: datetime
    status: str


# --- Plan (Planning phase output) ---


class Architecture(BaseModel):
    overview: str = ""
    components: list[str] = Field(default_factory=list)


class PlanPhase(BaseModel):
    name: str
    description: str = ""
    estimated_files: int = 0
    estimated_lines: int = 0


class WorkStream(BaseModel):
    name: str
    tasks: list[str] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)


class Plan(BaseModel):
    """Structured plan. Written once by Planning and read-only afterwards."""

    summary: str
    context_type: str = ""
    complexity: str = ""
    architecture: Architecture = Field(default_factory=Architecture)
    phases: list[PlanPhase] = Field(default_factory=list)
    work_streams: list[WorkStream] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    estimated_total_lines: int = 0
    estimated_total_files: int = 0


# --- Implementation / refactoring outputs ---


class ImplementationSummary(BaseModel):
    summary: str
    files_changed: list[str] = Field(default_factory=list)
    lines_added: int = 0
    lines_removed: int = 0
    tests_added: int = 0
    pr_number: int = 0
    pr_url: str = ""
    next_steps: list[str] = Field(default_factory=list)


class RefactoringSummary(BaseModel):
    summary: str
    files_changed: list[str] = Field(default_factory=list)
    improvements_made: list[str] = Field(default_factory=list)


# --- PR split ---


class SplitStrategy(str, Enum):
    BY_COMMITS = "commits"
    BY_FILES = "files"


class ChildPRPlan(BaseModel):
    title: str
    description: str = ""
    commits: list[str] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)


class PRSplitPlan(BaseModel):
    strategy: SplitStrategy
    parent_title: str
    parent_description: str = ""
    child_prs: list[ChildPRPlan] = Field(default_factory=list)
    summary: str = ""


class PRInfo(BaseModel):
    number: int
    url: str
    title: str
    description: str = ""


class PRSplitResult(BaseModel):
    """Everything a split created, kept even on partial failure for rollback."""

    parent_pr: PRInfo | None = None
    child_prs: list[PRInfo] = Field(default_factory=list)
    branch_names: list[str] = Field(default_factory=list)
    source_branch: str = ""
    base_branch: str = ""
    summary: str = ""
