"""Configuration loading: defaults → claude-workflow.toml → CLI flags."""

from __future__ import annotations

import os
import sys

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

CONFIG_FILE_NAME = "claude-workflow.toml"

DEFAULT_MAX_DESCRIPTION_LENGTH = 32768
ENV_MAX_DESCRIPTION_LENGTH = "CLAUDE_WORKFLOW_MAX_DESCRIPTION_LENGTH"


def max_description_length_from_env() -> int:
    """Return the description limit from the environment, or the default.

    Non-numeric, zero, and negative values fall back to the default.
    """
    raw = os.environ.get(ENV_MAX_DESCRIPTION_LENGTH, "")
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_MAX_DESCRIPTION_LENGTH
    return value if value > 0 else DEFAULT_MAX_DESCRIPTION_LENGTH


class PhaseTimeouts(BaseModel):
    """Assistant timeouts per phase, in seconds."""

    planning: float = 3600.0
    implementation: float = 21600.0
    refactoring: float = 21600.0
    pr_split: float = 3600.0


class WorkflowConfig(BaseModel):
    """All workflow settings. Loaded from defaults, then claude-workflow.toml, then CLI flags."""

    # Paths
    project_dir: Path = Field(default_factory=lambda: Path.cwd())
    base_dir: Path = Path(".claude/workflow")
    main_branch: str = "main"

    # Assistant
    claude_path: str | None = None
    model: str = "sonnet"
    planning_model: str = "opus"
    permission_mode: Literal["default", "acceptEdits", "bypassPermissions"] = "acceptEdits"
    allowed_tools: list[str] = Field(default_factory=lambda: [
        "Read", "Write", "Edit", "Bash", "Glob", "Grep", "WebFetch", "WebSearch", "Task",
    ])
    timeouts: PhaseTimeouts = Field(default_factory=PhaseTimeouts)

    # External commands
    command_timeout_seconds: float = 120.0
    env: dict[str, str] = Field(default_factory=dict)

    # CI
    ci_check_interval_seconds: float = 30.0
    ci_check_timeout_seconds: float = 1800.0
    ci_initial_delay_seconds: float = 60.0
    ci_progress_interval_seconds: float = 5.0
    e2e_test_pattern: str = "e2e|E2E|integration|Integration"
    persistent_failure_threshold: int = 3
    max_fix_attempts: int = 10

    # PR split
    split_pr: bool = False
    max_lines: int = 100
    max_files: int = 10

    # Validation
    max_description_length: int = Field(default_factory=max_description_length_from_env)

    # Logging
    log_level: str = "INFO"
    log_dir: Path = Path(".claude/workflow/logs")
    structured_log: bool = True

    @property
    def workflows_dir(self) -> Path:
        if self.base_dir.is_absolute():
            return self.base_dir
        return self.project_dir / self.base_dir


def load_config(cli_args: dict[str, Any]) -> WorkflowConfig:
    """Load config from defaults → claude-workflow.toml → CLI args."""
    project_dir = Path(cli_args.get("project") or ".").resolve()
    toml_path = project_dir / CONFIG_FILE_NAME

    config_data: dict[str, Any] = {}

    if toml_path.exists():
        with open(toml_path, "rb") as f:
            config_data.update(tomllib.load(f))

    # Only non-None CLI values override; timeouts merge per phase
    for key, value in cli_args.items():
        if value is None or key == "project":
            continue
        if key == "timeouts":
            timeouts = dict(config_data.get("timeouts", {}))
            timeouts.update({k: v for k, v in value.items() if v is not None})
            config_data["timeouts"] = timeouts
        else:
            config_data[key] = value

    config_data["project_dir"] = project_dir

    return WorkflowConfig(**config_data)
