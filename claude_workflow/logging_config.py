"""Structured logging setup: console + JSON-lines file."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import WorkflowConfig

LOGGER_NAME = "claude_workflow"
CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """JSON Lines format for structured log files."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
        }
        workflow = getattr(record, "workflow", None)
        if workflow:
            entry["workflow"] = workflow
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def run_log_path(config: WorkflowConfig, started: datetime) -> Path:
    """JSON-lines file for one CLI run: <project>/<log_dir>/run-YYYYmmdd-HHMMSS.jsonl."""
    log_dir = config.log_dir
    if not log_dir.is_absolute():
        log_dir = config.project_dir / log_dir
    return log_dir / f"run-{started:%Y%m%d-%H%M%S}.jsonl"


def setup_logger(config: WorkflowConfig) -> logging.Logger:
    """Return the shared workflow logger, installing its handlers on first use.

    Later calls only adjust the level, so constructing several
    orchestrators in one process never duplicates output.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    if logger.handlers:
        return logger

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(console)

    if config.structured_log:
        path = run_log_path(config, datetime.now())
        path.parent.mkdir(parents=True, exist_ok=True)
        run_log = logging.FileHandler(path)
        run_log.setFormatter(JSONFormatter())
        logger.addHandler(run_log)

    return logger
