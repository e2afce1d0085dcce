"""Assistant executor: run one phase prompt through ClaudeSDKClient."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    ClaudeSDKError,
    CLINotFoundError,
    HookMatcher,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)
from pydantic import BaseModel

from .errors import AssistantError, AssistantTimeoutError, ToolNotFoundError
from .hooks import WorkflowHooks

if TYPE_CHECKING:
    from .config import WorkflowConfig

logger = logging.getLogger("claude_workflow")


class AssistantProgress(BaseModel):
    type: str  # "text", "tool_use", "tool_result"
    message: str
    tool_count: int = 0


class ExecuteRequest(BaseModel):
    prompt: str
    cwd: Path
    timeout: float
    json_schema: dict[str, Any] | None = None
    model: str | None = None


class ExecuteResult(BaseModel):
    output: str = ""
    structured_output: Any = None
    session_id: str | None = None
    cost_usd: float | None = None
    duration_seconds: float = 0.0
    tool_count: int = 0


ProgressCallback = Callable[[AssistantProgress], None]


class AssistantExecutor(ABC):
    """Capability set for running the coding assistant."""

    @abstractmethod
    async def execute(
        self, request: ExecuteRequest, on_progress: ProgressCallback | None = None,
    ) -> ExecuteResult: ...


def _get_sdk_subprocess_pid(client: ClaudeSDKClient) -> int | None:
    """PID of the CLI subprocess behind the SDK client, if still reachable.

    Navigates client._transport._process.pid; None if SDK internals changed.
    """
    transport = getattr(client, "_transport", None)
    proc = getattr(transport, "_process", None) if transport is not None else None
    return getattr(proc, "pid", None) if proc is not None else None


def summarize_tool_use(name: str, tool_input: dict[str, Any]) -> str:
    """One-line summary of a tool call for progress output."""
    if name in ("Read", "Edit", "Write"):
        return f"{name} {tool_input.get('file_path', '')}"
    if name == "Bash":
        cmd = tool_input.get("command", "")
        if len(cmd) > 80:
            cmd = cmd[:77] + "..."
        return f"Bash $ {cmd}"
    if name == "Glob":
        return f"Glob {tool_input.get('pattern', '')}"
    if name == "Grep":
        return f"Grep /{tool_input.get('pattern', '')}/"
    if name == "Task":
        return f"Task [{tool_input.get('subagent_type', '')}]"
    return name


class ClaudeExecutor(AssistantExecutor):
    """AssistantExecutor backed by the Claude Agent SDK."""

    # Active CLI subprocess, for signal-based cleanup
    _active_pid: int | None = None

    def __init__(self, config: WorkflowConfig):
        self.config = config

    async def execute(
        self, request: ExecuteRequest, on_progress: ProgressCallback | None = None,
    ) -> ExecuteResult:
        """Run the prompt with structured output, hooks, and a hard timeout."""
        hooks = WorkflowHooks()
        options = ClaudeAgentOptions(
            model=request.model or self.config.model,
            permission_mode=self.config.permission_mode,
            allowed_tools=self.config.allowed_tools,
            cwd=str(request.cwd),
            cli_path=self.config.claude_path,
            env=self.config.env,
            setting_sources=["project"],
            hooks={
                "PreToolUse": [
                    HookMatcher(matcher="Bash", hooks=[hooks.security_hook]),
                ],
                "PostToolUse": [
                    HookMatcher(matcher=None, hooks=[hooks.post_tool_logger]),
                ],
                "Stop": [
                    HookMatcher(hooks=[hooks.stop_hook]),
                ],
            },
        )
        if request.json_schema is not None:
            options.output_format = {"type": "json_schema", "schema": request.json_schema}

        try:
            return await asyncio.wait_for(
                self._run(options, request.prompt, on_progress), timeout=request.timeout,
            )
        except asyncio.TimeoutError:
            self.kill_active_subprocess()
            raise AssistantTimeoutError(request.timeout) from None
        except CLINotFoundError as e:
            raise ToolNotFoundError("claude") from e
        except ClaudeSDKError as e:
            raise AssistantError(f"{type(e).__name__}: {e}") from e

    async def _run(
        self,
        options: ClaudeAgentOptions,
        prompt: str,
        on_progress: ProgressCallback | None,
    ) -> ExecuteResult:
        start_time = time.monotonic()
        result = ExecuteResult()
        texts: list[str] = []

        def report(event_type: str, message: str) -> None:
            if on_progress is not None:
                on_progress(AssistantProgress(
                    type=event_type, message=message, tool_count=result.tool_count,
                ))

        try:
            async with ClaudeSDKClient(options) as client:
                await client.query(prompt)
                # The subprocess exists once query() has been sent
                ClaudeExecutor._active_pid = _get_sdk_subprocess_pid(client)

                async for message in client.receive_response():
                    if isinstance(message, SystemMessage) and message.subtype == "init":
                        result.session_id = message.data.get("session_id")
                        logger.info(f"  Session started (id: {result.session_id})")

                    elif isinstance(message, AssistantMessage):
                        for block in message.content:
                            if isinstance(block, TextBlock):
                                texts.append(block.text)
                                line = _first_line(block.text)
                                if line:
                                    logger.info(f"  Claude: {line}")
                                    report("text", line)
                            elif isinstance(block, ToolUseBlock):
                                result.tool_count += 1
                                summary = summarize_tool_use(block.name, block.input)
                                logger.info(f"  [{result.tool_count:3d}] {summary}")
                                report("tool_use", summary)

                    elif isinstance(message, UserMessage) and isinstance(message.content, list):
                        for block in message.content:
                            if isinstance(block, ToolResultBlock):
                                status = "error" if block.is_error else "ok"
                                report("tool_result", f"{status} ({block.tool_use_id})")

                    elif isinstance(message, ResultMessage):
                        result.session_id = result.session_id or message.session_id
                        result.cost_usd = message.total_cost_usd
                        result.structured_output = message.structured_output
                        result.output = message.result or "\n".join(texts)
                        if message.is_error:
                            raise AssistantError(
                                f"Assistant reported an error: {message.result or 'unknown error'}"
                            )
        finally:
            ClaudeExecutor._active_pid = None

        result.duration_seconds = time.monotonic() - start_time
        return result

    @classmethod
    def kill_active_subprocess(cls) -> None:
        """SIGTERM the active CLI subprocess and its process group, if any."""
        pid = cls._active_pid
        cls._active_pid = None
        if pid is None:
            return

        logger.info(f"  Terminating assistant subprocess (PID {pid})...")
        try:
            os.killpg(os.getpgid(pid), signal.SIGTERM)
        except (ProcessLookupError, PermissionError, OSError):
            try:
                os.kill(pid, signal.SIGTERM)
            except (ProcessLookupError, PermissionError):
                pass


def _first_line(text: str) -> str:
    for line in text.split("\n"):
        line = line.strip()
        if line:
            return line if len(line) <= 120 else line[:117] + "..."
    return ""
