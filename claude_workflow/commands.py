"""External command gateway: run a program, capture its output, respect a deadline."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from pathlib import Path

from pydantic import BaseModel

from .errors import CommandTimeoutError, ToolNotFoundError

logger = logging.getLogger("claude_workflow")


class CommandResult(BaseModel):
    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs external programs with ``asyncio.create_subprocess_exec``.

    Non-zero exit codes are returned, not raised; the verb wrappers in
    ``git`` and ``gh`` decide what a failure means for their command.
    """

    def __init__(self, default_timeout: float = 120.0, env: dict[str, str] | None = None):
        self.default_timeout = default_timeout
        self.env = dict(env or {})

    async def run(
        self,
        name: str,
        *args: str,
        cwd: Path | str | None = None,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        timeout = self.default_timeout if timeout is None else timeout
        command = shlex.join([name, *args])
        merged_env = None
        if self.env or env:
            merged_env = {**os.environ, **self.env, **(env or {})}

        logger.debug(f"$ {command} (cwd={cwd or '.'})")
        try:
            process = await asyncio.create_subprocess_exec(
                name,
                *args,
                cwd=str(cwd) if cwd else None,
                env=merged_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ToolNotFoundError(name) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise CommandTimeoutError(command, timeout) from None
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        return CommandResult(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            returncode=process.returncode if process.returncode is not None else -1,
        )
