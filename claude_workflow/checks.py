"""CI engine: poll PR check status with retry, backoff, and an overall deadline."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, Field

from .clock import Clock
from .errors import CITimeoutExhaustedError, CIWaitTimeoutError, CommandTimeoutError
from .gh import ReviewGateway

logger = logging.getLogger("claude_workflow")

CHECK_FIELDS = "name,state,startedAt,completedAt"
DEFAULT_E2E_PATTERN = "e2e|E2E|integration|Integration"
DEFAULT_WAIT_TIMEOUT = 1800.0

MAX_CHECK_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 5.0

PASSING_STATES = frozenset({"SUCCESS", "SKIPPED", "NEUTRAL"})
FAILING_STATES = frozenset({
    "FAILURE", "ERROR", "TIMED_OUT", "STARTUP_FAILURE", "ACTION_REQUIRED",
})
CANCELLED_STATES = frozenset({"CANCELLED"})


class CIStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class CIJobDetail(BaseModel):
    name: str
    state: str = ""
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration(self) -> timedelta | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return self.completed_at - self.started_at


class CIResult(BaseModel):
    status: CIStatus = CIStatus.PENDING
    failed_jobs: list[str] = Field(default_factory=list)
    cancelled_jobs: list[str] = Field(default_factory=list)
    output: str = ""
    passed: bool = False


class CIProgressEvent(BaseModel):
    type: str  # "checking", "waiting", "retry", "status"
    elapsed: float
    message: str
    jobs_passed: int = 0
    jobs_failed: int = 0
    jobs_pending: int = 0
    jobs_cancelled: int = 0
    retry_attempt: int = 0
    next_check_in: float = 0.0


class CheckCIOptions(BaseModel):
    skip_e2e: bool = False
    e2e_test_pattern: str = DEFAULT_E2E_PATTERN
    # False right after a rerun: the current status still describes the old run
    immediate_check: bool = True


ProgressCallback = Callable[[CIProgressEvent], None]


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # gh reports unset times as the zero time
    if parsed.year <= 1:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_check_records(output: str) -> list[CIJobDetail]:
    """Parse ``gh pr checks --json`` output. Malformed input yields ``[]``."""
    if not output or not output.strip():
        return []
    try:
        records = json.loads(output)
    except json.JSONDecodeError:
        return []
    if not isinstance(records, list):
        return []

    details = []
    for record in records:
        if not isinstance(record, dict):
            continue
        details.append(CIJobDetail(
            name=str(record.get("name", "")),
            state=str(record.get("state") or record.get("conclusion") or ""),
            started_at=_parse_timestamp(record.get("startedAt")),
            completed_at=_parse_timestamp(record.get("completedAt")),
        ))
    return details


def parse_ci_output(output: str) -> CIResult:
    """Derive overall status from check records.

    Any non-terminal job forces ``pending``; otherwise any failure forces
    ``failure``; otherwise ``success``. Cancelled jobs are tracked apart
    from failures and clear ``passed``.
    """
    details = parse_check_records(output)
    if not details:
        return CIResult(output=output)

    failed: list[str] = []
    cancelled: list[str] = []
    pending = False
    for detail in details:
        state = detail.state.strip().upper()
        if state in PASSING_STATES:
            continue
        if state in FAILING_STATES:
            failed.append(detail.name)
        elif state in CANCELLED_STATES:
            cancelled.append(detail.name)
        else:
            pending = True

    if pending:
        status = CIStatus.PENDING
    elif failed:
        status = CIStatus.FAILURE
    else:
        status = CIStatus.SUCCESS

    return CIResult(
        status=status,
        failed_jobs=failed,
        cancelled_jobs=cancelled,
        output=output,
        passed=status == CIStatus.SUCCESS and not cancelled,
    )


def count_job_statuses(output: str) -> tuple[int, int, int, int]:
    """Return (passed, failed, pending, cancelled) job counts."""
    passed = failed = pending = cancelled = 0
    for detail in parse_check_records(output):
        state = detail.state.strip().upper()
        if state in PASSING_STATES:
            passed += 1
        elif state in FAILING_STATES:
            failed += 1
        elif state in CANCELLED_STATES:
            cancelled += 1
        else:
            pending += 1
    return passed, failed, pending, cancelled


def filter_e2e_failures(result: CIResult, pattern: str) -> CIResult:
    """Drop jobs matching ``pattern`` from the failed and cancelled lists."""
    if result.passed or result.status == CIStatus.PENDING:
        return result
    try:
        regex = re.compile(pattern)
    except re.error:
        logger.warning(f"Invalid e2e test pattern {pattern!r}; not filtering")
        return result

    failed = [job for job in result.failed_jobs if not regex.search(job)]
    cancelled = [job for job in result.cancelled_jobs if not regex.search(job)]
    skipped = len(result.failed_jobs) + len(result.cancelled_jobs) - len(failed) - len(cancelled)
    if skipped:
        logger.info(f"  Ignoring {skipped} e2e/integration job(s)")
    return result.model_copy(update={
        "failed_jobs": failed,
        "cancelled_jobs": cancelled,
        "passed": not failed and not cancelled,
    })


class CIChecker:
    """Polls a PR's checks through the review gateway.

    All waiting goes through ``clock`` so tests can drive it in virtual time.
    """

    def __init__(
        self,
        gh: ReviewGateway,
        cwd: Path,
        clock: Clock | None = None,
        check_interval: float = 30.0,
        command_timeout: float = 120.0,
        initial_delay: float = 60.0,
        progress_interval: float = 5.0,
    ):
        self.gh = gh
        self.cwd = cwd
        self.clock = clock or Clock()
        self.check_interval = check_interval or 30.0
        self.command_timeout = command_timeout or 120.0
        self.initial_delay = initial_delay
        self.progress_interval = progress_interval or 5.0

    # --- Single check ---

    async def check_ci(self, pr_number: int = 0, deadline: float | None = None) -> CIResult:
        """Fetch and parse check status once, retrying only on command timeouts.

        ``deadline`` is an absolute ``clock.monotonic()`` value; neither the
        backoff sleeps nor a single command may run past it.
        """
        last: CommandTimeoutError | None = None
        for attempt in range(MAX_CHECK_ATTEMPTS):
            if attempt > 0:
                backoff = attempt * RETRY_BACKOFF_SECONDS
                remaining = self._remaining(deadline)
                if remaining is not None and remaining <= backoff:
                    break
                logger.debug(f"  CI check timed out, retrying in {backoff:.0f}s")
                await self.clock.sleep(backoff)
            try:
                return await self._check_once(pr_number, deadline)
            except CommandTimeoutError as e:
                last = e
        if last is None:
            last = CommandTimeoutError("gh pr checks", 0)
        raise CITimeoutExhaustedError(MAX_CHECK_ATTEMPTS, last)

    async def _check_once(self, pr_number: int, deadline: float | None) -> CIResult:
        timeout = self.command_timeout
        remaining = self._remaining(deadline)
        if remaining is not None:
            if remaining <= 0:
                raise CommandTimeoutError("gh pr checks", 0)
            timeout = min(timeout, remaining)
        try:
            output = await asyncio.wait_for(
                self.gh.pr_checks(self.cwd, pr_number, CHECK_FIELDS), timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise CommandTimeoutError("gh pr checks", timeout) from None
        return parse_ci_output(output)

    def _remaining(self, deadline: float | None) -> float | None:
        if deadline is None:
            return None
        return deadline - self.clock.monotonic()

    # --- Wait loop ---

    async def wait_for_ci(self, pr_number: int = 0, timeout: float | None = None) -> CIResult:
        return await self.wait_for_ci_with_progress(pr_number, timeout)

    async def wait_for_ci_with_progress(
        self,
        pr_number: int = 0,
        timeout: float | None = None,
        options: CheckCIOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> CIResult:
        """Wait until CI reaches a terminal status or ``timeout`` elapses.

        One immediate check (unless ``options.immediate_check`` is off); if
        not terminal, wait ``initial_delay`` (emitting
        "waiting" events every ``progress_interval``), then poll every
        ``check_interval``. Raises CIWaitTimeoutError when the deadline passes.
        """
        timeout = timeout or DEFAULT_WAIT_TIMEOUT
        options = options or CheckCIOptions()
        start = self.clock.monotonic()
        deadline = start + timeout
        retries = 0

        def emit(event_type: str, message: str, **kwargs) -> None:
            if on_progress is None:
                return
            on_progress(CIProgressEvent(
                type=event_type,
                elapsed=self.clock.monotonic() - start,
                message=message,
                **kwargs,
            ))

        def emit_status(result: CIResult) -> None:
            passed, failed, pending, cancelled = count_job_statuses(result.output)
            logger.info(
                f"  CI status: {result.status.value} "
                f"({passed} passed, {failed} failed, {pending} pending, {cancelled} cancelled)"
            )
            emit(
                "status", f"CI status: {result.status.value}",
                jobs_passed=passed, jobs_failed=failed, jobs_pending=pending,
                jobs_cancelled=cancelled, next_check_in=self.check_interval,
            )

        if options.immediate_check:
            emit("checking", "Checking CI status")
            try:
                result = await self.check_ci(pr_number, deadline)
            except CITimeoutExhaustedError:
                result = None
            if result is not None:
                emit_status(result)
                if result.status != CIStatus.PENDING:
                    return self._finish(result, options)

        # Initial delay before the first real poll
        wait_start = self.clock.monotonic()
        while True:
            waited = self.clock.monotonic() - wait_start
            delay_left = self.initial_delay - waited
            if delay_left <= 0:
                break
            if self.clock.monotonic() >= deadline:
                raise CIWaitTimeoutError(timeout)
            step = min(self.progress_interval, delay_left, deadline - self.clock.monotonic())
            await self.clock.sleep(step)
            emit(
                "waiting", "Waiting for CI jobs to complete",
                next_check_in=max(self.initial_delay - (self.clock.monotonic() - wait_start), 0.0),
            )

        # Poll loop
        while True:
            remaining = deadline - self.clock.monotonic()
            if remaining <= 0:
                raise CIWaitTimeoutError(timeout)
            await self.clock.sleep(min(self.check_interval, remaining))
            if self.clock.monotonic() >= deadline:
                raise CIWaitTimeoutError(timeout)

            emit("checking", "Checking CI status")
            try:
                result = await self.check_ci(pr_number, deadline)
            except CITimeoutExhaustedError:
                retries += 1
                logger.warning("  CI check command timed out, retrying")
                emit("retry", "Command timeout, retrying", retry_attempt=retries)
                continue

            emit_status(result)
            if result.status != CIStatus.PENDING:
                return self._finish(result, options)

    @staticmethod
    def _finish(result: CIResult, options: CheckCIOptions) -> CIResult:
        if options.skip_e2e:
            return filter_e2e_failures(result, options.e2e_test_pattern)
        return result
