"""Tests for CI status parsing and the polling loop (in virtual time)."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from conftest import PASSING_CHECKS, FakeGh, check, checks_json

from claude_workflow.checks import (
    CheckCIOptions,
    CIChecker,
    CIResult,
    CIStatus,
    count_job_statuses,
    filter_e2e_failures,
    parse_check_records,
    parse_ci_output,
)
from claude_workflow.clock import FakeClock
from claude_workflow.errors import (
    CITimeoutExhaustedError,
    CIWaitTimeoutError,
    CommandTimeoutError,
    NoPullRequestError,
)

PENDING = checks_json(check("build", "SUCCESS", 60), check("test", "IN_PROGRESS"))
FAILED = checks_json(check("build", "FAILURE", 60), check("test", "SUCCESS", 90))


class ScriptedGh(FakeGh):
    """pr_checks replays answers in order; an Exception answer is raised. The last one repeats."""

    def __init__(self, *answers):
        super().__init__()
        self.answers = list(answers)

    async def pr_checks(self, cwd, number, fields):
        self.calls.append(("pr_checks", number))
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


def timeout_error() -> CommandTimeoutError:
    return CommandTimeoutError("gh pr checks", 120)


def make_checker(gh, clock, initial_delay: float = 60.0) -> CIChecker:
    return CIChecker(
        gh,
        Path("."),
        clock=clock,
        check_interval=30.0,
        command_timeout=120.0,
        initial_delay=initial_delay,
        progress_interval=5.0,
    )


class TestParseCIOutput:
    def test_all_passing(self):
        result = parse_ci_output(PASSING_CHECKS)
        assert result.status == CIStatus.SUCCESS
        assert result.passed is True
        assert result.failed_jobs == []

    def test_skipped_and_neutral_count_as_passing(self):
        output = checks_json(check("docs", "SKIPPED"), check("lint", "NEUTRAL"))
        assert parse_ci_output(output).passed is True

    def test_pending_wins_over_failure(self):
        output = checks_json(check("build", "FAILURE", 10), check("test", "QUEUED"))
        result = parse_ci_output(output)
        assert result.status == CIStatus.PENDING
        assert result.passed is False

    def test_failure(self):
        result = parse_ci_output(FAILED)
        assert result.status == CIStatus.FAILURE
        assert result.failed_jobs == ["build"]
        assert result.passed is False

    @pytest.mark.parametrize("state", ["ERROR", "TIMED_OUT", "STARTUP_FAILURE", "ACTION_REQUIRED"])
    def test_other_failure_states(self, state):
        result = parse_ci_output(checks_json(check("job", state, 5)))
        assert result.status == CIStatus.FAILURE

    def test_cancelled_blocks_passing(self):
        output = checks_json(check("build", "SUCCESS", 60), check("deploy", "CANCELLED", 5))
        result = parse_ci_output(output)
        assert result.status == CIStatus.SUCCESS
        assert result.cancelled_jobs == ["deploy"]
        assert result.failed_jobs == []
        assert result.passed is False

    def test_empty_output_is_pending(self):
        assert parse_ci_output("").status == CIStatus.PENDING
        assert parse_ci_output("[]").status == CIStatus.PENDING

    def test_output_kept(self):
        assert parse_ci_output(FAILED).output == FAILED


class TestParseCheckRecords:
    def test_durations(self):
        details = parse_check_records(checks_json(check("build", "SUCCESS", 90)))
        assert details[0].duration == timedelta(seconds=90)

    def test_missing_timestamps(self):
        details = parse_check_records(checks_json(check("build", "CANCELLED")))
        assert details[0].duration is None

    def test_zero_timestamp_treated_as_missing(self):
        output = (
            '[{"name": "build", "state": "CANCELLED", '
            '"startedAt": "0001-01-01T00:00:00Z", "completedAt": "0001-01-01T00:00:00Z"}]'
        )
        assert parse_check_records(output)[0].duration is None

    @pytest.mark.parametrize("output", ["", "not json", '{"name": "x"}', "[1, 2]"])
    def test_malformed_input(self, output):
        assert parse_check_records(output) == []

    def test_count_job_statuses(self):
        output = checks_json(
            check("a", "SUCCESS", 1), check("b", "FAILURE", 1),
            check("c", "PENDING"), check("d", "CANCELLED", 1), check("e", "SKIPPED"),
        )
        assert count_job_statuses(output) == (2, 1, 1, 1)


class TestFilterE2E:
    def test_removes_matching_jobs(self):
        result = CIResult(
            status=CIStatus.FAILURE,
            failed_jobs=["e2e-chrome", "unit"],
            cancelled_jobs=["Integration suite"],
        )
        filtered = filter_e2e_failures(result, "e2e|Integration")
        assert filtered.failed_jobs == ["unit"]
        assert filtered.cancelled_jobs == []
        assert filtered.passed is False

    def test_only_e2e_failures_pass(self):
        result = CIResult(status=CIStatus.FAILURE, failed_jobs=["e2e-chrome"])
        assert filter_e2e_failures(result, "e2e").passed is True

    def test_invalid_pattern_leaves_result(self):
        result = CIResult(status=CIStatus.FAILURE, failed_jobs=["e2e-chrome"])
        assert filter_e2e_failures(result, "([") == result

    def test_pending_untouched(self):
        result = CIResult(status=CIStatus.PENDING)
        assert filter_e2e_failures(result, "e2e") is result


class TestCheckCI:
    @pytest.mark.asyncio
    async def test_single_check(self):
        clock = FakeClock()
        gh = ScriptedGh(FAILED)
        result = await make_checker(gh, clock).check_ci(42)
        assert result.failed_jobs == ["build"]
        assert gh.calls == [("pr_checks", 42)]
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_retries_command_timeouts_with_backoff(self):
        clock = FakeClock()
        gh = ScriptedGh(timeout_error(), PASSING_CHECKS)
        result = await make_checker(gh, clock).check_ci(42)
        assert result.passed is True
        assert clock.sleeps == [5.0]

    @pytest.mark.asyncio
    async def test_exhausted_after_three_attempts(self):
        clock = FakeClock()
        gh = ScriptedGh(timeout_error())
        with pytest.raises(CITimeoutExhaustedError) as exc_info:
            await make_checker(gh, clock).check_ci(42)
        assert exc_info.value.attempts == 3
        assert clock.sleeps == [5.0, 10.0]

    @pytest.mark.asyncio
    async def test_backoff_never_passes_deadline(self):
        clock = FakeClock()
        gh = ScriptedGh(timeout_error())
        with pytest.raises(CITimeoutExhaustedError):
            await make_checker(gh, clock).check_ci(42, deadline=clock.monotonic() + 3)
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        clock = FakeClock()
        gh = ScriptedGh(NoPullRequestError("no PR"))
        with pytest.raises(NoPullRequestError):
            await make_checker(gh, clock).check_ci()
        assert len(gh.calls) == 1


class TestWaitForCI:
    @pytest.mark.asyncio
    async def test_terminal_on_first_check(self):
        clock = FakeClock()
        events = []
        result = await make_checker(ScriptedGh(PASSING_CHECKS), clock).wait_for_ci_with_progress(
            42, 1800, on_progress=events.append,
        )
        assert result.passed is True
        assert clock.sleeps == []
        assert [e.type for e in events] == ["checking", "status"]
        assert events[1].jobs_passed == 2

    @pytest.mark.asyncio
    async def test_initial_delay_then_poll(self):
        clock = FakeClock()
        events = []
        result = await make_checker(ScriptedGh(PENDING, PASSING_CHECKS), clock).wait_for_ci_with_progress(
            42, 1800, on_progress=events.append,
        )
        assert result.passed is True
        assert clock.sleeps == [5.0] * 12 + [30.0]
        types = [e.type for e in events]
        assert types == ["checking", "status"] + ["waiting"] * 12 + ["checking", "status"]
        assert events[1].jobs_pending == 1

    @pytest.mark.asyncio
    async def test_times_out(self):
        clock = FakeClock()
        with pytest.raises(CIWaitTimeoutError):
            await make_checker(ScriptedGh(PENDING), clock).wait_for_ci_with_progress(42, 100)
        assert clock.monotonic() == 100
        assert sum(clock.sleeps) == 100

    @pytest.mark.asyncio
    async def test_command_timeouts_emit_retry_and_continue(self):
        clock = FakeClock()
        events = []
        gh = ScriptedGh(PENDING, timeout_error(), timeout_error(), timeout_error(), PASSING_CHECKS)
        result = await make_checker(gh, clock, initial_delay=0).wait_for_ci_with_progress(
            42, 1800, on_progress=events.append,
        )
        assert result.passed is True
        retries = [e for e in events if e.type == "retry"]
        assert len(retries) == 1
        assert retries[0].retry_attempt == 1

    @pytest.mark.asyncio
    async def test_skip_e2e_filters_final_result(self):
        clock = FakeClock()
        output = checks_json(check("build", "SUCCESS", 10), check("e2e-tests", "FAILURE", 300))
        result = await make_checker(ScriptedGh(output), clock).wait_for_ci_with_progress(
            42, 1800, CheckCIOptions(skip_e2e=True),
        )
        assert result.passed is True

    @pytest.mark.asyncio
    async def test_no_immediate_check_waits_initial_delay_first(self):
        clock = FakeClock()
        events = []
        gh = ScriptedGh(FAILED)
        result = await make_checker(gh, clock).wait_for_ci_with_progress(
            42, 1800, CheckCIOptions(immediate_check=False), on_progress=events.append,
        )
        assert result.status == CIStatus.FAILURE
        assert clock.sleeps == [5.0] * 12 + [30.0]
        assert [e.type for e in events] == ["waiting"] * 12 + ["checking", "status"]
        assert gh.calls == [("pr_checks", 42)]

    @pytest.mark.asyncio
    async def test_wait_for_ci_without_progress(self):
        clock = FakeClock()
        result = await make_checker(ScriptedGh(FAILED), clock).wait_for_ci(7, 60)
        assert result.status == CIStatus.FAILURE
