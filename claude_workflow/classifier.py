"""CI failure classification: infrastructure noise vs. code failures vs. persistent patterns."""

from __future__ import annotations

from datetime import timedelta
from enum import Enum

from pydantic import BaseModel, Field

from .checks import CIJobDetail, CIResult, parse_check_records

# Cancelled this fast: superseded run or runner blip
INFRASTRUCTURE_DURATION_THRESHOLD = timedelta(seconds=30)
# Cancelled after this long: timeout, hang, or resource exhaustion
TIMEOUT_DURATION_THRESHOLD = timedelta(minutes=5)
DEFAULT_PERSISTENT_FAILURE_THRESHOLD = 3

TIMEOUT_KEYWORDS = ("test", "build", "lint", "check", "e2e", "integration")


class CIFailureCategory(str, Enum):
    INFRASTRUCTURE = "infrastructure"
    CODE_RELATED = "code_related"
    MIXED = "mixed"
    PERSISTENT = "persistent"


RECOMMENDED_ACTIONS: dict[CIFailureCategory, str] = {
    CIFailureCategory.INFRASTRUCTURE: "Auto-retry CI - no code changes needed",
    CIFailureCategory.CODE_RELATED: "Analyze failures and fix code issues",
    CIFailureCategory.MIXED: "Fix code issues first, then retry for infrastructure issues",
    CIFailureCategory.PERSISTENT: (
        "Stop retrying - same failure pattern has occurred multiple times. "
        "Manual investigation required."
    ),
}


class CIFailureReason(BaseModel):
    job: str
    category: CIFailureCategory
    conclusion: str
    duration: timedelta | None = None
    explanation: str


class ClassifiedCIResult(BaseModel):
    result: CIResult
    reasons: list[CIFailureReason] = Field(default_factory=list)
    job_details: list[CIJobDetail] = Field(default_factory=list)
    category: CIFailureCategory
    recommended_action: str


class CIFailureHistory:
    """Failure patterns seen so far for one workflow/PR, oldest first.

    A pattern is the sorted set of failed and cancelled job names.
    """

    def __init__(self) -> None:
        self.patterns: list[tuple[str, ...]] = []

    @staticmethod
    def pattern_of(result: CIResult) -> tuple[str, ...]:
        return tuple(
            [f"failed:{job}" for job in sorted(result.failed_jobs)]
            + [f"cancelled:{job}" for job in sorted(result.cancelled_jobs)]
        )

    def record(self, result: CIResult) -> None:
        self.patterns.append(self.pattern_of(result))

    def is_persistent_failure(self, threshold: int = DEFAULT_PERSISTENT_FAILURE_THRESHOLD) -> bool:
        """True when the last ``threshold`` recorded patterns are identical."""
        if threshold <= 0 or len(self.patterns) < threshold:
            return False
        recent = self.patterns[-threshold:]
        return bool(recent[0]) and all(p == recent[0] for p in recent)

    def clear(self) -> None:
        self.patterns.clear()

    def __len__(self) -> int:
        return len(self.patterns)


def job_name_suggests_timeout(name: str) -> bool:
    lowered = name.lower()
    return any(keyword in lowered for keyword in TIMEOUT_KEYWORDS)


class CIFailureClassifier:
    def __init__(self, persistent_threshold: int = DEFAULT_PERSISTENT_FAILURE_THRESHOLD):
        self.persistent_threshold = persistent_threshold

    def classify_result(
        self, result: CIResult, history: CIFailureHistory | None = None,
    ) -> ClassifiedCIResult:
        details = parse_check_records(result.output)
        by_name = {d.name: d for d in details}
        reasons: list[CIFailureReason] = []
        infra = code = 0

        # Failures always need a code fix
        for job in result.failed_jobs:
            detail = by_name.get(job)
            reasons.append(CIFailureReason(
                job=job,
                category=CIFailureCategory.CODE_RELATED,
                conclusion=detail.state if detail and detail.state else "FAILURE",
                duration=detail.duration if detail else None,
                explanation="Job failed with errors - requires code fix",
            ))
            code += 1

        for job in result.cancelled_jobs:
            detail = by_name.get(job)
            reason = self.classify_cancelled_job(job, detail.duration if detail else None)
            reasons.append(reason)
            if reason.category == CIFailureCategory.INFRASTRUCTURE:
                infra += 1
            else:
                code += 1

        category = self._overall_category(infra, code, history)
        return ClassifiedCIResult(
            result=result,
            reasons=reasons,
            job_details=details,
            category=category,
            recommended_action=RECOMMENDED_ACTIONS[category],
        )

    def classify_cancelled_job(self, name: str, duration: timedelta | None) -> CIFailureReason:
        """Guess why a job was cancelled from how long it ran and what it is called."""
        if duration is None:
            return CIFailureReason(
                job=name,
                category=CIFailureCategory.INFRASTRUCTURE,
                conclusion="CANCELLED",
                explanation=(
                    "Job was cancelled (no timing data available - "
                    "assuming infrastructure issue)"
                ),
            )

        if timedelta(0) < duration < INFRASTRUCTURE_DURATION_THRESHOLD:
            category = CIFailureCategory.INFRASTRUCTURE
            explanation = (
                "Job cancelled within 30 seconds of start - "
                "likely workflow superseded or runner issue"
            )
        elif duration >= TIMEOUT_DURATION_THRESHOLD:
            category = CIFailureCategory.CODE_RELATED
            explanation = (
                "Job ran for extended period before cancellation - "
                "likely timeout, infinite loop, or resource exhaustion"
            )
        elif job_name_suggests_timeout(name):
            category = CIFailureCategory.CODE_RELATED
            explanation = "Job name suggests test/build that may have timed out"
        else:
            category = CIFailureCategory.INFRASTRUCTURE
            explanation = (
                "Job was cancelled - likely infrastructure issue "
                "(workflow concurrency, manual cancellation)"
            )

        return CIFailureReason(
            job=name,
            category=category,
            conclusion="CANCELLED",
            duration=duration,
            explanation=explanation,
        )

    def _overall_category(
        self, infra: int, code: int, history: CIFailureHistory | None,
    ) -> CIFailureCategory:
        if history is not None and history.is_persistent_failure(self.persistent_threshold):
            return CIFailureCategory.PERSISTENT
        if infra and code:
            return CIFailureCategory.MIXED
        if infra:
            return CIFailureCategory.INFRASTRUCTURE
        return CIFailureCategory.CODE_RELATED
