"""Human-in-the-loop: plan confirmation at the terminal."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel

from .models import Plan
from .plan import format_plan_summary

logger = logging.getLogger("claude_workflow")


class ConfirmationDecision(str, Enum):
    APPROVE = "approve"
    CANCEL = "cancel"
    FEEDBACK = "feedback"


class Confirmation(BaseModel):
    decision: ConfirmationDecision
    feedback: str = ""


class PlanConfirmer(ABC):
    """Asks an operator to approve, reject, or revise a plan."""

    @abstractmethod
    async def confirm(self, plan: Plan) -> Confirmation: ...


class TerminalConfirmer(PlanConfirmer):
    """Prompts on stdin. Waits indefinitely unless ``input_timeout`` is set.

    A timeout counts as cancellation, never as approval.
    """

    def __init__(self, input_timeout: float | None = None):
        self.input_timeout = input_timeout

    async def confirm(self, plan: Plan) -> Confirmation:
        print("\n" + "=" * 60)
        print(format_plan_summary(plan))
        print("=" * 60)

        while True:
            try:
                response = await asyncio.wait_for(
                    _async_input("Approve this plan? (y/n/feedback): "),
                    timeout=self.input_timeout,
                )
            except asyncio.TimeoutError:
                print(f"\n  [TIMEOUT] No response after {self.input_timeout:.0f}s.")
                return Confirmation(decision=ConfirmationDecision.CANCEL)

            confirmation = parse_confirmation(response)
            if confirmation is not None:
                return confirmation


def parse_confirmation(response: str) -> Confirmation | None:
    """``y`` approves, ``n`` cancels, other text is feedback, blank asks again."""
    response = response.strip()
    if not response:
        return None
    lowered = response.lower()
    if lowered in ("y", "yes"):
        return Confirmation(decision=ConfirmationDecision.APPROVE)
    if lowered in ("n", "no"):
        return Confirmation(decision=ConfirmationDecision.CANCEL)
    return Confirmation(decision=ConfirmationDecision.FEEDBACK, feedback=response)


async def _async_input(prompt: str) -> str:
    """Non-blocking input that works with asyncio."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: input(prompt))
