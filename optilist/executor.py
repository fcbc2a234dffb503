"""
Multi-strategy interaction executor.

A goal (click this, type that, upload these) is tried with an ordered list of
techniques. A technique only counts once its effect is observed on the page;
not raising is not enough.
"""

import asyncio
import os
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from playwright.async_api import Locator

from optilist.events import EventBroker, EventType
from optilist.models import UploadAttempt
from optilist.resolver import POLL_INTERVAL_SECONDS, wait_until


WAIT_SECONDS_SETTLE = float(os.getenv("WAIT_SECONDS_SETTLE", "0.5"))
TIMEOUT_SECONDS_VERIFY = float(os.getenv("TIMEOUT_SECONDS_VERIFY", "3.0"))
TIMEOUT_SECONDS_GOAL_BUDGET = float(os.getenv("TIMEOUT_SECONDS_GOAL_BUDGET", "20.0"))
TYPING_DELAY_RANGE = (0.02, 0.04)

# Scripts evaluated against the target element
DOM_CLICK_SCRIPT = "el => el.click()"
FORM_SUBMIT_SCRIPT = """el => {
    const isSubmit = el.type === 'submit' || el.tagName === 'BUTTON';
    const form = el.form || el.closest('form');
    if (!isSubmit || !form) return false;
    if (form.requestSubmit) { form.requestSubmit(); } else { form.submit(); }
    return true;
}"""

Strategy = Tuple[str, Callable[[], Awaitable[Optional[bool]]]]
Verifier = Callable[[], Awaitable[bool]]


@dataclass
class ExecutorTimings:
    settle: float = WAIT_SECONDS_SETTLE
    verify: float = TIMEOUT_SECONDS_VERIFY
    budget: float = TIMEOUT_SECONDS_GOAL_BUDGET
    poll: float = POLL_INTERVAL_SECONDS
    typing_delay: Tuple[float, float] = TYPING_DELAY_RANGE


@dataclass
class GoalOutcome:
    """What happened when a goal was attempted."""
    goal: str
    success: bool
    attempts: List[UploadAttempt] = field(default_factory=list)

    @property
    def strategy(self) -> Optional[str]:
        for attempt in self.attempts:
            if attempt.succeeded:
                return attempt.strategy
        return None

    @property
    def tried(self) -> List[str]:
        return [a.strategy for a in self.attempts]


class MultiStrategyExecutor:
    """Runs interaction strategies in priority order until one is observed to work."""

    def __init__(self, events: EventBroker, timings: Optional[ExecutorTimings] = None, url: str = ""):
        self.events = events
        self.timings = timings or ExecutorTimings()
        self.url = url

    async def run_strategies(
        self,
        goal: str,
        strategies: Sequence[Strategy],
        verify: Optional[Verifier] = None,
        settle: Optional[float] = None
    ) -> GoalOutcome:
        """
        Try each strategy in order under one shared deadline.

        A strategy fails if it raises, returns False, or its effect is not
        observed by `verify` before the window closes. Without a verifier the
        first strategy that runs cleanly wins.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timings.budget
        settle_delay = self.timings.settle if settle is None else settle
        outcome = GoalOutcome(goal=goal, success=False)

        for name, attempt in strategies:
            remaining = deadline - loop.time()
            if remaining <= 0:
                await self.events.emit(
                    EventType.WARNING, f"{goal}_budget_exhausted",
                    f"Strategy budget exhausted before '{name}'", url=self.url
                )
                break

            try:
                applied = await attempt()
            except Exception as e:
                outcome.attempts.append(UploadAttempt(strategy=name, succeeded=False, error=str(e)))
                await self.events.emit(
                    EventType.STEP, f"{goal}_strategy_error",
                    f"Strategy '{name}' raised", url=self.url, strategy=name, error=str(e)
                )
                continue

            if applied is False:
                outcome.attempts.append(UploadAttempt(strategy=name, succeeded=False, error="not applicable"))
                continue

            if settle_delay > 0:
                await asyncio.sleep(min(settle_delay, max(deadline - loop.time(), 0)))

            observed = True
            if verify is not None:
                window = min(self.timings.verify, max(deadline - loop.time(), 0))
                observed = bool(await wait_until(verify, window, self.timings.poll))

            outcome.attempts.append(UploadAttempt(
                strategy=name,
                succeeded=observed,
                error="" if observed else "effect not observed"
            ))

            if observed:
                outcome.success = True
                await self.events.emit(
                    EventType.STEP, f"{goal}_succeeded",
                    f"'{goal}' succeeded with strategy '{name}'", url=self.url,
                    strategy=name, attempts=len(outcome.attempts)
                )
                return outcome

        await self.events.emit(
            EventType.WARNING, f"{goal}_failed",
            f"All strategies failed for '{goal}'", url=self.url,
            tried=outcome.tried
        )
        return outcome

    async def click(
        self,
        target: Locator,
        verify: Optional[Verifier] = None,
        goal: str = "click"
    ) -> GoalOutcome:
        """Click `target`: native click, focus+click, mouse event sequence, form submit."""

        async def direct_click():
            await target.click(timeout=2000)

        async def focus_click():
            await target.focus()
            await target.evaluate(DOM_CLICK_SCRIPT)

        async def mouse_sequence():
            for event_type in ("mousedown", "mouseup", "click"):
                await target.dispatch_event(event_type)

        async def form_submit():
            return bool(await target.evaluate(FORM_SUBMIT_SCRIPT))

        return await self.run_strategies(goal, [
            ("direct_click", direct_click),
            ("focus_click", focus_click),
            ("mouse_sequence", mouse_sequence),
            ("form_submit", form_submit),
        ], verify=verify)

    async def enter_text(self, target: Locator, text: str, goal: str = "enter_text") -> GoalOutcome:
        """Set an input's value: instant paste first, simulated typing second."""

        async def value_matches():
            return (await target.input_value()) == text

        async def paste():
            await target.fill("")
            await target.fill(text)
            await target.dispatch_event("change")

        async def typing():
            await target.fill("")
            await target.focus()
            low, high = self.timings.typing_delay
            for char in text:
                await target.press_sequentially(char)
                await asyncio.sleep(random.uniform(low, high))
            await target.dispatch_event("change")

        return await self.run_strategies(goal, [
            ("paste", paste),
            ("typing", typing),
        ], verify=value_matches)
