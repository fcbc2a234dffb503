"""
eBay prelist page automation.
Handles: Enter Title → Go → Continue Without Match → Pick Condition → Continue To Listing
"""

import asyncio
import os
from dataclasses import dataclass, replace
from typing import Optional

from playwright.async_api import Locator, Page

from optilist.browser import BrowserManager
from optilist.errors import ElementNotFound, StorageMiss, VerificationFailed
from optilist.events import EventBroker, EventType, ListerState
from optilist.executor import ExecutorTimings, MultiStrategyExecutor
from optilist.handoff_store import KEY_CONDITION, KEY_TITLE, HandoffStore
from optilist.models import AutomationRun, ConditionCode, RunStatus, condition_labels
from optilist.resolver import (
    POLL_INTERVAL_SECONDS,
    TIMEOUT_SECONDS_ELEMENT,
    Css,
    ElementResolver,
    LabelFor,
    TextMatch,
    wait_until,
)
from optilist.steps import RunResult, Step, StepStateMachine

# =============================================================================
# CONFIGURABLE TIMING PARAMETERS (via environment variables)
# =============================================================================

TIMEOUT_SECONDS_PAGE_READY = float(os.getenv("TIMEOUT_SECONDS_PAGE_READY", "15"))
TIMEOUT_SECONDS_PAGE_ADVANCE = float(os.getenv("TIMEOUT_SECONDS_PAGE_ADVANCE", "10"))
TIMEOUT_SECONDS_DIALOG = float(os.getenv("TIMEOUT_SECONDS_DIALOG", "5"))
DELAY_SECONDS_RETRY = float(os.getenv("DELAY_SECONDS_RETRY", "0.5"))
GO_BUTTON_ATTEMPTS = int(os.getenv("GO_BUTTON_ATTEMPTS", "3"))

PRELIST_PATH = "/sl/prelist"

STEP_FILL_TITLE = "fill_title"
STEP_DISMISS_MATCH = "dismiss_match_dialog"
STEP_SELECT_CONDITION = "select_condition"


@dataclass
class FlowTimings:
    page_ready: float = TIMEOUT_SECONDS_PAGE_READY
    element: float = TIMEOUT_SECONDS_ELEMENT
    advance: float = TIMEOUT_SECONDS_PAGE_ADVANCE
    dialog: float = TIMEOUT_SECONDS_DIALOG
    retry_delay: float = DELAY_SECONDS_RETRY
    go_attempts: int = GO_BUTTON_ATTEMPTS
    poll: float = POLL_INTERVAL_SECONDS


# Selectors for the eBay prelist pages (may need updates as eBay changes)
SELECTORS = {
    "title_input": [
        Css('input[name*="title"]'),
        Css('input[placeholder*="title"]'),
        Css('input[id*="title"]'),
        Css('.keyword-suggestion input[type="text"]'),
    ],
    "go_button": [
        Css("button.keyword-suggestion__label-btn"),
        Css('button[type="submit"]'),
        Css('input[type="submit"]'),
        Css('[data-testid*="go"]'),
        Css('[data-testid*="submit"]'),
        Css(".btn-submit"),
        Css('button[class*="search"]'),
        TextMatch(["go", "search"], selector='button, input[type="submit"], a[role="button"]', exact=True),
    ],
    "match_continue": [
        TextMatch(["continue without match", "without match"], selector="button, a"),
    ],
    "lightbox": [
        Css(".lightbox-dialog__window"),
        Css('[class*="lightbox-dialog"]'),
        Css('[role="dialog"]'),
        Css(".modal"),
        Css('[class*="modal"]'),
    ],
    "continue_to_listing": [
        TextMatch(["continue to listing"], selector="button, a"),
        Css('[data-testid*="continue"]'),
        Css(".btn-continue"),
        Css(".continue-btn"),
        Css('button[class*="continue"]'),
    ],
}


def condition_radio_strategies(code: ConditionCode):
    """Direct value selectors first, then label text."""
    value = str(int(code))
    return [
        Css(f'input[type="radio"][value="{value}"]'),
        Css(f'input[type="radio"][name*="condition"][value="{value}"]'),
        Css(f'input[type="radio"][id*="condition"][value="{value}"]'),
        Css(f'input[type="radio"][data-value="{value}"]'),
        LabelFor(condition_labels(code)),
    ]


class PrelistFlow:
    """
    Step machine for the intermediate eBay page.

    Flow:
    1. Fill the title search box and press Go (required)
    2. Dismiss the "continue without match" prompt if it shows up
    3. Pick the stored condition in the lightbox and continue to the listing
    """

    def __init__(
        self,
        page: Page,
        store: HandoffStore,
        events: EventBroker,
        timings: Optional[FlowTimings] = None,
        executor_timings: Optional[ExecutorTimings] = None,
        browser: Optional[BrowserManager] = None
    ):
        self.page = page
        self.store = store
        self.events = events
        self.timings = timings or FlowTimings()
        self.browser = browser
        self.resolver = ElementResolver(page, interval=self.timings.poll, timeout=self.timings.element)
        self.executor = MultiStrategyExecutor(events, executor_timings)
        # Go triggers a page transition, so its click gets the longer verify window
        self.go_executor = MultiStrategyExecutor(events, replace(self.executor.timings, verify=self.timings.advance))
        self.machine = StepStateMachine([
            Step(STEP_FILL_TITLE, self._fill_title, self._title_satisfied, fatal=True),
            Step(STEP_DISMISS_MATCH, self._dismiss_match, self._match_satisfied),
            Step(STEP_SELECT_CONDITION, self._select_condition, self._left_prelist),
        ], events)

    async def _log_step(self, step: str, message: str, event_type: EventType = EventType.STEP, **details) -> None:
        await self.events.emit(event_type, step, message, url=self.page.url, **details)

    async def _left_prelist(self, run: AutomationRun = None) -> bool:
        return PRELIST_PATH not in self.page.url

    async def _page_ready(self) -> bool:
        if await self._left_prelist():
            return True
        for key in ("title_input", "go_button", "match_continue", "lightbox"):
            if await self.resolver.exists(SELECTORS[key]):
                return True
        return False

    async def run(self) -> RunResult:
        """Entry point for a prelist page load."""
        try:
            title = str(self.store.require(KEY_TITLE)).strip()
            if not title:
                raise StorageMiss(KEY_TITLE)
        except StorageMiss as e:
            await self.events.emit(EventType.WARNING, "prelist_no_title", str(e))
            return RunResult(success=False, status=RunStatus.FAILED, message="No title in storage")

        condition = ConditionCode.parse(self.store.get_value(KEY_CONDITION))
        await self.events.set_state(ListerState.PRELIST_AUTOMATION, url=self.page.url)
        self.machine.url = self.page.url
        self.executor.url = self.page.url
        self.go_executor.url = self.page.url
        await self._log_step("prelist_started", f"Listing '{title}' as {condition.name}",
                             title=title, condition=int(condition))

        if not await wait_until(self._page_ready, self.timings.page_ready, self.timings.poll):
            await self._log_step("prelist_not_ready", "Prelist page never rendered a known control",
                                 EventType.WARNING)

        if self.browser is not None:
            await self.browser.start_tracing()
        try:
            run = self.machine.new_run(title=title, condition=condition)
            result = await self.machine.execute(run)

            if result.success:
                await self.events.set_state(ListerState.IDLE, url=self.page.url)
                await self._log_step("prelist_completed", "Prelist automation finished",
                                     soft_failures=result.soft_failures)
            else:
                await self.events.set_state(ListerState.ERROR, url=self.page.url)
                await self._handle_error(result.failed_step or "prelist", result.message)
            return result
        finally:
            if self.browser is not None:
                await self.browser.stop_tracing("prelist_complete")

    async def _handle_error(self, stage: str, error: str) -> None:
        """Capture a screenshot of the failing page when a browser manager is attached."""
        screenshot_path = None
        if self.browser is not None:
            screenshot_path = await self.browser.take_screenshot(f"prelist_{stage}", page=self.page)
            await self.browser.stop_tracing(f"prelist_{stage}")
        await self._log_step(f"prelist_{stage}_error", error, EventType.ERROR, screenshot=screenshot_path)

    # ---- step 1: title ------------------------------------------------------

    async def _title_satisfied(self, run: AutomationRun) -> bool:
        if await self._left_prelist():
            return True
        has_input = await self.resolver.exists(SELECTORS["title_input"])
        has_go = await self.resolver.exists(SELECTORS["go_button"])
        return not has_input and not has_go

    async def _find_go_button(self) -> Optional[Locator]:
        for attempt in range(1, self.timings.go_attempts + 1):
            button = await self.resolver.find(SELECTORS["go_button"], timeout=self.timings.element)
            if button is not None:
                return button
            await self._log_step("go_button_retry", f"Go button not found (attempt {attempt})",
                                 attempt=attempt)
            await asyncio.sleep(self.timings.retry_delay)
        return None

    async def _fill_title(self, run: AutomationRun) -> bool:
        title_input = await self.resolver.require(SELECTORS["title_input"], "Title input")
        entered = await self.executor.enter_text(title_input, run.title, goal="title_entry")
        if not entered.success:
            raise VerificationFailed(f"Title text did not stick (tried {', '.join(entered.tried)})")

        button = await self._find_go_button()
        if button is None:
            raise ElementNotFound("Go button", self.timings.element)

        start_url = self.page.url

        async def advanced() -> bool:
            if self.page.url != start_url:
                return True
            if await self.resolver.exists(SELECTORS["match_continue"]):
                return True
            if await self.resolver.exists(SELECTORS["lightbox"]):
                return True
            return not await self.resolver.exists(SELECTORS["title_input"])

        clicked = await self.go_executor.click(button, verify=advanced, goal="go_button")
        if not clicked.success:
            raise VerificationFailed("Go button click did not advance the page")
        return True

    # ---- step 2: continue without match -------------------------------------

    async def _match_satisfied(self, run: AutomationRun) -> bool:
        if await self._left_prelist():
            return True
        return await self.resolver.find(SELECTORS["match_continue"], timeout=self.timings.dialog) is None

    async def _dismiss_match(self, run: AutomationRun) -> bool:
        # The satisfied check already waited for the prompt to appear
        button = await self.resolver.find_now(SELECTORS["match_continue"])
        if button is None:
            await self._log_step("match_dialog_absent", "No match prompt; nothing to dismiss")
            return True

        async def dismissed() -> bool:
            return await self.resolver.find_now(SELECTORS["match_continue"]) is None

        clicked = await self.executor.click(button, verify=dismissed, goal="continue_without_match")
        return clicked.success

    # ---- step 3: condition --------------------------------------------------

    async def _find_condition_radio(self, code: ConditionCode, lightbox: Optional[Locator]) -> Optional[Locator]:
        radio = await self.resolver.find(condition_radio_strategies(code), timeout=self.timings.element,
                                         interactable=False)
        if radio is None and lightbox is not None:
            radio = await self.resolver.find_now(
                Css(f'input[type="radio"][value="{int(code)}"]'), root=lightbox, interactable=False
            )
        return radio

    async def _select_condition(self, run: AutomationRun) -> bool:
        lightbox = await self.resolver.find(SELECTORS["lightbox"], timeout=self.timings.dialog,
                                            interactable=False)
        if lightbox is None:
            await self._log_step("condition_dialog_missing",
                                 "No condition lightbox; selection may not be available",
                                 EventType.WARNING)

        radio = await self._find_condition_radio(run.condition, lightbox)
        if radio is None:
            await self._log_step("condition_radio_missing",
                                 f"No radio button for condition {int(run.condition)}",
                                 EventType.WARNING, condition=int(run.condition))
            return False

        async def checked() -> bool:
            return await radio.is_checked()

        selected = await self.executor.click(radio, verify=checked, goal="condition_radio")
        if not selected.success:
            return False

        button = await self.resolver.find(SELECTORS["continue_to_listing"], timeout=self.timings.dialog)
        if button is not None:
            async def moved_on() -> bool:
                if await self._left_prelist():
                    return True
                return await self.resolver.find_now(SELECTORS["continue_to_listing"]) is None

            await self.executor.click(button, verify=moved_on, goal="continue_to_listing")
        return True
