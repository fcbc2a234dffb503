"""
Item specifics filler for the eBay draft page.

Greedy, single pass: every attribute fieldset captioned "Frequently selected"
or "Suggested" that is still empty gets its first suggestion clicked. Clicks
are not verified; a group that does not take the value is left as is.
"""

import asyncio
import html
import os
from dataclasses import dataclass
from typing import Optional

from playwright.async_api import Locator, Page

from optilist.events import EventBroker, EventType
from optilist.executor import ExecutorTimings, MultiStrategyExecutor
from optilist.resolver import POLL_INTERVAL_SECONDS, Css, ElementResolver, TextMatch

TIMEOUT_SECONDS_APPLY_ALL = float(os.getenv("TIMEOUT_SECONDS_APPLY_ALL", "10"))
TIMEOUT_SECONDS_AI_DESCRIPTION = float(os.getenv("TIMEOUT_SECONDS_AI_DESCRIPTION", "10"))
WAIT_SECONDS_APPLY_ALL = float(os.getenv("WAIT_SECONDS_APPLY_ALL", "2.0"))
WAIT_SECONDS_BETWEEN_GROUPS = float(os.getenv("WAIT_SECONDS_BETWEEN_GROUPS", "1.0"))
CLICK_AI_DESCRIPTION = os.getenv("CLICK_AI_DESCRIPTION", "true").lower() in ("1", "true", "yes")

SUGGESTION_PHRASES = ("frequently selected", "suggested")
PLACEHOLDER_TEXTS = ("–", "Select", "Choose", "", "None", "N/A", "Please select")
PROCESSED_ATTRIBUTE = "data-optilist-processed"

SELECTORS = {
    "fieldset": "fieldset",
    "legend": "legend",
    "dropdown": 'button[name*="attributes"]',
    "text_input": "input, textarea",
    "suggestion": "button.fake-link",
    "apply_all": [TextMatch(["apply all"], selector="button, a", exact=True)],
    "description_frame": ".rte-editor > iframe",
    "ai_description": [
        Css("button.se-rte__ai-description-button.ai-icon.btn"),
        TextMatch(["use ai description"], selector="button"),
    ],
}

MARK_PROCESSED_SCRIPT = f"el => el.setAttribute('{PROCESSED_ATTRIBUTE}', 'true')"
FILL_EDITOR_SCRIPT = "(body, markup) => { body.innerHTML = markup; }"


def format_description_html(text: str) -> str:
    """Blank lines become paragraphs, single newlines become <br>. Text is escaped."""
    paragraphs = text.replace("\r\n", "\n").split("\n\n")
    return "".join(f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in paragraphs)


@dataclass
class FillerTimings:
    apply_all: float = TIMEOUT_SECONDS_APPLY_ALL
    apply_all_settle: float = WAIT_SECONDS_APPLY_ALL
    between_groups: float = WAIT_SECONDS_BETWEEN_GROUPS
    ai_description: float = TIMEOUT_SECONDS_AI_DESCRIPTION
    poll: float = POLL_INTERVAL_SECONDS


@dataclass
class FillReport:
    groups_seen: int = 0
    suggestions_clicked: int = 0
    skipped_filled: int = 0
    apply_all_clicked: bool = False
    description_filled: bool = False
    ai_description_clicked: bool = False


class ItemSpecificsFiller:
    """Accepts eBay's suggested values for empty item specifics."""

    def __init__(
        self,
        page: Page,
        events: EventBroker,
        timings: Optional[FillerTimings] = None,
        executor_timings: Optional[ExecutorTimings] = None,
        click_ai_description: bool = CLICK_AI_DESCRIPTION
    ):
        self.page = page
        self.events = events
        self.timings = timings or FillerTimings()
        self.resolver = ElementResolver(page, interval=self.timings.poll)
        self.executor = MultiStrategyExecutor(events, executor_timings)
        self.click_ai_description = click_ai_description

    async def _log_step(self, step: str, message: str, event_type: EventType = EventType.STEP, **details) -> None:
        await self.events.emit(event_type, step, message, url=self.page.url, **details)

    async def fill(self, description: Optional[str] = None) -> FillReport:
        report = FillReport()
        self.executor.url = self.page.url

        report.apply_all_clicked = await self._apply_all()
        await self._fill_suggestions(report)
        if description:
            report.description_filled = await self._fill_description(description)
        if self.click_ai_description:
            report.ai_description_clicked = await self._click_ai_description()

        await self._log_step("item_specifics_done",
                             f"Clicked {report.suggestions_clicked} suggestions",
                             groups_seen=report.groups_seen,
                             skipped_filled=report.skipped_filled)
        return report

    async def _apply_all(self) -> bool:
        """Click "Apply all" once it is enabled; carry on without it after the timeout."""
        button = await self.resolver.find(SELECTORS["apply_all"], timeout=self.timings.apply_all)
        if button is None:
            await self._log_step("apply_all_unavailable", '"Apply all" never became enabled', EventType.WARNING)
            return False

        outcome = await self.executor.click(button, goal="apply_all")
        if outcome.success:
            await asyncio.sleep(self.timings.apply_all_settle)
        return outcome.success

    async def _caption(self, fieldset: Locator) -> str:
        legends = await Css(SELECTORS["legend"]).candidates(fieldset)
        if not legends:
            return ""
        return (await legends[0].inner_text() or "").strip()

    async def _is_filled(self, fieldset: Locator) -> bool:
        dropdowns = await Css(SELECTORS["dropdown"]).candidates(fieldset)
        if dropdowns:
            text = (await dropdowns[0].inner_text() or "").strip()
            return text not in PLACEHOLDER_TEXTS

        inputs = await Css(SELECTORS["text_input"]).candidates(fieldset)
        if inputs:
            return bool((await inputs[0].input_value() or "").strip())
        return False

    async def _next_suggestion(self, fieldset: Locator) -> Optional[Locator]:
        for button in await Css(SELECTORS["suggestion"]).candidates(fieldset):
            if await button.get_attribute(PROCESSED_ATTRIBUTE) is not None:
                continue
            if await self.resolver.is_interactable(button):
                return button
        return None

    async def _fill_suggestions(self, report: FillReport) -> None:
        for fieldset in await Css(SELECTORS["fieldset"]).candidates(self.page):
            try:
                caption = await self._caption(fieldset)
                if not any(phrase in caption.lower() for phrase in SUGGESTION_PHRASES):
                    continue
                report.groups_seen += 1

                if await self._is_filled(fieldset):
                    report.skipped_filled += 1
                    continue

                button = await self._next_suggestion(fieldset)
                if button is None:
                    continue

                label = (await button.inner_text() or "").strip()
                # Marked first: a clicked chip is replaced by the chosen value and the locator goes stale
                await button.evaluate(MARK_PROCESSED_SCRIPT)
                outcome = await self.executor.click(button, goal="item_suggestion")
                if outcome.success:
                    report.suggestions_clicked += 1
                    await self._log_step("suggestion_clicked", f"{caption} -> {label}")
                    await asyncio.sleep(self.timings.between_groups)
            except Exception as e:
                # Fieldsets re-render while we walk them; skip the group
                await self._log_step("suggestion_group_error", str(e), EventType.WARNING)

    async def _fill_description(self, description: str) -> bool:
        body = self.page.frame_locator(SELECTORS["description_frame"]).locator("body")
        try:
            if await body.count() == 0:
                await self._log_step("description_editor_missing", "Description editor iframe not found",
                                     EventType.WARNING)
                return False
            if (await body.inner_text() or "").strip():
                await self._log_step("description_present", "Description already has text; leaving it")
                return False
            await body.evaluate(FILL_EDITOR_SCRIPT, format_description_html(description))
        except Exception as e:
            await self._log_step("description_error", str(e), EventType.WARNING)
            return False

        await self._log_step("description_filled", "Description filled in editor")
        return True

    async def _click_ai_description(self) -> bool:
        button = await self.resolver.find(SELECTORS["ai_description"], timeout=self.timings.ai_description)
        if button is None:
            await self._log_step("ai_description_unavailable", '"Use AI description" button not found',
                                 EventType.WARNING)
            return False
        outcome = await self.executor.click(button, goal="ai_description")
        return outcome.success
