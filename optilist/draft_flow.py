"""
eBay draft listing page automation.
Handles: Upload Images → SKU → Price → Item Specifics / Description
"""

import os
from dataclasses import dataclass
from typing import Optional

from playwright.async_api import Page

from optilist.browser import BrowserManager
from optilist.errors import StorageMiss, VerificationFailed
from optilist.events import EventBroker, EventType, ListerState
from optilist.executor import ExecutorTimings, MultiStrategyExecutor
from optilist.handoff_store import KEY_IMAGES, KEY_TITLE, HandoffStore
from optilist.image_upload import ImageUploadPipeline, UploadPhase, UploadTimings, collect_images
from optilist.item_specifics import CLICK_AI_DESCRIPTION, FillerTimings, ItemSpecificsFiller
from optilist.models import AutomationRun, ListingDraft, RunStatus
from optilist.resolver import POLL_INTERVAL_SECONDS, Css, ElementResolver, LabelFor
from optilist.steps import RunResult, Step, StepStateMachine

TIMEOUT_SECONDS_FIELD = float(os.getenv("TIMEOUT_SECONDS_FIELD", "15"))

STEP_UPLOAD_IMAGES = "upload_images"
STEP_FILL_SKU = "fill_sku"
STEP_FILL_PRICE = "fill_price"
STEP_FILL_SPECIFICS = "fill_item_specifics"

SELECTORS = {
    "sku": [
        Css('input[name="customLabel"][type="text"]'),
        Css('input[name="customLabel"]'),
        Css('input[name="sku"]'),
        Css('input[aria-label*="Custom label"]'),
        Css('input[placeholder*="Custom label"]'),
        Css('input[data-test-id="sku"]'),
        LabelFor(["custom label", "sku"]),
    ],
    "price": [
        Css('input[name="price"]'),
        Css('input[data-test-id="price"]'),
        Css('input[id*="@PRICE"]'),
        Css('input[aria-label*="Price"]'),
        Css('input[placeholder*="Price"]'),
        LabelFor(["price"]),
    ],
}


@dataclass
class DraftTimings:
    field: float = TIMEOUT_SECONDS_FIELD
    poll: float = POLL_INTERVAL_SECONDS


class DraftFlow:
    """
    Step machine for the draft listing page. Every step is best-effort: a
    missing SKU box should not stop the images from going up.
    """

    def __init__(
        self,
        page: Page,
        store: HandoffStore,
        events: EventBroker,
        timings: Optional[DraftTimings] = None,
        executor_timings: Optional[ExecutorTimings] = None,
        upload_timings: Optional[UploadTimings] = None,
        filler_timings: Optional[FillerTimings] = None,
        click_ai_description: bool = CLICK_AI_DESCRIPTION,
        browser: Optional[BrowserManager] = None
    ):
        self.page = page
        self.store = store
        self.events = events
        self.timings = timings or DraftTimings()
        self.browser = browser
        self.resolver = ElementResolver(page, interval=self.timings.poll, timeout=self.timings.field)
        self.executor = MultiStrategyExecutor(events, executor_timings)
        self.uploader = ImageUploadPipeline(page, store, events, upload_timings)
        self.filler = ItemSpecificsFiller(page, events, filler_timings, executor_timings,
                                          click_ai_description=click_ai_description)
        self.draft = ListingDraft()
        self.machine = StepStateMachine([
            Step(STEP_UPLOAD_IMAGES, self._upload_images, self._no_images_left),
            Step(STEP_FILL_SKU, self._fill_sku, self._sku_in_place),
            Step(STEP_FILL_PRICE, self._fill_price, self._price_in_place),
            Step(STEP_FILL_SPECIFICS, self._fill_specifics),
        ], events)

    async def _log_step(self, step: str, message: str, event_type: EventType = EventType.STEP, **details) -> None:
        await self.events.emit(event_type, step, message, url=self.page.url, **details)

    async def run(self) -> RunResult:
        """Entry point for a draft page load."""
        self.draft = self.store.load_draft()
        if not self.draft.has_listing_data:
            await self.events.emit(EventType.WARNING, "draft_no_listing_data", str(StorageMiss(KEY_TITLE)))
            return RunResult(success=False, status=RunStatus.FAILED, message="No listing data in storage")

        await self.events.set_state(ListerState.DRAFT_AUTOMATION, url=self.page.url)
        self.machine.url = self.page.url
        self.executor.url = self.page.url
        await self._log_step("draft_started", "Filling draft listing", **self.draft.summary())

        if self.browser is not None:
            await self.browser.start_tracing()
        run = self.machine.new_run(title=self.draft.title, condition=self.draft.condition)
        try:
            result = await self.machine.execute(run)
        finally:
            self.store.clear_listing_fields()
            if self.browser is not None:
                await self.browser.stop_tracing("draft_complete")

        await self.events.set_state(ListerState.IDLE, url=self.page.url)
        if result.soft_failures and self.browser is not None:
            await self.browser.take_screenshot("draft_soft_failures", page=self.page)
        await self._log_step("draft_completed", "Draft automation finished",
                             soft_failures=result.soft_failures)
        return result

    # ---- images -------------------------------------------------------------

    async def _no_images_left(self, run: AutomationRun) -> bool:
        return not collect_images(self.store.get_value(KEY_IMAGES, []))

    async def _upload_images(self, run: AutomationRun) -> bool:
        result = await self.uploader.upload()
        await self._log_step("upload_result", result.message, EventType.UPLOAD,
                             success=result.success, phase=result.phase.value,
                             expected=result.expected, observed=result.observed,
                             strategies=[a.strategy for a in result.attempts])
        if result.phase is UploadPhase.VERIFY:
            raise VerificationFailed(result.message)
        return result.success

    # ---- text fields --------------------------------------------------------

    async def _field_holds(self, key: str, value: str) -> bool:
        if not value:
            return True
        field = await self.resolver.find_now(SELECTORS[key])
        if field is None:
            return False
        return (await field.input_value()) == value

    async def _fill_field(self, key: str, value: str) -> bool:
        field = await self.resolver.require(SELECTORS[key], f"{key} input")
        outcome = await self.executor.enter_text(field, value, goal=f"{key}_entry")
        if not outcome.success:
            raise VerificationFailed(f"{key} input did not accept the value")
        return True

    async def _sku_in_place(self, run: AutomationRun) -> bool:
        return await self._field_holds("sku", self.draft.sku)

    async def _fill_sku(self, run: AutomationRun) -> bool:
        return await self._fill_field("sku", self.draft.sku)

    async def _price_in_place(self, run: AutomationRun) -> bool:
        return await self._field_holds("price", self.draft.price)

    async def _fill_price(self, run: AutomationRun) -> bool:
        return await self._fill_field("price", self.draft.price)

    # ---- item specifics -----------------------------------------------------

    async def _fill_specifics(self, run: AutomationRun) -> bool:
        report = await self.filler.fill(self.draft.description)
        await self._log_step("item_specifics_report", "Item specifics pass finished",
                             groups_seen=report.groups_seen,
                             suggestions_clicked=report.suggestions_clicked,
                             skipped_filled=report.skipped_filled,
                             apply_all_clicked=report.apply_all_clicked,
                             description_filled=report.description_filled,
                             ai_description_clicked=report.ai_description_clicked)
        return True
