"""
Playwright browser lifecycle management with persistent profile support.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from playwright.async_api import async_playwright, BrowserContext, Page, Playwright

from optilist.events import EventBroker, EventType

DATA_DIR = Path(os.getenv("DATA_DIR", "/data"))
HEADLESS = os.getenv("HEADLESS", "false").lower() in ("1", "true", "yes")
TIMEOUT_MS_PAGE_LOAD = int(os.getenv("TIMEOUT_MS_PAGE_LOAD", "30000"))
TRACE_FLOWS = os.getenv("TRACE_FLOWS", "false").lower() in ("1", "true", "yes")


class BrowserManager:
    """Owns the persistent Chromium profile and the tabs opened by the control API."""

    def __init__(
        self,
        events: EventBroker,
        data_dir: Optional[Path] = None,
        headless: bool = HEADLESS,
        trace_flows: bool = TRACE_FLOWS
    ):
        data_dir = Path(data_dir) if data_dir is not None else DATA_DIR
        self.profile_dir = data_dir / "profile"
        self.artifacts_dir = data_dir / "artifacts"
        self.events = events
        self.headless = headless
        self.trace_flows = trace_flows
        self._tracing = False
        self._playwright: Optional[Playwright] = None
        self._context: Optional[BrowserContext] = None
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def pages(self) -> List[Page]:
        if self._context is None:
            return []
        return [p for p in self._context.pages if not p.is_closed()]

    async def initialize(self) -> BrowserContext:
        """Start Playwright and launch Chromium with the persistent profile."""
        await self.events.emit(EventType.STEP, "browser_init", "Initializing Playwright browser")

        self.profile_dir.mkdir(parents=True, exist_ok=True)
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)

        self._playwright = await async_playwright().start()

        # Basic fingerprint reduction to appear as normal Chrome
        self._context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir=str(self.profile_dir),
            headless=self.headless,
            args=[
                "--no-sandbox",
                "--disable-setuid-sandbox",
                "--disable-dev-shm-usage",
                "--window-size=1600,1000",
                "--disable-blink-features=AutomationControlled",
                "--disable-infobars",
                "--no-first-run",
                "--no-default-browser-check",
            ],
            viewport={"width": 1600, "height": 1000},
            ignore_https_errors=True,
        )

        # Remove navigator.webdriver flag
        await self._context.add_init_script("""
            Object.defineProperty(navigator, 'webdriver', {
                get: () => undefined
            });
        """)

        self._is_running = True
        await self.events.emit(EventType.STEP, "browser_ready", "Browser initialized successfully")
        return self._context

    async def open_tab(self, url: str) -> Page:
        """Open `url` in a new tab. Page-load handlers pick it up from there."""
        if self._context is None:
            raise RuntimeError("Browser is not running")
        page = await self._context.new_page()
        await self.events.emit(EventType.STEP, "tab_opened", f"Opening {url}", url=url)
        await page.goto(url, wait_until="domcontentloaded", timeout=TIMEOUT_MS_PAGE_LOAD)
        return page

    async def take_screenshot(self, stage: str, page: Optional[Page] = None) -> str:
        """Screenshot `page` (or the most recent open tab) into the artifacts directory."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filepath = self.artifacts_dir / f"{timestamp}_{stage}.png"

        if page is None:
            open_pages = self.pages
            page = open_pages[-1] if open_pages else None
        if page is None or page.is_closed():
            return ""

        try:
            await page.screenshot(path=str(filepath), full_page=False)
        except Exception as e:
            await self.events.emit(EventType.WARNING, "screenshot_failed", str(e), stage=stage)
            return ""

        await self.events.emit(EventType.SCREENSHOT, "screenshot_saved", url=page.url,
                               path=str(filepath), stage=stage)
        return str(filepath)

    async def start_tracing(self) -> None:
        """Start tracing for debugging when TRACE_FLOWS is on."""
        if not self.trace_flows or self._tracing or not self._context:
            return
        try:
            await self._context.tracing.start(screenshots=True, snapshots=True, sources=True)
            self._tracing = True
        except Exception as e:
            # Tracing might already be started by another tab's flow
            await self.events.emit(EventType.WARNING, "tracing_not_started", str(e))

    async def stop_tracing(self, stage: str) -> str:
        """Stop tracing and save the trace zip to the artifacts directory."""
        if not self._tracing or not self._context:
            return ""
        self._tracing = False
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filepath = self.artifacts_dir / f"{timestamp}_{stage}.zip"
        try:
            await self._context.tracing.stop(path=str(filepath))
        except Exception as e:
            await self.events.emit(EventType.WARNING, "tracing_not_saved", str(e))
            return ""
        return str(filepath)

    async def shutdown(self) -> None:
        """Gracefully shutdown browser and Playwright."""
        self._is_running = False
        await self.events.emit(EventType.STEP, "browser_shutdown", "Shutting down browser")

        if self._context:
            try:
                await self._context.close()
            except Exception as e:
                await self.events.emit(EventType.WARNING, "browser_close_failed", str(e))
            self._context = None

        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                await self.events.emit(EventType.WARNING, "playwright_stop_failed", str(e))
            self._playwright = None
