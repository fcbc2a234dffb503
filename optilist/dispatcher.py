"""
Page classification and page-load dispatch.

Every main-frame navigation in the browser context is classified into one of a
closed set of page types and handed to that type's handler as its own task.
"""

import asyncio
import re
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from playwright.async_api import BrowserContext, Frame, Page

from optilist.events import EventBroker, EventType


class PageType(str, Enum):
    SOURCE = "source"
    INTERMEDIATE = "intermediate"
    DESTINATION = "destination"
    UNKNOWN = "unknown"


PageHandler = Callable[[Page], Awaitable[Any]]

_AMAZON_HOST = re.compile(r"(^|\.)amazon\.[a-z.]+$")


def _is_ebay(host: str) -> bool:
    return host == "ebay.com" or host.endswith(".ebay.com")


def classify_page(url: str) -> PageType:
    """Amazon pages are sources; eBay prelist is intermediate; an AddItem draft is the destination."""
    try:
        parsed = urlparse(url or "")
    except ValueError:
        return PageType.UNKNOWN
    host = (parsed.hostname or "").lower()

    if _AMAZON_HOST.search(host):
        return PageType.SOURCE

    if _is_ebay(host):
        if parsed.path.startswith("/sl/prelist"):
            return PageType.INTERMEDIATE
        if parsed.path.startswith("/lstng"):
            params = parse_qs(parsed.query)
            if params.get("draftId", [""])[0] and params.get("mode", [""])[0] == "AddItem":
                return PageType.DESTINATION

    return PageType.UNKNOWN


class PageLoadDispatcher:
    """Runs one handler task per page, keyed by what the page currently shows."""

    def __init__(self, events: EventBroker, handlers: Dict[PageType, PageHandler]):
        missing = [t.value for t in PageType if t is not PageType.UNKNOWN and t not in handlers]
        if missing:
            raise ValueError(f"No handler for page types: {', '.join(missing)}")
        self.events = events
        self.handlers = handlers
        self._tasks: Dict[Page, Tuple[PageType, asyncio.Task]] = {}

    @property
    def active(self) -> Dict[Page, PageType]:
        return {page: kind for page, (kind, task) in self._tasks.items() if not task.done()}

    def attach(self, context: BrowserContext) -> None:
        """Watch every existing and future tab in the context."""
        for page in context.pages:
            self.watch(page)
        context.on("page", self.watch)

    def watch(self, page: Page) -> None:
        def on_navigated(frame: Frame) -> None:
            if frame == page.main_frame:
                self.dispatch(page)

        page.on("framenavigated", on_navigated)
        page.on("close", lambda _: self.cancel(page))
        if page.url and page.url != "about:blank":
            self.dispatch(page)

    def cancel(self, page: Page) -> None:
        entry = self._tasks.pop(page, None)
        if entry and not entry[1].done():
            entry[1].cancel()

    def dispatch(self, page: Page) -> Optional[asyncio.Task]:
        """
        Start the handler for the page's current URL.

        A handler already running for the same page type is left alone since
        its locators re-query the new document; a different type replaces it.
        """
        page_type = classify_page(page.url)
        current = self._tasks.get(page)
        if current and not current[1].done():
            if current[0] == page_type:
                return current[1]
            self.cancel(page)

        task = asyncio.create_task(self._run(page, page_type))
        self._tasks[page] = (page_type, task)
        return task

    async def _run(self, page: Page, page_type: PageType) -> None:
        url = page.url
        await self.events.emit(EventType.PAGE_DETECTED, f"page_{page_type.value}",
                               f"Detected {page_type.value} page", url=url, page_type=page_type.value)
        if page_type is PageType.UNKNOWN:
            return

        try:
            await self.handlers[page_type](page)
        except asyncio.CancelledError:
            await self.events.emit(EventType.STEP, "handler_cancelled",
                                   f"{page_type.value} handler cancelled by navigation", url=url)
            raise
        except Exception as e:
            await self.events.emit(EventType.ERROR, "handler_crashed",
                                   f"{page_type.value} handler raised unexpectedly", url=url,
                                   error=repr(e))
