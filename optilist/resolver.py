"""
Element resolution: one timeout-bounded poll primitive and typed selector
strategies evaluated by a single resolver.

Not-found is a normal outcome here. `find` returns None and callers branch on
it; only `require` turns absence into an ElementNotFound.
"""

import asyncio
import os
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Union

from playwright.async_api import Locator, Page

from optilist.errors import ElementNotFound


POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "0.25"))
TIMEOUT_SECONDS_ELEMENT = float(os.getenv("TIMEOUT_SECONDS_ELEMENT", "5.0"))

# Classes eBay uses on controls that are rendered but not usable
INACTIVE_CLASSES = ("disabled", "inactive", "hidden")


async def wait_until(
    probe: Callable[[], Awaitable[Any]],
    timeout: float,
    interval: float = POLL_INTERVAL_SECONDS
) -> Any:
    """
    Poll `probe` until it returns something truthy or `timeout` seconds pass.

    Returns the truthy value, or None on timeout. A probe that raises counts
    as "not yet" for that tick; pages re-render under us all the time.
    """
    loop = asyncio.get_running_loop()
    end_time = loop.time() + max(timeout, 0.0)

    while True:
        try:
            result = await probe()
        except Exception:
            result = None
        if result:
            return result

        remaining = end_time - loop.time()
        if remaining <= 0:
            return None
        await asyncio.sleep(min(interval, remaining))


async def _expand(locator: Locator) -> List[Locator]:
    count = await locator.count()
    return [locator.nth(i) for i in range(count)]


class SelectorStrategy:
    """One way of locating candidate elements under a root."""

    description = "strategy"

    async def candidates(self, root: Union[Page, Locator]) -> List[Locator]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description})"


class Css(SelectorStrategy):
    """Plain CSS selector; candidates in document order."""

    def __init__(self, selector: str):
        self.selector = selector
        self.description = selector

    async def candidates(self, root: Union[Page, Locator]) -> List[Locator]:
        return await _expand(root.locator(self.selector))


class TextMatch(SelectorStrategy):
    """Elements whose visible text (or value attribute) contains a phrase."""

    def __init__(self, phrases: Sequence[str], selector: str = "button, a", exact: bool = False):
        self.phrases = [p.lower() for p in phrases]
        self.selector = selector
        self.exact = exact
        self.description = f"{selector} ~ {'|'.join(self.phrases)}"

    def _matches(self, text: str) -> bool:
        if not text:
            return False
        if self.exact:
            return text in self.phrases
        return any(phrase in text for phrase in self.phrases)

    async def candidates(self, root: Union[Page, Locator]) -> List[Locator]:
        matches = []
        for candidate in await _expand(root.locator(self.selector)):
            text = (await candidate.inner_text() or "").strip().lower()
            value = (await candidate.get_attribute("value") or "").strip().lower()
            if self._matches(text) or self._matches(value):
                matches.append(candidate)
        return matches


class LabelFor(SelectorStrategy):
    """Controls referenced by a <label for=...> whose text contains a phrase."""

    def __init__(self, phrases: Sequence[str], label_selector: str = "label"):
        self.phrases = [p.lower() for p in phrases]
        self.label_selector = label_selector
        self.description = f"label ~ {'|'.join(self.phrases)}"

    async def candidates(self, root: Union[Page, Locator]) -> List[Locator]:
        matches = []
        for label in await _expand(root.locator(self.label_selector)):
            text = (await label.inner_text() or "").strip().lower()
            if not any(phrase in text for phrase in self.phrases):
                continue
            target_id = await label.get_attribute("for")
            if not target_id:
                continue
            escaped = target_id.replace("\\", "\\\\").replace('"', '\\"')
            matches.extend(await _expand(root.locator(f'[id="{escaped}"]')))
        return matches


Strategies = Union[SelectorStrategy, str, Iterable[Union[SelectorStrategy, str]]]


def as_strategies(given: Strategies) -> List[SelectorStrategy]:
    """Normalize a strategy, a CSS string, or a list of either."""
    if isinstance(given, (SelectorStrategy, str)):
        given = [given]
    return [Css(s) if isinstance(s, str) else s for s in given]


class ElementResolver:
    """Waits for elements on one page, filtering out non-interactable ones."""

    def __init__(
        self,
        page: Page,
        interval: float = POLL_INTERVAL_SECONDS,
        timeout: float = TIMEOUT_SECONDS_ELEMENT
    ):
        self.page = page
        self.interval = interval
        self.timeout = timeout

    async def is_interactable(self, locator: Locator) -> bool:
        """Zero-size, disabled, or inactive-class elements are not interactable."""
        try:
            box = await locator.bounding_box()
            if not box or box.get("width", 0) <= 0 or box.get("height", 0) <= 0:
                return False
            if await locator.get_attribute("disabled") is not None:
                return False
            classes = (await locator.get_attribute("class") or "").split()
            if any(cls in INACTIVE_CLASSES for cls in classes):
                return False
            return True
        except Exception:
            return False

    async def find_now(
        self,
        strategies: Strategies,
        root: Optional[Union[Page, Locator]] = None,
        interactable: bool = True
    ) -> Optional[Locator]:
        """Single pass over the strategies in priority order."""
        scope = root if root is not None else self.page
        for strategy in as_strategies(strategies):
            try:
                candidates = await strategy.candidates(scope)
            except Exception:
                continue
            for candidate in candidates:
                if not interactable or await self.is_interactable(candidate):
                    return candidate
        return None

    async def find(
        self,
        strategies: Strategies,
        timeout: Optional[float] = None,
        root: Optional[Union[Page, Locator]] = None,
        interactable: bool = True
    ) -> Optional[Locator]:
        """Poll until a strategy yields an acceptable element, or return None."""
        return await wait_until(
            lambda: self.find_now(strategies, root=root, interactable=interactable),
            self.timeout if timeout is None else timeout,
            self.interval
        )

    async def require(
        self,
        strategies: Strategies,
        what: str,
        timeout: Optional[float] = None,
        root: Optional[Union[Page, Locator]] = None,
        interactable: bool = True
    ) -> Locator:
        """Like find, but raise ElementNotFound instead of returning None."""
        wait = self.timeout if timeout is None else timeout
        found = await self.find(strategies, timeout=wait, root=root, interactable=interactable)
        if found is None:
            raise ElementNotFound(what, wait)
        return found

    async def exists(
        self,
        strategies: Strategies,
        root: Optional[Union[Page, Locator]] = None
    ) -> bool:
        """Presence check without the interactable filter and without waiting."""
        return await self.find_now(strategies, root=root, interactable=False) is not None
