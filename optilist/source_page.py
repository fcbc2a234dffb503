"""
Amazon product page capture.
Handles: Title → Price → Image Candidates → Quality Check → Composite → Store
"""

import asyncio
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from PIL import Image
from playwright.async_api import Page

from optilist.events import EventBroker, EventType, ListerState
from optilist.handoff_store import KEY_IMAGES, KEY_SOURCE_TITLE, KEY_SOURCE_URL, HandoffStore
from optilist.imaging import process_listing_image
from optilist.models import ImageAsset
from optilist.resolver import POLL_INTERVAL_SECONDS, Css, ElementResolver

TIMEOUT_SECONDS_PRODUCT_READY = float(os.getenv("TIMEOUT_SECONDS_PRODUCT_READY", "10"))
TIMEOUT_MS_IMAGE_REQUEST = int(os.getenv("TIMEOUT_MS_IMAGE_REQUEST", "15000"))
MAX_IMAGES = int(os.getenv("MAX_IMAGES", "20"))

# HEAD size above which an image without a size token is accepted
MIN_HIGH_RES_BYTES = 50000
# Shorter encodings are thumbnails that did not composite properly
MIN_ENCODED_LENGTH = 100000

HIGH_RES_TOKEN = "_AC_SL1500_"

SELECTORS = {
    "title": "#productTitle",
    "price_whole": ".a-price-whole",
    "price_fraction": ".a-price-fraction",
    "price": [
        "#corePrice_feature_div .a-price .a-offscreen",
        "#apex_desktop .a-price .a-offscreen",
        ".a-price.aok-align-center .a-offscreen",
        "#priceblock_ourprice",
        "#priceblock_dealprice",
    ],
    "gallery": [
        "#landingImage",
        "#imgTagWrapperId img",
        "#altImages img",
        "#imageBlock img",
    ],
}

GALLERY_ATTRIBUTES = ("data-old-hires", "src", "data-src")

_JSON_IMAGE_PATTERNS = [
    re.compile(r'"hiRes":"([^"]+)"'),
    re.compile(r'"large":"([^"]+)"'),
    re.compile(r'"mainUrl":"([^"]+)"'),
]
_SIZE_TOKEN = re.compile(r"\._[A-Za-z0-9_,]+_\.")
_HIGH_RES_PATTERNS = [
    re.compile(r"_AC_S[LXY]\d+_"),
    re.compile(r"_AC_U[LXY]?\d+_"),
]
_PRICE = re.compile(r"\$?([\d,]+\.?\d*)")
_IMAGE_FORMATS = (".jpg", ".jpeg", ".png", ".webp")
_EXCLUDED = ("sprite", "icon", "logo", "banner", "data:image")


def is_valid_image_url(url: Optional[str]) -> bool:
    """Amazon-hosted product image, not a sprite or inline placeholder."""
    if not url or not url.startswith("http"):
        return False
    lowered = url.lower()
    if "amazon" not in lowered or "images" not in lowered:
        return False
    if not any(fmt in lowered for fmt in _IMAGE_FORMATS):
        return False
    return not any(word in lowered for word in _EXCLUDED)


def high_res_url(url: str) -> str:
    """Swap Amazon's size token (._SX300_. etc.) for the 1500px one."""
    if not url:
        return url
    if _SIZE_TOKEN.search(url):
        return _SIZE_TOKEN.sub(f".{HIGH_RES_TOKEN}.", url, count=1)
    return url


def is_high_res_url(url: str) -> bool:
    return any(p.search(url or "") for p in _HIGH_RES_PATTERNS)


def parse_price(text: str) -> Optional[str]:
    match = _PRICE.search(text or "")
    if not match:
        return None
    try:
        value = float(match.group(1).replace(",", ""))
    except ValueError:
        return None
    return f"{value:.2f}" if value > 0 else None


def unescape_json_url(url: str) -> str:
    return url.replace("\\u002F", "/").replace("\\", "").replace("&amp;", "&")


@dataclass
class SourceCapture:
    """What was captured from one Amazon product page."""
    url: str
    title: str = ""
    price: Optional[str] = None
    assets: List[ImageAsset] = field(default_factory=list)
    images: List[str] = field(default_factory=list)

    def summary(self):
        return {
            "url": self.url,
            "title": self.title,
            "price": self.price,
            "candidates": len(self.assets),
            "validated": sum(1 for a in self.assets if a.validated),
            "images": len(self.images),
        }


class SourcePageCapture:
    """Scrapes an Amazon product page and stores listing-ready images."""

    def __init__(
        self,
        page: Page,
        store: HandoffStore,
        events: EventBroker,
        watermark: Optional[Image.Image] = None,
        ready_timeout: float = TIMEOUT_SECONDS_PRODUCT_READY
    ):
        self.page = page
        self.store = store
        self.events = events
        self.watermark = watermark
        self.ready_timeout = ready_timeout
        self.resolver = ElementResolver(page, interval=POLL_INTERVAL_SECONDS)

    async def _log_step(self, step: str, message: str, event_type: EventType = EventType.STEP, **details) -> None:
        await self.events.emit(event_type, step, message, url=self.page.url, **details)

    async def run(self) -> Optional[SourceCapture]:
        """Entry point for an Amazon page load. Non-product pages are ignored."""
        title_el = await self.resolver.find(SELECTORS["title"], timeout=self.ready_timeout, interactable=False)
        if title_el is None:
            await self._log_step("source_not_product", "No product title on this Amazon page")
            return None

        await self.events.set_state(ListerState.SOURCE_CAPTURE, url=self.page.url)
        try:
            capture = await self.capture()
        finally:
            await self.events.set_state(ListerState.IDLE, url=self.page.url)
        return capture

    async def capture(self) -> SourceCapture:
        capture = SourceCapture(url=self.page.url)
        capture.title = await self.extract_title()
        capture.price = await self.extract_price()
        await self._log_step("source_scraped", capture.title or "(untitled)", price=capture.price)

        capture.assets = await self.validate(await self.collect_image_assets())
        capture.images = await self.process(capture.assets)

        values = {KEY_SOURCE_URL: capture.url, KEY_SOURCE_TITLE: capture.title}
        if capture.images:
            values[KEY_IMAGES] = capture.images
        self.store.set(values)

        await self._log_step("source_captured", f"{len(capture.images)} listing images ready",
                             **capture.summary())
        return capture

    async def extract_title(self) -> str:
        found = await self.resolver.find_now(SELECTORS["title"], interactable=False)
        if found is None:
            return ""
        return (await found.inner_text() or "").strip()

    async def extract_price(self) -> Optional[str]:
        """Split whole/fraction format first, then the usual price blocks."""
        whole = await self.resolver.find_now(SELECTORS["price_whole"], interactable=False)
        fraction = await self.resolver.find_now(SELECTORS["price_fraction"], interactable=False)
        if whole is not None and fraction is not None:
            whole_digits = re.sub(r"\D", "", await whole.inner_text() or "")
            fraction_digits = re.sub(r"\D", "", await fraction.inner_text() or "")
            if whole_digits and fraction_digits:
                price = parse_price(f"{whole_digits}.{fraction_digits}")
                if price:
                    return price

        for strategy in SELECTORS["price"]:
            found = await self.resolver.find_now(strategy, interactable=False)
            if found is None:
                continue
            price = parse_price(await found.text_content() or "")
            if price:
                return price
        return None

    async def collect_image_assets(self) -> List[ImageAsset]:
        """Embedded image JSON first, then the gallery; de-duplicated on the upgraded URL."""
        raw: List[str] = []
        try:
            content = await self.page.content()
        except Exception as e:
            await self._log_step("source_content_failed", str(e), EventType.WARNING)
            content = ""
        for pattern in _JSON_IMAGE_PATTERNS:
            raw.extend(unescape_json_url(m) for m in pattern.findall(content))

        for selector in SELECTORS["gallery"]:
            for img in await Css(selector).candidates(self.page):
                for attribute in GALLERY_ATTRIBUTES:
                    value = await img.get_attribute(attribute)
                    if value:
                        raw.append(value)

        assets: Dict[str, ImageAsset] = {}
        for url in raw:
            if not is_valid_image_url(url):
                continue
            upgraded = high_res_url(url)
            if upgraded not in assets:
                assets[upgraded] = ImageAsset(source_url=url, high_res_url=upgraded)
        return list(assets.values())[:MAX_IMAGES]

    async def validate(self, assets: List[ImageAsset]) -> List[ImageAsset]:
        for asset in assets:
            url = asset.high_res_url
            if is_high_res_url(url):
                asset.validated = True
            else:
                try:
                    response = await self.page.request.head(url, timeout=TIMEOUT_MS_IMAGE_REQUEST)
                    headers = response.headers
                    asset.content_type = headers.get("content-type", asset.content_type)
                    length = headers.get("content-length")
                    asset.size = int(length) if length and length.isdigit() else None
                    asset.validated = (
                        asset.size is not None
                        and asset.size > MIN_HIGH_RES_BYTES
                        and asset.content_type.startswith("image/")
                    )
                except Exception as e:
                    await self._log_step("image_head_failed", str(e), EventType.WARNING, image=url)
        return assets

    async def process(self, assets: List[ImageAsset]) -> List[str]:
        """Download and composite validated images; watermark only the first."""
        images = []
        for asset in (a for a in assets if a.validated):
            try:
                response = await self.page.request.get(asset.high_res_url, timeout=TIMEOUT_MS_IMAGE_REQUEST)
                if not response.ok:
                    raise RuntimeError(f"HTTP {response.status}")
                body = await response.body()
                asset.size = len(body)
                watermark = self.watermark if not images else None
                encoded = await asyncio.to_thread(process_listing_image, body, watermark)
            except Exception as e:
                await self._log_step("image_process_failed", str(e), EventType.WARNING,
                                     image=asset.high_res_url)
                continue
            if len(encoded) < MIN_ENCODED_LENGTH:
                await self._log_step("image_too_small", "Encoded image below size threshold",
                                     EventType.WARNING, image=asset.high_res_url, length=len(encoded))
                continue
            images.append(encoded)
        return images
