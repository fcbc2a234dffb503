"""
Image upload pipeline for the eBay draft page.

collect → convert → strategy attempt(s) → verify → cleanup | fail

The uploader widget's mechanism is not known in advance, so files are pushed
through a native file input first and a synthetic drag-and-drop second. Only a
photo count that reaches the expected number counts as success, and only then
are the stored images consumed.
"""

import base64
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from playwright.async_api import Page

from optilist.events import EventBroker, EventType
from optilist.executor import ExecutorTimings, MultiStrategyExecutor
from optilist.handoff_store import KEY_IMAGES, HandoffStore
from optilist.imaging import decode_data_uri
from optilist.models import UploadAttempt
from optilist.resolver import POLL_INTERVAL_SECONDS, Css, ElementResolver, wait_until

# =============================================================================
# CONFIGURABLE TIMING PARAMETERS (via environment variables)
# =============================================================================

TIMEOUT_SECONDS_UPLOADER_READY = float(os.getenv("TIMEOUT_SECONDS_UPLOADER_READY", "20"))
TIMEOUT_SECONDS_UPLOAD_VERIFY = float(os.getenv("TIMEOUT_SECONDS_UPLOAD_VERIFY", "30"))
WAIT_SECONDS_UPLOAD_SETTLE = float(os.getenv("WAIT_SECONDS_UPLOAD_SETTLE", "3.0"))
INTERVAL_SECONDS_UPLOAD_VERIFY = float(os.getenv("INTERVAL_SECONDS_UPLOAD_VERIFY", "2.0"))

# Anything shorter is a placeholder, not a composited listing image
MIN_IMAGE_DATA_LENGTH = 10000

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

SELECTORS = {
    "uploader": [
        'input[type="file"]',
        '[class*="dropzone"]',
        '[class*="upload-area"]',
        '[class*="upload-zone"]',
        '[class*="photo-upload"]',
        '[class*="image-upload"]',
        '[data-testid*="upload"]',
        '[data-testid*="photo"]',
        '[data-testid*="image"]',
    ],
    "file_input": [
        'input[type="file"][multiple]',
        'input[type="file"][accept*="image"]',
        'input[type="file"][name*="photo"]',
        'input[type="file"][name*="image"]',
        'input[type="file"]',
    ],
    "drop_zone": [
        '[class*="dropzone"]',
        '[class*="upload-area"]',
        '[class*="upload-zone"]',
        '[class*="photo-upload"]',
        '[class*="image-upload"]',
        '[data-testid*="upload"]',
        '[data-testid*="photo"]',
        '[data-testid*="image"]',
    ],
    "thumbnails": [
        'img[class*="thumbnail"]',
        'img[class*="image-preview"]',
        'img[class*="photo-preview"]',
        'img[class*="upload-preview"]',
        'img[src^="blob:"]',
        'img[src^="data:"]',
        '[class*="photo-item"] img',
        '[class*="image-item"] img',
        '[class*="upload-item"] img',
    ],
    "counters": [
        '[class*="photo-count"]',
        '[class*="image-count"]',
        '[class*="upload-count"]',
        '[data-testid*="count"]',
        ".photo-counter",
        ".image-counter",
    ],
}

# Builds a DataTransfer carrying the files inside the page
BUILD_DATA_TRANSFER_SCRIPT = """(files) => {
    const dt = new DataTransfer();
    for (const f of files) {
        const bin = atob(f.data);
        const bytes = new Uint8Array(bin.length);
        for (let i = 0; i < bin.length; i++) bytes[i] = bin.charCodeAt(i);
        dt.items.add(new File([bytes], f.name, { type: f.mimeType }));
    }
    return dt;
}"""

_DIGITS = re.compile(r"(\d+)")


class UploadPhase(str, Enum):
    COLLECT = "collect"
    CONVERT = "convert"
    WAIT_UPLOADER = "wait_uploader"
    STRATEGY = "strategy"
    VERIFY = "verify"
    CLEANUP = "cleanup"
    REFUSED = "refused"


@dataclass
class UploadTimings:
    uploader_ready: float = TIMEOUT_SECONDS_UPLOADER_READY
    settle: float = WAIT_SECONDS_UPLOAD_SETTLE
    progress: float = 1.0
    verify: float = TIMEOUT_SECONDS_UPLOAD_VERIFY
    verify_interval: float = INTERVAL_SECONDS_UPLOAD_VERIFY
    poll: float = POLL_INTERVAL_SECONDS


@dataclass
class UploadResult:
    """Outcome of one pipeline run. `phase` is the last phase reached."""
    success: bool
    phase: UploadPhase
    expected: int = 0
    observed: int = 0
    attempts: List[UploadAttempt] = field(default_factory=list)
    message: str = ""


def collect_images(stored: Any) -> List[str]:
    """Keep only finished data-URI images; placeholders and junk are dropped."""
    if not isinstance(stored, list):
        return []
    return [
        img for img in stored
        if isinstance(img, str)
        and img.startswith("data:image/")
        and len(img) >= MIN_IMAGE_DATA_LENGTH
    ]


def to_file_payload(data_uri: str, index: int) -> Dict[str, Any]:
    """Decode one data URI into a Playwright file payload named product_image_<n>.<ext>."""
    mime, data = decode_data_uri(data_uri)
    ext = MIME_EXTENSIONS.get(mime, "jpg")
    return {"name": f"product_image_{index}.{ext}", "mimeType": mime, "buffer": data}


class ImageUploadPipeline:
    """Injects stored listing images into the draft page's photo uploader."""

    def __init__(
        self,
        page: Page,
        store: HandoffStore,
        events: EventBroker,
        timings: Optional[UploadTimings] = None
    ):
        self.page = page
        self.store = store
        self.events = events
        self.timings = timings or UploadTimings()
        self.resolver = ElementResolver(page, interval=self.timings.poll)
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def _log_step(self, step: str, message: str, event_type: EventType = EventType.UPLOAD, **details) -> None:
        await self.events.emit(event_type, step, message, url=self.page.url, **details)

    async def convert(self, images: List[str]) -> List[Dict[str, Any]]:
        files = []
        for index, image in enumerate(images, start=1):
            try:
                files.append(to_file_payload(image, index))
            except ValueError as e:
                await self._log_step("image_convert_failed", f"Dropping image {index}: {e}",
                                     EventType.WARNING, index=index)
        return files

    async def count_uploaded(self) -> int:
        """Rendered thumbnails with blob/data sources, or a numeric photo counter, whichever is higher."""
        total = 0
        for selector in SELECTORS["thumbnails"]:
            valid = 0
            try:
                for thumb in await Css(selector).candidates(self.page):
                    src = await thumb.get_attribute("src") or ""
                    if src.startswith("blob:") or src.startswith("data:") or "upload" in src:
                        valid += 1
            except Exception:
                continue
            total = max(total, valid)

        for selector in SELECTORS["counters"]:
            try:
                counters = await Css(selector).candidates(self.page)
                if not counters:
                    continue
                match = _DIGITS.search(await counters[0].inner_text() or "")
            except Exception:
                continue
            if match:
                total = max(total, int(match.group(1)))
        return total

    async def _wait_for_uploader(self) -> bool:
        found = await self.resolver.find(SELECTORS["uploader"], timeout=self.timings.uploader_ready,
                                         interactable=False)
        return found is not None

    async def _verify(self, expected: int, baseline: int = 0) -> int:
        """Poll until `expected` photos beyond `baseline` show up; returns the new-photo count."""

        async def reached():
            added = await self.count_uploaded() - baseline
            return added if added >= expected else None

        added = await wait_until(reached, self.timings.verify, self.timings.verify_interval)
        if added is None:
            return max(0, await self.count_uploaded() - baseline)
        return added

    async def upload(self) -> UploadResult:
        """Run the whole pipeline. A second call while one is running is refused."""
        if self._busy:
            await self._log_step("upload_refused", "An upload is already in progress", EventType.WARNING)
            return UploadResult(success=False, phase=UploadPhase.REFUSED, message="Upload already in progress")

        self._busy = True
        try:
            return await self._upload()
        finally:
            self._busy = False

    async def _upload(self) -> UploadResult:
        stored = self.store.get_value(KEY_IMAGES, [])
        images = collect_images(stored)
        dropped = (len(stored) if isinstance(stored, list) else 0) - len(images)
        await self._log_step("images_collected", f"{len(images)} usable images in storage",
                             usable=len(images), dropped=dropped)
        if not images:
            return UploadResult(success=False, phase=UploadPhase.COLLECT, message="No usable images in storage")

        files = await self.convert(images)
        expected = len(files)
        if not files:
            return UploadResult(success=False, phase=UploadPhase.CONVERT, message="No image could be decoded")

        if not await self._wait_for_uploader():
            await self._log_step("uploader_missing", "Photo uploader never appeared", EventType.WARNING)
            return UploadResult(success=False, phase=UploadPhase.WAIT_UPLOADER, expected=expected,
                                message="Uploader not found")

        # Photos already on the draft (prefill, earlier partial upload) are not ours
        baseline = await self.count_uploaded()
        if baseline:
            await self._log_step("photos_preexisting", f"{baseline} photos already on the draft", baseline=baseline)

        async def file_input():
            target = await self.resolver.find_now(SELECTORS["file_input"], interactable=False)
            if target is None:
                return False
            await target.set_input_files(files)

        async def drag_and_drop():
            zone = await self.resolver.find_now(SELECTORS["drop_zone"], interactable=False)
            if zone is None:
                return False
            payload = [
                {"name": f["name"], "mimeType": f["mimeType"], "data": base64.b64encode(f["buffer"]).decode("ascii")}
                for f in files
            ]
            data_transfer = await self.page.evaluate_handle(BUILD_DATA_TRANSFER_SCRIPT, payload)
            for event_type in ("dragenter", "dragover", "drop"):
                await zone.dispatch_event(event_type, {"dataTransfer": data_transfer})

        async def progressed():
            return await self.count_uploaded() > baseline

        executor = MultiStrategyExecutor(
            self.events,
            ExecutorTimings(
                settle=self.timings.settle,
                verify=self.timings.progress,
                budget=self.timings.uploader_ready + self.timings.verify,
                poll=self.timings.poll,
            ),
            url=self.page.url,
        )
        outcome = await executor.run_strategies("image_upload", [
            ("file_input", file_input),
            ("drag_and_drop", drag_and_drop),
        ], verify=progressed)

        if not outcome.success:
            return UploadResult(success=False, phase=UploadPhase.STRATEGY, expected=expected,
                                observed=max(0, await self.count_uploaded() - baseline), attempts=outcome.attempts,
                                message="No upload strategy produced thumbnails")

        observed = await self._verify(expected, baseline)
        if observed < expected:
            await self._log_step("upload_unverified",
                                 f"Photo count stalled at {observed}/{expected}; images kept in storage",
                                 EventType.WARNING, expected=expected, observed=observed)
            return UploadResult(success=False, phase=UploadPhase.VERIFY, expected=expected,
                                observed=observed, attempts=outcome.attempts,
                                message=f"Only {observed} of {expected} images confirmed")

        self.store.remove(KEY_IMAGES)
        await self._log_step("upload_verified", f"{observed} images uploaded via {outcome.strategy}",
                             expected=expected, observed=observed, strategy=outcome.strategy)
        return UploadResult(success=True, phase=UploadPhase.CLEANUP, expected=expected,
                            observed=observed, attempts=outcome.attempts, message="Images uploaded")
