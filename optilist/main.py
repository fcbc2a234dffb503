"""
Main application: FastAPI control surface + page-load orchestration for the
Amazon → eBay listing automation.
"""

import asyncio
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from optilist.browser import BrowserManager
from optilist.dispatcher import PageLoadDispatcher, PageType
from optilist.draft_flow import DraftFlow
from optilist.errors import DraftIncomplete
from optilist.events import EventBroker, EventType
from optilist.handoff_store import (
    DATA_DIR,
    KEY_AUTO_SKU,
    KEY_IMAGES,
    KEY_SELECTED_SKU,
    KEY_SOURCE_TITLE,
    KEY_SOURCE_URL,
    LOCAL,
    SYNC,
    HandoffStore,
)
from optilist.imaging import load_watermark
from optilist.listing_tools import DEFAULT_SKU_PREFIX, calculate_price, generate_sku, title_variations
from optilist.models import ConditionCode, ListingDraft
from optilist.prelist_flow import PrelistFlow
from optilist.source_page import SourceCapture, SourcePageCapture


# Configuration from environment
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
PRELIST_URL = os.getenv("PRELIST_URL", "https://www.ebay.com/sl/prelist/suggest?sr=shListingsTopNav")


class ListingRequest(BaseModel):
    """The listing the user composed on the Amazon page."""
    title: str
    price: str = ""
    sku: str = ""
    condition: int = int(ConditionCode.NEW)
    description: Optional[str] = None
    images: Optional[List[str]] = None


class SourceRequest(BaseModel):
    url: str


class PriceRequest(BaseModel):
    amazon_price: Optional[float] = None
    tax_percent: float = 9.0
    tracking_fee: float = 0.20
    ebay_fee_percent: float = 20.0
    promo_fee_percent: float = 10.0
    desired_profit: float = 0.0


class TitleRequest(BaseModel):
    title: str


class SkuSettings(BaseModel):
    selected_sku: str = DEFAULT_SKU_PREFIX
    auto_sku_enabled: bool = True


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    timestamp: str


class StatusResponse(BaseModel):
    """Response model for status endpoint."""
    state: str
    last_action: dict
    uptime_seconds: float
    subscriber_count: int
    active_pages: dict


class Lister:
    """Wires the shared broker and store into the browser, dispatcher and page handlers."""

    def __init__(
        self,
        events: EventBroker,
        store: HandoffStore,
        browser: BrowserManager,
        watermark_path: Optional[str] = None
    ):
        self.events = events
        self.store = store
        self.browser = browser
        self.watermark = load_watermark(watermark_path)
        self.last_capture: Optional[SourceCapture] = None
        self.dispatcher = PageLoadDispatcher(events, {
            PageType.SOURCE: self.handle_source,
            PageType.INTERMEDIATE: self.handle_prelist,
            PageType.DESTINATION: self.handle_draft,
        })

    async def handle_source(self, page) -> None:
        capture = await SourcePageCapture(page, self.store, self.events, watermark=self.watermark).run()
        if capture is not None:
            self.last_capture = capture

    async def handle_prelist(self, page) -> None:
        await PrelistFlow(page, self.store, self.events, browser=self.browser).run()

    async def handle_draft(self, page) -> None:
        await DraftFlow(page, self.store, self.events, browser=self.browser).run()

    async def start(self) -> None:
        await self.events.emit(EventType.STEP, "application_startup", "Starting lister")
        context = await self.browser.initialize()
        self.dispatcher.attach(context)

    async def stop(self) -> None:
        await self.events.emit(EventType.STEP, "application_shutdown", "Graceful shutdown initiated")
        await self.browser.shutdown()


router = APIRouter()


def get_lister(request: Request) -> Lister:
    return request.app.state.lister


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    lister = get_lister(request)
    return HealthResponse(
        status="healthy" if lister.browser.is_running else "initializing",
        timestamp=datetime.now(timezone.utc).isoformat()
    )


@router.get("/status", response_model=StatusResponse)
async def get_status(request: Request):
    """Get current lister status."""
    lister = get_lister(request)
    status = lister.events.get_status()
    return StatusResponse(
        state=status["state"],
        last_action=status["last_action"],
        uptime_seconds=status["uptime_seconds"],
        subscriber_count=status["subscriber_count"],
        active_pages={page.url: kind.value for page, kind in lister.dispatcher.active.items()}
    )


@router.get("/events")
async def events_stream(request: Request):
    """SSE stream of structured JSON events."""
    events = get_lister(request).events

    async def event_generator():
        async for event in events.subscribe():
            yield {
                "event": event.type.value,
                "data": event.to_json()
            }

    return EventSourceResponse(event_generator())


@router.get("/history")
async def get_event_history(
    request: Request,
    limit: int = 50,
    event_type: Optional[EventType] = Query(None, alias="type")
):
    """Get recent event history, optionally of one event type."""
    events = await get_lister(request).events.get_history(limit, event_type=event_type)
    return [e.to_dict() for e in events]


def _require_browser(lister: Lister) -> None:
    if not lister.browser.is_running:
        raise HTTPException(status_code=503, detail="Browser not initialized")


@router.post("/actions/source", status_code=202)
async def open_source(body: SourceRequest, request: Request):
    """Open an Amazon product page; the source handler captures it on load."""
    lister = get_lister(request)
    _require_browser(lister)
    await lister.browser.open_tab(body.url)
    lister.events.last_action = {"action": "source", "url": body.url}
    return {"status": "opened", "url": body.url}


@router.post("/actions/optilist", status_code=202)
async def start_listing(body: ListingRequest, request: Request):
    """Validate and store the draft, then open the eBay prelist page."""
    lister = get_lister(request)
    title = body.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Please choose a title before listing.")

    images = body.images
    if images is None:
        images = lister.store.get_value(KEY_IMAGES, [])

    draft = ListingDraft(
        title=title,
        price=body.price.strip(),
        sku=body.sku.strip(),
        condition=ConditionCode.parse(body.condition),
        images=list(images or []),
        description=body.description
    )
    try:
        draft.ensure_dispatchable()
    except DraftIncomplete as e:
        await lister.events.emit(EventType.ACTION_REQUIRED, f"draft_missing_{e.field}", str(e))
        raise HTTPException(status_code=400, detail=str(e))

    _require_browser(lister)
    lister.store.save_draft(draft)
    lister.events.last_action = {"action": "optilist", **draft.summary()}
    await lister.events.emit(EventType.STEP, "draft_dispatched", "Draft saved; opening eBay",
                             **draft.summary())
    await lister.browser.open_tab(PRELIST_URL)
    return {"status": "dispatched", "draft": draft.summary()}


@router.post("/actions/price")
async def price_calculator(body: PriceRequest, request: Request):
    """Sell price from the Amazon price and fee settings."""
    lister = get_lister(request)
    amazon_price = body.amazon_price
    if amazon_price is None and lister.last_capture is not None and lister.last_capture.price:
        amazon_price = float(lister.last_capture.price)
    try:
        price = calculate_price(
            amazon_price or 0,
            body.tax_percent,
            body.tracking_fee,
            body.ebay_fee_percent,
            body.promo_fee_percent,
            body.desired_profit
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if price is None:
        raise HTTPException(status_code=400, detail="No Amazon price available")
    return {"amazon_price": amazon_price, "price": price}


@router.post("/actions/sku")
async def new_sku(request: Request):
    """Generate a SKU with the configured prefix."""
    store = get_lister(request).store
    prefix = store.get_value(KEY_SELECTED_SKU, DEFAULT_SKU_PREFIX, area=SYNC)
    return {"sku": generate_sku(prefix)}


@router.post("/actions/titles")
async def suggest_titles(body: TitleRequest):
    return title_variations(body.title.strip())


@router.get("/settings/sku", response_model=SkuSettings)
async def get_sku_settings(request: Request):
    store = get_lister(request).store
    values = store.get([KEY_SELECTED_SKU, KEY_AUTO_SKU], area=SYNC)
    return SkuSettings(
        selected_sku=values.get(KEY_SELECTED_SKU) or DEFAULT_SKU_PREFIX,
        auto_sku_enabled=values.get(KEY_AUTO_SKU, True)
    )


@router.put("/settings/sku", response_model=SkuSettings)
async def put_sku_settings(body: SkuSettings, request: Request):
    store = get_lister(request).store
    prefix = body.selected_sku.strip() or DEFAULT_SKU_PREFIX
    store.set({KEY_SELECTED_SKU: prefix, KEY_AUTO_SKU: body.auto_sku_enabled}, area=SYNC)
    return SkuSettings(selected_sku=prefix, auto_sku_enabled=body.auto_sku_enabled)


@router.get("/draft")
async def get_draft(request: Request):
    """Current stored draft, without image payloads."""
    store = get_lister(request).store
    source = store.get([KEY_SOURCE_URL, KEY_SOURCE_TITLE])
    return {
        **store.load_draft().summary(),
        "source_url": source.get(KEY_SOURCE_URL, ""),
        "source_title": source.get(KEY_SOURCE_TITLE, ""),
    }


@router.delete("/draft")
async def clear_draft(request: Request):
    get_lister(request).store.clear(LOCAL)
    return {"status": "cleared"}


def create_app(
    events: Optional[EventBroker] = None,
    store: Optional[HandoffStore] = None,
    browser: Optional[BrowserManager] = None,
    start_browser: bool = True
) -> FastAPI:
    """Build the API with its collaborators; the broker is shared by everything."""
    events = events or EventBroker()
    store = store or HandoffStore(Path(DATA_DIR) / "handoff.json")
    browser = browser or BrowserManager(events)
    lister = Lister(events, store, browser)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan context manager."""
        if start_browser:
            await lister.start()
        yield
        if start_browser:
            await lister.stop()

    app = FastAPI(
        title="Optilist",
        description="Amazon to eBay listing automation",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.lister = lister
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


async def run_server():
    config = uvicorn.Config(
        create_app(),
        host=API_HOST,
        port=API_PORT,
        log_level="info",
        access_log=True
    )
    await uvicorn.Server(config).serve()


def main():
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
