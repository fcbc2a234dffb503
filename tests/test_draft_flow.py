"""draft_flow module tests against a fake draft listing page."""
import asyncio
import base64
import os

from fakes import FakeBrowser, FakeElement, FakePage
from optilist.draft_flow import (
    STEP_FILL_PRICE,
    STEP_FILL_SKU,
    STEP_UPLOAD_IMAGES,
    DraftFlow,
    DraftTimings,
)
from optilist.events import EventBroker, EventType, ListerState
from optilist.executor import ExecutorTimings
from optilist.handoff_store import (
    KEY_CONDITION,
    KEY_IMAGES,
    KEY_PRICE,
    KEY_SKU,
    KEY_SOURCE_URL,
    KEY_TITLE,
    HandoffStore,
)
from optilist.image_upload import UploadTimings
from optilist.item_specifics import FillerTimings

DRAFT_URL = "https://www.ebay.com/lstng?draftId=123&mode=AddItem"


def image():
    return "data:image/jpeg;base64," + base64.b64encode(os.urandom(9000)).decode("ascii")


def make_flow(page, store, events, browser=None):
    return DraftFlow(
        page, store, events,
        timings=DraftTimings(field=0.05, poll=0.01),
        executor_timings=ExecutorTimings(settle=0, verify=0.05, budget=2.0, poll=0.01, typing_delay=(0, 0)),
        upload_timings=UploadTimings(uploader_ready=0.1, settle=0, progress=0.05, verify=0.1,
                                     verify_interval=0.01, poll=0.01),
        filler_timings=FillerTimings(apply_all=0.02, apply_all_settle=0, between_groups=0,
                                     ai_description=0.02, poll=0.01),
        click_ai_description=False,
        browser=browser,
    )


def draft_page():
    page = FakePage(url=DRAFT_URL)
    counter = FakeElement(text="0 photos")

    def received(files):
        counter.text = f"{len(files)} photos"

    page.dom['input[type="file"]'] = [FakeElement(box=None, on_files=received)]
    page.dom['[class*="photo-count"]'] = [counter]
    page.dom['input[name="customLabel"][type="text"]'] = [FakeElement()]
    page.dom['input[name="price"]'] = [FakeElement()]
    return page


def make_store(tmp_path, **values):
    store = HandoffStore(tmp_path / "handoff.json")
    if values:
        store.set(values)
    return store


def test_full_draft_run(tmp_path):
    page = draft_page()
    store = make_store(tmp_path, **{
        KEY_TITLE: "Widget Pro",
        KEY_SKU: "AB239010",
        KEY_PRICE: "19.99",
        KEY_CONDITION: "3000",
        KEY_IMAGES: [image() for _ in range(3)],
        KEY_SOURCE_URL: "https://www.amazon.com/dp/B000TEST",
    })
    events = EventBroker(echo=False)

    result = asyncio.run(make_flow(page, store, events).run())

    assert result.success is True
    assert result.soft_failures == []
    assert page.dom['input[name="customLabel"][type="text"]'][0].value == "AB239010"
    assert page.dom['input[name="price"]'][0].value == "19.99"
    assert store.get_value(KEY_IMAGES) is None
    assert store.get([KEY_TITLE, KEY_SKU, KEY_PRICE, KEY_CONDITION]) == {}
    assert store.get_value(KEY_SOURCE_URL) == "https://www.amazon.com/dp/B000TEST"
    assert "draft_completed" in events.steps()
    assert events.current_state == ListerState.IDLE


def test_no_listing_data_touches_nothing(tmp_path):
    page = draft_page()
    store = make_store(tmp_path)
    events = EventBroker(echo=False)

    result = asyncio.run(make_flow(page, store, events).run())

    assert result.success is False
    assert page.calls == []
    assert "draft_no_listing_data" in events.steps(EventType.WARNING)


def test_fields_already_holding_values_are_not_retyped(tmp_path):
    page = draft_page()
    sku = page.dom['input[name="customLabel"][type="text"]'][0]
    sku.value = "AB239010"
    sku.inert = ("fill", "typing")
    store = make_store(tmp_path, **{KEY_TITLE: "Widget Pro", KEY_SKU: "AB239010", KEY_PRICE: "19.99"})
    events = EventBroker(echo=False)

    result = asyncio.run(make_flow(page, store, events).run())

    assert result.success is True
    assert f"{STEP_UPLOAD_IMAGES}_already_satisfied" in events.steps()
    assert f"{STEP_FILL_SKU}_already_satisfied" in events.steps()
    assert f"{STEP_FILL_PRICE}_completed" in events.steps()


def test_missing_price_box_is_soft_and_clears_fields(tmp_path):
    page = draft_page()
    del page.dom['input[name="price"]']
    store = make_store(tmp_path, **{KEY_TITLE: "Widget Pro", KEY_SKU: "AB239010", KEY_PRICE: "19.99"})
    events = EventBroker(echo=False)
    browser = FakeBrowser()

    result = asyncio.run(make_flow(page, store, events, browser=browser).run())

    assert result.success is True
    assert result.soft_failures == [STEP_FILL_PRICE]
    assert page.dom['input[name="customLabel"][type="text"]'][0].value == "AB239010"
    assert store.get_value(KEY_PRICE) is None
    assert browser.screenshots == ["draft_soft_failures"]
    assert browser.traces == ["draft_complete"]


def test_failed_upload_keeps_images(tmp_path):
    page = draft_page()
    del page.dom['input[type="file"]']
    images = [image() for _ in range(2)]
    store = make_store(tmp_path, **{KEY_TITLE: "Widget Pro", KEY_SKU: "AB1", KEY_PRICE: "5.00",
                                    KEY_IMAGES: images})
    events = EventBroker(echo=False)

    result = asyncio.run(make_flow(page, store, events).run())

    assert result.soft_failures == [STEP_UPLOAD_IMAGES]
    assert store.get_value(KEY_IMAGES) == images


def test_unverified_upload_reported_as_step_error(tmp_path):
    page = draft_page()
    counter = page.dom['[class*="photo-count"]'][0]
    page.dom['input[type="file"]'][0].on_files = lambda files: setattr(counter, "text", "1 photo")
    images = [image() for _ in range(3)]
    store = make_store(tmp_path, **{KEY_TITLE: "Widget Pro", KEY_SKU: "AB1", KEY_PRICE: "5.00",
                                    KEY_IMAGES: images})
    events = EventBroker(echo=False)

    result = asyncio.run(make_flow(page, store, events).run())

    assert result.soft_failures == [STEP_UPLOAD_IMAGES]
    assert f"{STEP_UPLOAD_IMAGES}_error" in events.steps(EventType.WARNING)
    assert store.get_value(KEY_IMAGES) == images
