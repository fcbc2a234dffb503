"""item_specifics module tests."""
import asyncio

from fakes import FakeElement, FakePage
from optilist.events import EventBroker, EventType
from optilist.executor import ExecutorTimings
from optilist.item_specifics import (
    PROCESSED_ATTRIBUTE,
    FillerTimings,
    ItemSpecificsFiller,
    format_description_html,
)

DRAFT_URL = "https://www.ebay.com/lstng?draftId=123&mode=AddItem"
FAST = FillerTimings(apply_all=0.05, apply_all_settle=0, between_groups=0, ai_description=0.05, poll=0.01)
EXECUTOR = ExecutorTimings(settle=0, verify=0.05, budget=2.0, poll=0.01, typing_delay=(0, 0))


def fieldset(caption, dropdown=None, input_value=None, suggestions=()):
    children = {"legend": [FakeElement(text=caption)], "button.fake-link": list(suggestions)}
    if dropdown is not None:
        children['button[name*="attributes"]'] = [FakeElement(text=dropdown)]
    if input_value is not None:
        children["input, textarea"] = [FakeElement(value=input_value)]
    return FakeElement(children=children)


def make_filler(page, events, click_ai=False):
    return ItemSpecificsFiller(page, events, FAST, EXECUTOR, click_ai_description=click_ai)


def test_format_description_html():
    text = "Line one\nline two\n\nPara & <two>"
    assert format_description_html(text) == "<p>Line one<br>line two</p><p>Para &amp; &lt;two&gt;</p>"


def test_suggestions_fill_only_empty_groups():
    sony = FakeElement(text="Sony")
    lg = FakeElement(text="LG")
    taken = FakeElement(text="Red")
    disabled = FakeElement(text="XL", attrs={"disabled": ""})
    ignored = FakeElement(text="ABC-1")
    page = FakePage(url=DRAFT_URL, dom={"fieldset": [
        fieldset("Frequently selected: Brand", dropdown="–", suggestions=[sony, lg]),
        fieldset("Suggested: Color", dropdown="Black", suggestions=[taken]),
        fieldset("Model", dropdown="–", suggestions=[ignored]),
        fieldset("Suggested: Size", input_value="", suggestions=[disabled]),
    ]})
    events = EventBroker(echo=False)

    report = asyncio.run(make_filler(page, events).fill())

    assert report.groups_seen == 3
    assert report.suggestions_clicked == 1
    assert report.skipped_filled == 1
    assert sony.activations == ["click"]
    assert sony.attrs[PROCESSED_ATTRIBUTE] == "true"
    assert lg.activations == []
    assert taken.activations == []
    assert ignored.activations == []
    assert disabled.activations == []
    assert "apply_all_unavailable" in events.steps(EventType.WARNING)


def test_processed_suggestion_not_clicked_twice():
    first = FakeElement(text="Sony", attrs={PROCESSED_ATTRIBUTE: "true"})
    second = FakeElement(text="LG")
    page = FakePage(url=DRAFT_URL, dom={"fieldset": [
        fieldset("Frequently selected: Brand", dropdown="Select", suggestions=[first, second]),
    ]})

    report = asyncio.run(make_filler(page, EventBroker(echo=False)).fill())

    assert report.suggestions_clicked == 1
    assert first.activations == []
    assert second.activations == ["click"]


def test_apply_all_clicked_first():
    apply_all = FakeElement(text="Apply all")
    page = FakePage(url=DRAFT_URL, dom={"button, a": [FakeElement(text="Apply"), apply_all]})

    report = asyncio.run(make_filler(page, EventBroker(echo=False)).fill())

    assert report.apply_all_clicked is True
    assert apply_all.activations == ["click"]


def test_description_written_into_empty_editor():
    body = FakeElement(text="")
    page = FakePage(url=DRAFT_URL)
    page.frames[".rte-editor > iframe"] = {"body": [body]}

    report = asyncio.run(make_filler(page, EventBroker(echo=False)).fill("Great\nwidget"))

    assert report.description_filled is True
    assert body.html == "<p>Great<br>widget</p>"


def test_existing_description_left_alone():
    body = FakeElement(text="Seller's own text")
    page = FakePage(url=DRAFT_URL)
    page.frames[".rte-editor > iframe"] = {"body": [body]}

    report = asyncio.run(make_filler(page, EventBroker(echo=False)).fill("Replacement"))

    assert report.description_filled is False
    assert body.html == ""


def test_missing_editor_is_a_warning():
    events = EventBroker(echo=False)
    report = asyncio.run(make_filler(FakePage(url=DRAFT_URL), events).fill("Text"))

    assert report.description_filled is False
    assert "description_editor_missing" in events.steps(EventType.WARNING)


def test_ai_description_button():
    ai = FakeElement(text="Use AI description")
    page = FakePage(url=DRAFT_URL, dom={"button": [ai]})

    report = asyncio.run(make_filler(page, EventBroker(echo=False), click_ai=True).fill())

    assert report.ai_description_clicked is True
    assert ai.activations == ["click"]


def test_group_error_does_not_stop_the_pass():
    class Exploding(FakeElement):
        def query(self, selector):
            raise RuntimeError("fieldset re-rendered")

    good = FakeElement(text="Sony")
    page = FakePage(url=DRAFT_URL, dom={"fieldset": [
        Exploding(),
        fieldset("Suggested: Brand", dropdown="–", suggestions=[good]),
    ]})
    events = EventBroker(echo=False)

    report = asyncio.run(make_filler(page, events).fill())

    assert report.suggestions_clicked == 1
    assert "suggestion_group_error" in events.steps(EventType.WARNING)


def test_suggestion_replaced_after_click_still_counts():
    chips = []

    def chosen(el):
        # eBay swaps the chip for the selected value
        chips.remove(el)

    chips.append(FakeElement(text="Sony", on_click=chosen))
    brand = fieldset("Brand - Frequently selected:", dropdown="–")
    brand.children["button.fake-link"] = lambda: chips
    page = FakePage(url=DRAFT_URL, dom={"fieldset": [brand]})
    events = EventBroker(echo=False)

    report = asyncio.run(make_filler(page, events).fill())

    assert report.suggestions_clicked == 1
    assert chips == []
    assert "suggestion_clicked" in events.steps()
    assert "suggestion_group_error" not in events.steps(EventType.WARNING)
