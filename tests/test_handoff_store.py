"""handoff_store module unit tests."""
import pytest

from optilist.errors import StorageMiss
from optilist.handoff_store import (
    KEY_AUTO_SKU,
    KEY_CONDITION,
    KEY_DESCRIPTION,
    KEY_IMAGES,
    KEY_PRICE,
    KEY_SELECTED_SKU,
    KEY_SKU,
    KEY_TITLE,
    LOCAL,
    SYNC,
    HandoffStore,
)
from optilist.models import ConditionCode, ListingDraft


def test_get_omits_absent_keys(tmp_path):
    store = HandoffStore(tmp_path / "handoff.json")
    store.set({KEY_TITLE: "Widget"})
    assert store.get([KEY_TITLE, KEY_SKU]) == {KEY_TITLE: "Widget"}
    assert store.get_value(KEY_SKU, "none") == "none"


def test_values_survive_a_new_instance(tmp_path):
    path = tmp_path / "handoff.json"
    HandoffStore(path).set({KEY_TITLE: "Widget", KEY_IMAGES: ["a", "b"]})
    assert HandoffStore(path).get([KEY_TITLE, KEY_IMAGES]) == {KEY_TITLE: "Widget", KEY_IMAGES: ["a", "b"]}


def test_areas_are_separate(tmp_path):
    store = HandoffStore(tmp_path / "handoff.json")
    store.set({KEY_SELECTED_SKU: "ZZ"}, area=SYNC)
    store.set({KEY_TITLE: "Widget"})
    assert store.get(KEY_SELECTED_SKU) == {}
    assert store.get_value(KEY_SELECTED_SKU, area=SYNC) == "ZZ"

    store.clear(LOCAL)
    assert store.get(KEY_TITLE) == {}
    assert store.get_value(KEY_SELECTED_SKU, area=SYNC) == "ZZ"

    store.clear()
    assert store.get(KEY_SELECTED_SKU, area=SYNC) == {}


def test_require_rejects_missing_and_empty(tmp_path):
    store = HandoffStore(tmp_path / "handoff.json")
    store.set({KEY_SKU: "", KEY_IMAGES: []})
    for key in (KEY_TITLE, KEY_SKU, KEY_IMAGES):
        with pytest.raises(StorageMiss) as excinfo:
            store.require(key)
        assert excinfo.value.key == key
        assert key in str(excinfo.value)


def test_remove(tmp_path):
    store = HandoffStore(tmp_path / "handoff.json")
    store.set({KEY_TITLE: "Widget", KEY_SKU: "AB1"})
    store.remove(KEY_TITLE)
    assert store.get([KEY_TITLE, KEY_SKU]) == {KEY_SKU: "AB1"}


def test_corrupt_file_reads_as_empty(tmp_path):
    path = tmp_path / "handoff.json"
    path.write_text("{not json")
    store = HandoffStore(path)
    assert store.get(KEY_TITLE) == {}
    store.set({KEY_TITLE: "Widget"})
    assert store.get_value(KEY_TITLE) == "Widget"


def test_no_temp_file_left_behind(tmp_path):
    store = HandoffStore(tmp_path / "nested" / "handoff.json")
    store.set({KEY_TITLE: "Widget"})
    assert sorted(p.name for p in (tmp_path / "nested").iterdir()) == ["handoff.json"]


def test_draft_round_trip(tmp_path):
    store = HandoffStore(tmp_path / "handoff.json")
    draft = ListingDraft(title="Widget", price="19.99", sku="AB1", condition=ConditionCode.USED,
                         images=["data:image/jpeg;base64,AAAA"], description="Nice")
    store.save_draft(draft)

    assert store.get_value(KEY_CONDITION) == "3000"
    assert store.load_draft() == draft


def test_save_draft_without_images_keeps_captured_ones(tmp_path):
    store = HandoffStore(tmp_path / "handoff.json")
    store.set({KEY_IMAGES: ["captured"]})
    store.save_draft(ListingDraft(title="Widget", price="1.00", sku="AB1"))
    assert store.get_value(KEY_IMAGES) == ["captured"]


def test_clear_listing_fields_keeps_images_and_settings(tmp_path):
    store = HandoffStore(tmp_path / "handoff.json")
    store.save_draft(ListingDraft(title="Widget", price="1.00", sku="AB1", images=["img"]))
    store.set({KEY_AUTO_SKU: False}, area=SYNC)

    store.clear_listing_fields()

    assert store.get([KEY_TITLE, KEY_PRICE, KEY_SKU, KEY_CONDITION]) == {}
    assert store.get_value(KEY_IMAGES) == ["img"]
    assert store.get_value(KEY_AUTO_SKU, area=SYNC) is False


def test_description_does_not_carry_over_to_next_listing(tmp_path):
    store = HandoffStore(tmp_path / "handoff.json")
    store.save_draft(ListingDraft(title="Product A", price="5.00", sku="A1", description="Product A text"))
    store.clear_listing_fields()

    store.save_draft(ListingDraft(title="Product B", price="6.00", sku="B1"))

    assert store.load_draft().description is None
    assert store.get_value(KEY_DESCRIPTION) is None
