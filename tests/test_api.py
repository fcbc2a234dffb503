"""HTTP control surface tests."""
from fastapi.testclient import TestClient

from fakes import FakeBrowser
from optilist.events import EventBroker, EventType
from optilist.handoff_store import KEY_CONDITION, KEY_IMAGES, KEY_SOURCE_TITLE, KEY_TITLE, HandoffStore
from optilist.main import PRELIST_URL, create_app


def make_client(tmp_path, running=True):
    events = EventBroker(echo=False)
    store = HandoffStore(tmp_path / "handoff.json")
    browser = FakeBrowser(running=running)
    app = create_app(events=events, store=store, browser=browser, start_browser=False)
    return TestClient(app), events, store, browser


def test_health(tmp_path):
    client, events, store, browser = make_client(tmp_path)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_status_idle(tmp_path):
    client, events, store, browser = make_client(tmp_path)
    body = client.get("/status").json()
    assert body["state"] == "idle"
    assert body["active_pages"] == {}


def test_dispatch_requires_price(tmp_path):
    client, events, store, browser = make_client(tmp_path)
    response = client.post("/actions/optilist", json={"title": "Widget", "sku": "AB1"})
    assert response.status_code == 400
    assert "calculate the price first" in response.json()["detail"]
    assert "draft_missing_price" in events.steps(EventType.ACTION_REQUIRED)
    assert browser.opened == []
    assert store.get(KEY_TITLE) == {}


def test_dispatch_requires_sku(tmp_path):
    client, events, store, browser = make_client(tmp_path)
    response = client.post("/actions/optilist", json={"title": "Widget", "price": "19.99"})
    assert response.status_code == 400
    assert "generate a SKU first" in response.json()["detail"]
    assert browser.opened == []


def test_dispatch_requires_title(tmp_path):
    client, events, store, browser = make_client(tmp_path)
    response = client.post("/actions/optilist", json={"title": "  ", "price": "19.99", "sku": "AB1"})
    assert response.status_code == 400


def test_dispatch_stores_draft_and_opens_prelist(tmp_path):
    client, events, store, browser = make_client(tmp_path)
    store.set({KEY_IMAGES: ["data:image/jpeg;base64,AAAA"], KEY_SOURCE_TITLE: "Amazon Widget"})

    response = client.post("/actions/optilist", json={
        "title": "Widget Pro", "price": "19.99", "sku": "AB239010", "condition": 3000,
    })

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "dispatched"
    assert body["draft"]["image_count"] == 1
    assert body["draft"]["condition_name"] == "USED"
    assert browser.opened == [PRELIST_URL]
    assert store.get_value(KEY_TITLE) == "Widget Pro"
    assert store.get_value(KEY_CONDITION) == "3000"

    draft = client.get("/draft").json()
    assert draft["sku"] == "AB239010"
    assert draft["source_title"] == "Amazon Widget"

    assert client.delete("/draft").json() == {"status": "cleared"}
    assert client.get("/draft").json()["title"] == ""


def test_dispatch_without_browser(tmp_path):
    client, events, store, browser = make_client(tmp_path, running=False)
    response = client.post("/actions/optilist", json={"title": "Widget", "price": "19.99", "sku": "AB1"})
    assert response.status_code == 503


def test_open_source(tmp_path):
    client, events, store, browser = make_client(tmp_path)
    response = client.post("/actions/source", json={"url": "https://www.amazon.com/dp/B000TEST"})
    assert response.status_code == 202
    assert browser.opened == ["https://www.amazon.com/dp/B000TEST"]


def test_price_calculator(tmp_path):
    client, events, store, browser = make_client(tmp_path)
    response = client.post("/actions/price", json={"amazon_price": 10})
    assert response.status_code == 200
    assert response.json() == {"amazon_price": 10.0, "price": "15.86"}

    assert client.post("/actions/price", json={}).status_code == 400
    bad = client.post("/actions/price", json={"amazon_price": 10, "ebay_fee_percent": 95})
    assert bad.status_code == 400


def test_sku_settings_and_generation(tmp_path):
    client, events, store, browser = make_client(tmp_path)
    assert client.get("/settings/sku").json() == {"selected_sku": "AB", "auto_sku_enabled": True}

    updated = client.put("/settings/sku", json={"selected_sku": "ZZ", "auto_sku_enabled": False})
    assert updated.json() == {"selected_sku": "ZZ", "auto_sku_enabled": False}
    assert client.get("/settings/sku").json()["auto_sku_enabled"] is False

    sku = client.post("/actions/sku").json()["sku"]
    assert sku.startswith("ZZ")
    assert len(sku) == 8


def test_title_suggestions(tmp_path):
    client, events, store, browser = make_client(tmp_path)
    rows = client.post("/actions/titles", json={"title": "Widget Pro"}).json()
    assert [r["title"] for r in rows] == ["Widget Pro", "Widget Pro For Sale", ""]


def test_history(tmp_path):
    client, events, store, browser = make_client(tmp_path)
    client.post("/actions/optilist", json={"title": "Widget", "sku": "AB1"})
    history = client.get("/history").json()
    assert history[-1]["step"] == "draft_missing_price"
    assert history[-1]["type"] == "action_required"


def test_history_filtered_by_type(tmp_path):
    client, events, store, browser = make_client(tmp_path)
    client.post("/actions/optilist", json={"title": "Widget", "sku": "AB1"})
    client.post("/actions/optilist", json={"title": "Widget", "price": "19.99", "sku": "AB1"})
    history = client.get("/history", params={"type": "action_required"}).json()
    assert [h["step"] for h in history] == ["draft_missing_price"]
    assert client.get("/history", params={"type": "bogus"}).status_code == 422
