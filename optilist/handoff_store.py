"""
Durable key-value handoff between pages.

Nothing survives a navigation except what is written here: the Amazon page
stores the composed listing, the prelist page reads title and condition, the
draft page reads SKU, price and images.
"""

import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from optilist.errors import StorageMiss
from optilist.models import ConditionCode, ListingDraft

DATA_DIR = Path(os.getenv("DATA_DIR", "/data"))
HANDOFF_FILE = DATA_DIR / "handoff.json"

LOCAL = "local"
SYNC = "sync"

# local area
KEY_TITLE = "ebayTitle"
KEY_CONDITION = "ebayCondition"
KEY_SKU = "ebaySku"
KEY_PRICE = "ebayPrice"
KEY_IMAGES = "watermarkedImages"
KEY_DESCRIPTION = "description"
KEY_SOURCE_URL = "tempAmazonURL"
KEY_SOURCE_TITLE = "tempAmazonTitle"

# sync area
KEY_SELECTED_SKU = "selectedSKU"
KEY_AUTO_SKU = "autoSkuEnabled"

LISTING_FIELDS = (KEY_TITLE, KEY_SKU, KEY_PRICE, KEY_CONDITION)

Keys = Union[str, Iterable[str]]


def _as_keys(keys: Keys):
    return [keys] if isinstance(keys, str) else list(keys)


class HandoffStore:
    """JSON file with a `local` and a `sync` area. One writer at a time."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else HANDOFF_FILE
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        data: Dict[str, Any] = {}
        if self.path.exists():
            try:
                with open(self.path, "r") as f:
                    data = json.load(f)
            except (OSError, ValueError):
                data = {}
        if not isinstance(data, dict):
            data = {}
        for area in (LOCAL, SYNC):
            if not isinstance(data.get(area), dict):
                data[area] = {}
        return data

    def _save(self, data: Dict[str, Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump(data, f)
        os.replace(tmp, self.path)

    def get(self, keys: Keys, area: str = LOCAL) -> Dict[str, Any]:
        """Values for the keys that are present; absent keys are omitted."""
        with self._lock:
            stored = self._load()[area]
        return {k: stored[k] for k in _as_keys(keys) if k in stored}

    def get_value(self, key: str, default: Any = None, area: str = LOCAL) -> Any:
        return self.get(key, area=area).get(key, default)

    def require(self, key: str, area: str = LOCAL) -> Any:
        """Like get_value, but a missing or empty value raises StorageMiss."""
        value = self.get_value(key, area=area)
        if value in (None, "", [], {}):
            raise StorageMiss(key)
        return value

    def set(self, values: Dict[str, Any], area: str = LOCAL) -> None:
        with self._lock:
            data = self._load()
            data[area].update(values)
            self._save(data)

    def remove(self, keys: Keys, area: str = LOCAL) -> None:
        with self._lock:
            data = self._load()
            for key in _as_keys(keys):
                data[area].pop(key, None)
            self._save(data)

    def clear(self, area: Optional[str] = None) -> None:
        """Empty one area, or both when no area is given."""
        with self._lock:
            data = self._load()
            for name in ([area] if area else [LOCAL, SYNC]):
                data[name] = {}
            self._save(data)

    def load_draft(self) -> ListingDraft:
        stored = self.get([KEY_TITLE, KEY_PRICE, KEY_SKU, KEY_CONDITION, KEY_IMAGES, KEY_DESCRIPTION])
        images = stored.get(KEY_IMAGES) or []
        return ListingDraft(
            title=str(stored.get(KEY_TITLE) or ""),
            price=str(stored.get(KEY_PRICE) or ""),
            sku=str(stored.get(KEY_SKU) or ""),
            condition=ConditionCode.parse(stored.get(KEY_CONDITION)),
            images=[i for i in images if isinstance(i, str)] if isinstance(images, list) else [],
            description=stored.get(KEY_DESCRIPTION) or None,
        )

    def save_draft(self, draft: ListingDraft) -> None:
        values: Dict[str, Any] = {
            KEY_TITLE: draft.title,
            KEY_PRICE: draft.price,
            KEY_SKU: draft.sku,
            KEY_CONDITION: str(int(draft.condition)),
        }
        if draft.images:
            values[KEY_IMAGES] = list(draft.images)
        if draft.description:
            values[KEY_DESCRIPTION] = draft.description
        self.set(values)
        if not draft.description:
            # A description left over from the previous listing must not leak into this one
            self.remove(KEY_DESCRIPTION)

    def clear_listing_fields(self) -> None:
        """Drop title, SKU, price and condition once the draft page has used them."""
        self.remove(LISTING_FIELDS)
