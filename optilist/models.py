"""
Shared data model: condition codes, listing drafts, image assets and the
per-page-load automation run record.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Set, Tuple

from optilist.errors import DraftIncomplete


class ConditionCode(IntEnum):
    """eBay item condition identifiers."""
    NEW = 1000
    OPEN_BOX = 1500
    USED = 3000
    FOR_PARTS = 4000
    REFURBISHED = 5000
    SELLER_REFURBISHED = 6000

    @classmethod
    def parse(cls, value: Any) -> "ConditionCode":
        """Parse a stored condition ("3000", 3000, None...). Unknown values become NEW."""
        try:
            return cls(int(str(value).strip()))
        except (TypeError, ValueError):
            return cls.NEW


CONDITION_LABELS: Dict[ConditionCode, Tuple[str, ...]] = {
    ConditionCode.NEW: ("new", "brand new", "new condition"),
    ConditionCode.OPEN_BOX: ("open box", "open-box", "opened"),
    ConditionCode.USED: ("used", "pre-owned", "second hand"),
    ConditionCode.FOR_PARTS: ("for parts", "not working", "for parts or not working", "broken"),
    ConditionCode.REFURBISHED: ("refurbished", "reconditioned"),
    ConditionCode.SELLER_REFURBISHED: ("seller refurbished", "seller-refurbished"),
}


def condition_labels(value: Any) -> Tuple[str, ...]:
    """Label phrases shown next to a condition radio. Never raises."""
    try:
        code = ConditionCode(int(str(value).strip()))
    except (TypeError, ValueError):
        return CONDITION_LABELS[ConditionCode.NEW]
    return CONDITION_LABELS[code]


@dataclass
class ListingDraft:
    """Listing data handed from the Amazon page to the eBay pages."""
    title: str = ""
    price: str = ""
    sku: str = ""
    condition: ConditionCode = ConditionCode.NEW
    images: List[str] = field(default_factory=list)
    description: Optional[str] = None

    @property
    def has_listing_data(self) -> bool:
        return bool(self.title or self.sku or self.price or self.images)

    def ensure_dispatchable(self) -> None:
        """Raise DraftIncomplete unless both price and SKU are present."""
        if not self.price.strip():
            raise DraftIncomplete(
                "price",
                "Please calculate the price first (use the price calculator) before listing."
            )
        if not self.sku.strip():
            raise DraftIncomplete("sku", "Please generate a SKU first before listing.")

    def summary(self) -> Dict[str, Any]:
        """JSON-safe view without the image payloads."""
        return {
            "title": self.title,
            "price": self.price,
            "sku": self.sku,
            "condition": int(self.condition),
            "condition_name": self.condition.name,
            "image_count": len(self.images),
            "has_description": bool(self.description),
        }


@dataclass
class ImageAsset:
    """One candidate image found on the source page."""
    source_url: str
    high_res_url: str
    size: Optional[int] = None
    content_type: str = "image/jpeg"
    validated: bool = False


@dataclass
class UploadAttempt:
    """One interaction strategy tried for a goal, and whether it worked."""
    strategy: str
    succeeded: bool
    error: str = ""


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class AutomationRun:
    """Ephemeral state for one page load's automation."""
    steps: List[str]
    title: str = ""
    condition: ConditionCode = ConditionCode.NEW
    completed: Set[str] = field(default_factory=set)
    statuses: Dict[str, StepStatus] = field(default_factory=dict)
    status: RunStatus = RunStatus.IN_PROGRESS

    def __post_init__(self):
        for name in self.steps:
            self.statuses.setdefault(name, StepStatus.PENDING)
        for name in self.completed:
            self.statuses[name] = StepStatus.COMPLETED

    def mark_completed(self, name: str) -> None:
        self.completed.add(name)
        self.statuses[name] = StepStatus.COMPLETED

    def is_completed(self, name: str) -> bool:
        return name in self.completed
