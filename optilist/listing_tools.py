"""
Listing helpers used before dispatch: sell price calculator, SKU generator,
title suggestions.
"""

import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

DEFAULT_SKU_PREFIX = "AB"
MAX_TITLE_LENGTH = 80
MAX_TITLE_WORDS = 8


def calculate_price(
    amazon_price: float,
    tax_percent: float = 9.0,
    tracking_fee: float = 0.20,
    ebay_fee_percent: float = 20.0,
    promo_fee_percent: float = 10.0,
    desired_profit: float = 0.0
) -> Optional[str]:
    """
    Sell price that leaves the fee and profit percentages on top of cost.

        (amazon * (1 + tax%) + tracking) / (1 - (ebay% + promo% + profit%) / 100)

    Returns a 2-decimal string, None when there is no Amazon price, and raises
    ValueError when the percentages leave nothing to sell for.
    """
    if amazon_price is None or amazon_price <= 0:
        return None

    total_percentage = (ebay_fee_percent + promo_fee_percent + desired_profit) / 100
    if total_percentage >= 1:
        raise ValueError("Fee and profit percentages must total less than 100")

    base_cost = amazon_price + amazon_price * (tax_percent / 100) + tracking_fee
    final_price = Decimal(str(base_cost / (1 - total_percentage)))
    return str(final_price.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def generate_sku(prefix: str = DEFAULT_SKU_PREFIX, now_ms: Optional[int] = None) -> str:
    """Prefix plus the last six digits of the millisecond clock, e.g. AB239010."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{prefix or DEFAULT_SKU_PREFIX}{str(now_ms)[-6:]}"


def limit_title_length(title: str, max_length: int = MAX_TITLE_LENGTH) -> str:
    if len(title) <= max_length:
        return title
    return title[:max_length - 3] + "..."


def limit_title_words(title: str, max_words: int = MAX_TITLE_WORDS) -> str:
    words = title.split(" ")
    if len(words) <= max_words:
        return title
    return " ".join(words[:max_words])


def title_variations(original: str) -> List[Dict[str, object]]:
    """Original title, a trimmed "For Sale" title, and an empty custom row."""
    perfect = limit_title_length(limit_title_words(original) + " For Sale")
    return [
        {"rank": 1, "type": "Original", "title": original, "char_count": len(original)},
        {"rank": 2, "type": "Perfect Title", "title": perfect, "char_count": len(perfect)},
        {"rank": 3, "type": "Custom", "title": "", "char_count": 0},
    ]
