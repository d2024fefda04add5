"""
Utility Functions Module

Card-domain lookup tables (rarity codes, eras, generations, holofoil patterns),
price extraction from card API payloads, retry with exponential backoff and
small date/batching helpers.
"""

import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, List, Optional, TypeVar

from .config import (
    HIGH_TIER_MIN_PRICE,
    MEDIUM_TIER_MIN_PRICE,
    RETRY_BASE_DELAY_MS,
    RETRY_MAX_DELAY_MS,
    RETRY_MAX_RETRIES,
)
from .models import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Market prices are tried in this order before falling back to mid prices
PRICE_VARIANT_PREFERENCE = [
    "normal",
    "holofoil",
    "reverseHolofoil",
    "1stEditionHolofoil",
    "1stEditionNormal",
    "unlimitedHolofoil",
]

RARITY_CODES = {
    "Common": "C",
    "Uncommon": "U",
    "Rare": "R",
    "Rare Holo": "RH",
    "Rare Ultra": "UR",
    "Rare Holo EX": "EX",
    "Rare Holo GX": "GX",
    "Rare Holo V": "V",
    "Rare Holo VMAX": "VMAX",
    "Rare Holo VSTAR": "VSTAR",
    "Rare Secret": "SR",
    "Rare Rainbow": "RR",
    "Promo": "PR",
    "Amazing Rare": "AR",
    "Rare Shiny": "SH",
    "Rare Shining": "SL",
    "Classic Collection": "CC",
    "Trainer Gallery": "TG",
}

# (substrings, era) checked in order; the first hit wins
CARD_ERA_RULES = [
    (("Base", "Fossil", "Jungle", "Team Rocket"), "Base"),
    (("E-Series", "Expedition", "Aquapolis", "Skyridge"), "E-Series"),
    (("EX",), "EX Series"),
    (("Diamond & Pearl",), "Diamond & Pearl"),
    (("Black & White",), "Black & White"),
    (("XY",), "XY"),
    (("Sun & Moon",), "Sun & Moon"),
    (("Sword & Shield",), "Sword & Shield"),
    (("Scarlet & Violet",), "Scarlet & Violet"),
]

HOLOFOIL_PATTERN_RULES = [
    (("Base", "Fossil", "Jungle", "E-Series", "Ex Series"), "Cosmos"),
    (("Black & White",), "Tinsel"),
    (("XY",), "Sheen"),
    (("Sun & Moon",), "Water-Web"),
    (("Sword & Shield",), "Vertical Stripes"),
    (("Scarlet & Violet",), "Light-reflecting Border"),
]

# Upper national dex number of each generation
GENERATION_BOUNDS = [151, 251, 386, 493, 649, 721, 809, 898, 1008]

SPECIAL_SUBTYPES = ["V", "VMAX", "VSTAR", "EX", "GX", "V-UNION"]


def retry_with_backoff(fn: Callable[[], T], config: Optional[RetryConfig] = None) -> T:
    """
    Call ``fn`` until it succeeds or the retry budget is spent.

    Delay after failed attempt ``n`` is
    ``min(max_delay, base_delay * 2 ** (n - 1) * (0.5 + random()))``.

    Args:
        fn: Zero-argument callable to invoke
        config: Retry settings, defaults to the configured RETRY_* values

    Returns:
        Whatever ``fn`` returns

    Raises:
        The last exception raised by ``fn``
    """
    config = config or RetryConfig(
        max_retries=RETRY_MAX_RETRIES,
        base_delay_ms=RETRY_BASE_DELAY_MS,
        max_delay_ms=RETRY_MAX_DELAY_MS,
    )
    last_error: Optional[Exception] = None

    for attempt in range(1, config.max_retries + 1):
        try:
            return fn()
        except Exception as e:
            last_error = e
            logger.warning(f"Operation failed (attempt {attempt}/{config.max_retries}): {e}")

            if attempt < config.max_retries:
                delay_ms = min(
                    config.max_delay_ms,
                    config.base_delay_ms * (2 ** (attempt - 1)) * (0.5 + random.random()),
                )
                logger.debug(f"Retrying in {round(delay_ms)}ms...")
                time.sleep(delay_ms / 1000)

    raise last_error


def get_price(api_card: Optional[Dict[str, Any]]) -> Optional[float]:
    """
    Pick the most relevant TCGPlayer price from a card API payload.

    Args:
        api_card: Card object as returned by the card API

    Returns:
        Market price of the preferred variant, else the first mid price, else None
    """
    if not api_card:
        return None

    prices = (api_card.get("tcgplayer") or {}).get("prices") or {}
    if not prices:
        return None

    for variant in PRICE_VARIANT_PREFERENCE:
        market = (prices.get(variant) or {}).get("market")
        if market:
            return float(market)

    for variant_prices in prices.values():
        mid = (variant_prices or {}).get("mid")
        if mid:
            return float(mid)

    return None


def determine_priority(price: Optional[float]) -> str:
    """Map a price onto its update tier."""
    if not price:
        return "low"
    if price > HIGH_TIER_MIN_PRICE:
        return "high"
    if price >= MEDIUM_TIER_MIN_PRICE:
        return "medium"
    return "low"


def tier_price_filter(tier: str) -> Dict[str, Any]:
    """
    Build the ``tcg_price`` query filter for a price tier.

    Args:
        tier: ``high``, ``medium``, ``low`` or ``all``

    Returns:
        Dict: MongoDB filter document
    """
    if tier == "high":
        return {"tcg_price": {"$gt": HIGH_TIER_MIN_PRICE}}
    if tier == "medium":
        return {"tcg_price": {"$gte": MEDIUM_TIER_MIN_PRICE, "$lte": HIGH_TIER_MIN_PRICE}}
    if tier == "low":
        return {"tcg_price": {"$lt": MEDIUM_TIER_MIN_PRICE}}
    if tier == "all":
        return {}
    raise ValueError(f"Invalid tier: {tier}")


def get_rarity_code(rarity: Optional[str]) -> Optional[str]:
    """Short code for a rarity name; unknown rarities pass through unchanged."""
    if not rarity:
        return None
    return RARITY_CODES.get(rarity, rarity)


def _match_series(series: str, rules) -> Optional[str]:
    for needles, value in rules:
        if any(needle in series for needle in needles):
            return value
    return None


def get_card_era(series: Optional[str]) -> Optional[str]:
    """Infer the card era from a set series name."""
    if not series:
        return None
    return _match_series(series, CARD_ERA_RULES) or series


def get_holofoil_pattern(series: Optional[str]) -> Optional[str]:
    """Holofoil pattern printed during a series, when known."""
    if not series:
        return None
    return _match_series(series, HOLOFOIL_PATTERN_RULES)


def get_pokemon_generation(dex_number: Optional[int]) -> Optional[int]:
    """Generation (1-9) of a national pokedex number."""
    if not dex_number:
        return None

    for generation, upper_bound in enumerate(GENERATION_BOUNDS, start=1):
        if dex_number <= upper_bound:
            return generation
    return None


def get_special_treatment(api_card: Dict[str, Any]) -> Optional[str]:
    """Art treatment of a special card (full art, alt art, rainbow, secret)."""
    subtypes = api_card.get("subtypes") or []
    rarity = api_card.get("rarity") or ""

    if "Full Art" in subtypes:
        return "Full Art"
    if "Alt Art" in subtypes or "Alternate Art" in subtypes:
        return "Alt Art"
    if "Rainbow" in rarity:
        return "Rainbow Rare"
    if "Secret" in rarity:
        return "Secret Rare"
    return None


def get_special_rarity_type(api_card: Dict[str, Any], subtype: str) -> Optional[str]:
    """Rarity label of a special subtype variation."""
    subtypes = api_card.get("subtypes") or []
    rarity = api_card.get("rarity") or ""

    if "Secret" in rarity:
        return "Secret Rare"
    if "Rainbow" in rarity:
        return "Rainbow Rare"
    if "Amazing Rare" in rarity:
        return "Amazing Rare"
    if "Shiny" in rarity:
        return "Shiny Rare"
    if "Special Illustration Rare" in rarity or "Special Illustration Rare" in subtypes:
        return "Special Illustration Rare"
    if "Illustration Rare" in rarity or "Illustration Rare" in subtypes:
        return "Illustration Rare"
    if subtype in SPECIAL_SUBTYPES:
        return "Ultra Rare"
    return None


def batch_process_generator(items: List[Any], batch_size: int = 100) -> Generator[List[Any], None, None]:
    """
    Split items into consecutive batches.

    Args:
        items: List of items to process
        batch_size: Size of each batch

    Yields:
        List[Any]: Batch of items
    """
    for i in range(0, len(items), batch_size):
        yield items[i:i + batch_size]


def get_current_utc_datetime() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Coerce a stored timestamp into an aware UTC datetime.

    Accepts datetimes (naive values are treated as UTC, which is how pymongo
    returns them) and ISO 8601 strings. Anything else yields None.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable timestamp: {value!r}")
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def timestamp_or_zero(value: Any) -> float:
    """Epoch seconds of a timestamp; missing values sort as the oldest."""
    dt = parse_datetime(value)
    return dt.timestamp() if dt else 0.0


def format_datetime_for_api(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as ISO 8601 in UTC for API responses."""
    dt = parse_datetime(dt)
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def clean_document(document: Dict[str, Any]) -> Dict[str, Any]:
    """
    Prepare a stored document for a JSON response.

    Drops the MongoDB ``_id`` and renders datetimes as ISO strings.
    """
    cleaned = {}
    for key, value in document.items():
        if key == "_id":
            continue
        if isinstance(value, datetime):
            cleaned[key] = format_datetime_for_api(value)
        elif isinstance(value, dict):
            cleaned[key] = clean_document(value)
        else:
            cleaned[key] = value
    return cleaned


def format_entity(document: Dict[str, Any]) -> str:
    """Label used in validation reports, e.g. ``sv1-25 (Pikachu)``."""
    return f"{document.get('id')} ({document.get('name')})"
