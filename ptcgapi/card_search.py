"""
Card Search Module

Cross-set card search with filter building, pagination and a small
in-memory result cache keyed by the normalized search parameters.
"""

import json
import logging
import re
import threading
import time
from typing import Any, Dict, Optional

from .config import SEARCH_CACHE_MAX_SIZE, SEARCH_CACHE_TTL_SECONDS
from .database import get_cards_collection, get_sets_collection
from .memory_manager import get_memory_manager, monitor_memory
from .models import CardSearchParams, SearchResult
from .utils import clean_document

logger = logging.getLogger(__name__)

CARD_SEARCH_PROJECTION = {
    "_id": 0,
    "id": 1,
    "name": 1,
    "set_id": 1,
    "rarity": 1,
    "tcg_price": 1,
    "price_updated_at": 1,
    "image_small": 1,
    "image_large": 1,
}

SET_SUMMARY_PROJECTION = {"_id": 0, "id": 1, "name": 1, "release_date": 1, "symbol_url": 1}


class SearchCache:
    """
    Thread-safe result cache with a fixed TTL and a size cap.

    When full, the entry with the oldest insertion timestamp is evicted.
    """

    def __init__(self, max_size: int = SEARCH_CACHE_MAX_SIZE, ttl: float = SEARCH_CACHE_TTL_SECONDS):
        self.max_size = max_size
        self.ttl = ttl
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[SearchResult]:
        """Return a live cached result, dropping it if it has expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if time.time() - entry["timestamp"] > self.ttl:
                del self._entries[key]
                return None

            return entry["result"]

    def set(self, key: str, result: SearchResult) -> None:
        """Store a result, evicting the oldest entry when the cache is full."""
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                oldest_key = min(self._entries, key=lambda k: self._entries[k]["timestamp"])
                del self._entries[oldest_key]

            self._entries[key] = {"result": result, "timestamp": time.time()}

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)


def generate_query_hash(params: CardSearchParams) -> str:
    """
    Build the cache key for a set of search parameters.

    Parameters that are unset are skipped; the rest are sorted by name and
    rendered as ``name:value`` joined with ``|``.
    """
    values = params.model_dump(exclude_none=True)
    return "|".join(f"{key}:{values[key]}" for key in sorted(values))


def build_search_filter(params: CardSearchParams) -> Dict[str, Any]:
    """
    Translate search parameters into a MongoDB filter.

    Args:
        params: Search parameters

    Returns:
        Dict: filter document for the cards collection
    """
    query: Dict[str, Any] = {}

    if params.name:
        query["name"] = {"$regex": re.escape(params.name), "$options": "i"}

    if params.set_id:
        query["set_id"] = params.set_id

    if params.rarity:
        query["rarity"] = params.rarity

    price_filter: Dict[str, float] = {}
    if params.min_price is not None:
        price_filter["$gte"] = params.min_price
    if params.max_price is not None:
        price_filter["$lte"] = params.max_price
    if price_filter:
        query["tcg_price"] = price_filter

    return query


class CardSearch:
    """Service for efficient cross-set card searching."""

    def __init__(self, cache: Optional[SearchCache] = None):
        self.cache = cache or SearchCache()
        get_memory_manager().register_cleanup_callback("card_search_cache", self.clear_cache)

    @monitor_memory
    def search_cards(self, params: CardSearchParams, use_cache: bool = True) -> SearchResult:
        """
        Search cards across every set.

        Args:
            params: Search filters and pagination
            use_cache: Serve from and store into the result cache

        Returns:
            SearchResult: matching page of cards with the total count
        """
        start_time = time.perf_counter()
        query_hash = generate_query_hash(params)

        if use_cache:
            cached = self.cache.get(query_hash)
            if cached is not None:
                logger.info(f"Cache hit for query: {query_hash}")
                return cached

        logger.info(f"Searching cards with params: {params.model_dump(exclude_none=True)}")

        try:
            cards_collection = get_cards_collection()
            query = build_search_filter(params)

            total_count = cards_collection.count_documents(query)

            cursor = (
                cards_collection.find(query, CARD_SEARCH_PROJECTION)
                .sort("tcg_price", -1)
                .skip(params.offset)
                .limit(params.limit)
            )
            cards = [clean_document(card) for card in cursor]

            if params.include_set_data and cards:
                self._attach_set_data(cards)

            execution_time_ms = (time.perf_counter() - start_time) * 1000

            result = SearchResult(
                cards=cards,
                total_count=total_count,
                execution_time_ms=round(execution_time_ms),
                query=json.dumps(query, sort_keys=True, default=str),
            )
        except Exception as e:
            logger.error(f"Search failed: {e}")
            raise

        if use_cache:
            self.cache.set(query_hash, result)

        logger.info(f"Search completed in {execution_time_ms:.2f}ms, found {result.total_count} cards")
        return result

    def _attach_set_data(self, cards):
        set_ids = sorted({card["set_id"] for card in cards if card.get("set_id")})
        sets_by_id = {
            card_set["id"]: clean_document(card_set)
            for card_set in get_sets_collection().find({"id": {"$in": set_ids}}, SET_SUMMARY_PROJECTION)
        }
        for card in cards:
            card["sets"] = sets_by_id.get(card.get("set_id"))

    def clear_cache(self) -> None:
        """Clear the search cache."""
        self.cache.clear()
        logger.info("Search cache cleared")


# Service instance
card_search = CardSearch()
