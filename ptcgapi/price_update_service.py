"""
Price Update Service Module

Refreshes card prices from the Pokemon TCG API by price tier, in batches, or
through an in-memory priority queue drained on a background worker thread
under a burst/cooldown rate limit.
"""

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from . import tcg_api
from .config import QUEUE_BURST_SIZE, QUEUE_COOLDOWN_MS, QUEUE_REQUESTS_PER_MINUTE
from .database import get_card_prices_collection, get_cards_collection
from .memory_manager import monitor_memory
from .models import PriceUpdateQueueItem, QueueStats, RateLimitConfig
from .utils import (
    determine_priority,
    format_datetime_for_api,
    get_current_utc_datetime,
    get_price,
    parse_datetime,
    retry_with_backoff,
    tier_price_filter,
    timestamp_or_zero,
)

logger = logging.getLogger(__name__)

PRIORITY_WEIGHT = {"high": 3, "medium": 2, "low": 1}

CARD_PRICE_PROJECTION = {"_id": 0, "id": 1, "name": 1, "set_id": 1, "tcg_price": 1, "price_updated_at": 1}

DEFAULT_TIER_LIMITS = {"high": 50, "medium": 100, "low": 200}


class PriceUpdateService:
    """Service for refreshing stored card prices."""

    def __init__(self, rate_limits: Optional[RateLimitConfig] = None):
        self.rate_limits = rate_limits or RateLimitConfig(
            requests_per_minute=QUEUE_REQUESTS_PER_MINUTE,
            burst_size=QUEUE_BURST_SIZE,
            cooldown_ms=QUEUE_COOLDOWN_MS,
        )
        self._queue: List[PriceUpdateQueueItem] = []
        self._lock = threading.Lock()
        self._is_processing = False
        self._last_burst_time = 0.0
        self._worker: Optional[threading.Thread] = None

    # Single card updates

    def _store_price(self, card: Dict[str, Any], new_price: float) -> None:
        updated_at = get_current_utc_datetime()

        get_cards_collection().update_one(
            {"id": card["id"]},
            {"$set": {"tcg_price": new_price, "price_updated_at": updated_at}},
        )
        get_card_prices_collection().insert_one({
            "card_id": card["id"],
            "price": new_price,
            "previous_price": card.get("tcg_price"),
            "source": "tcgplayer",
            "recorded_at": updated_at,
        })

    def _refresh_card(self, card: Dict[str, Any]) -> Dict[str, Any]:
        """
        Fetch the current price of a stored card and write it back.

        Args:
            card: Stored card with at least id, name, set_id and tcg_price

        Returns:
            Dict: result row; never raises
        """
        result = {"cardId": card["id"], "cardName": card.get("name"), "setId": card.get("set_id")}
        old_price = card.get("tcg_price")

        try:
            payload = retry_with_backoff(lambda: tcg_api.get_card_by_id(card["id"]))
            api_card = payload.get("data")

            if not api_card:
                logger.warning(f"Card not found in TCG API: {card['id']}")
                return {**result, "success": False, "error": "Card not found in TCG API"}

            new_price = get_price(api_card)
            if new_price is None:
                logger.warning(f"No price available for card {card['id']}")
                return {
                    **result,
                    "oldPrice": old_price,
                    "newPrice": None,
                    "success": False,
                    "error": "No price available from API",
                }

            self._store_price(card, new_price)
            logger.info(f"Updated price for {card.get('name')}: ${old_price} -> ${new_price}")

            return {
                **result,
                "oldPrice": old_price,
                "newPrice": new_price,
                "priceChange": new_price - (old_price or 0),
                "priceChangePercent": ((new_price - old_price) / old_price) * 100 if old_price else 0,
                "success": True,
            }

        except Exception as e:
            logger.error(f"Failed to update price for card {card['id']}: {e}")
            return {**result, "success": False, "error": str(e)}

    @staticmethod
    def _summarize(results: List[Dict[str, Any]]) -> Dict[str, Any]:
        successful = sum(1 for result in results if result["success"])
        return {
            "cardsProcessed": len(results),
            "successfulUpdates": successful,
            "failedUpdates": len(results) - successful,
            "results": results,
        }

    def update_price_for_card(self, card_id: str) -> Dict[str, Any]:
        """
        Refresh the price of one stored card.

        Returns:
            Dict: result row, with ``statusCode`` 404 when the card is not stored
        """
        card = get_cards_collection().find_one({"id": card_id}, CARD_PRICE_PROJECTION)
        if card is None:
            logger.warning(f"Card {card_id} not found in database")
            return {"cardId": card_id, "success": False, "error": "Card not found", "statusCode": 404}

        return self._refresh_card(card)

    @monitor_memory
    def update_prices_by_tier(self, tier: str = "all", limit: int = 50) -> Dict[str, Any]:
        """
        Refresh prices of the least recently updated cards of a tier.

        Args:
            tier: ``high``, ``medium``, ``low`` or ``all``
            limit: Maximum number of cards to refresh

        Returns:
            Dict: counts and per-card results

        Raises:
            ValueError: unknown tier
        """
        query = tier_price_filter(tier)

        try:
            logger.info(f"Starting price update for tier: {tier}, limit: {limit}")

            # Never-updated cards sort first
            cards = list(
                get_cards_collection()
                .find(query, CARD_PRICE_PROJECTION)
                .sort("price_updated_at", 1)
                .limit(limit)
            )

            if not cards:
                logger.info("No cards found matching the criteria")
                return self._summarize([])

            logger.info(f"Found {len(cards)} cards to update prices for")
            return self._summarize([self._refresh_card(card) for card in cards])

        except Exception as e:
            logger.error(f"Price update failed: {e}")
            raise

    @monitor_memory
    def batch_update_prices(
        self,
        batch_size: int = 10,
        limit: Optional[int] = None,
        priority_only: bool = False,
    ) -> Dict[str, Any]:
        """
        Refresh prices oldest-first in batches separated by the queue cooldown.

        Args:
            batch_size: Cards refreshed per batch
            limit: Maximum number of cards overall
            priority_only: Only refresh high tier cards

        Returns:
            Dict: counts, number of batches and per-card results
        """
        try:
            query = tier_price_filter("high") if priority_only else {}
            cursor = get_cards_collection().find(query, CARD_PRICE_PROJECTION).sort("price_updated_at", 1)
            if limit:
                cursor = cursor.limit(limit)
            cards = list(cursor)

            total_batches = math.ceil(len(cards) / batch_size) if cards else 0
            logger.info(f"Updating {len(cards)} card prices in {total_batches} batches")

            results = []
            for index in range(total_batches):
                batch = cards[index * batch_size:(index + 1) * batch_size]
                results.extend(self._refresh_card(card) for card in batch)

                if index + 1 < total_batches:
                    time.sleep(self.rate_limits.cooldown_ms / 1000)

            summary = self._summarize(results)
            summary["batches"] = total_batches
            return summary

        except Exception as e:
            logger.error(f"Batch price update failed: {e}")
            raise

    def run_scheduled_tiers(self, limits: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        """
        Run tier updates high first, then medium, then low.

        Args:
            limits: Cards per tier, defaults to ``DEFAULT_TIER_LIMITS``

        Returns:
            Dict: per-tier results and an overall summary
        """
        limits = {**DEFAULT_TIER_LIMITS, **(limits or {})}
        results = {}

        for tier in ("high", "medium", "low"):
            logger.info(f"Running scheduled {tier} priority update")
            results[tier] = self.update_prices_by_tier(tier, limits[tier])

        return {
            "results": results,
            "summary": {
                "cardsProcessed": sum(result["cardsProcessed"] for result in results.values()),
                "successfulUpdates": sum(result["successfulUpdates"] for result in results.values()),
                "failedUpdates": sum(result["failedUpdates"] for result in results.values()),
            },
        }

    # Queue

    def schedule_updates(self) -> Dict[str, Any]:
        """
        Queue every stored card with a priority derived from its price.

        Returns:
            Dict: ``queueStats`` and a message
        """
        try:
            logger.info("Starting scheduled price updates")

            cards = list(get_cards_collection().find({}, CARD_PRICE_PROJECTION).sort("price_updated_at", 1))
            if not cards:
                return {"queueStats": QueueStats().model_dump(by_alias=True), "message": "No cards found for updating"}

            items = [
                PriceUpdateQueueItem(
                    card_id=card["id"],
                    card_name=card.get("name", ""),
                    set_id=card.get("set_id"),
                    current_price=card.get("tcg_price"),
                    last_updated=parse_datetime(card.get("price_updated_at")),
                    priority=determine_priority(card.get("tcg_price")),
                )
                for card in cards
            ]
            self.add_to_update_queue(items)

            return {
                "queueStats": self.get_queue_stats().model_dump(by_alias=True),
                "message": f"Successfully queued {len(items)} cards for price updates",
            }

        except Exception as e:
            logger.error(f"Scheduled price updates failed: {e}")
            raise

    def add_to_update_queue(self, items: List[PriceUpdateQueueItem]) -> int:
        """
        Add cards to the queue, skipping ids that are already queued.

        Starts the background worker when it is not running.

        Returns:
            int: Number of cards actually added
        """
        logger.info(f"Adding {len(items)} cards to update queue")

        with self._lock:
            queued_ids = {item.card_id for item in self._queue}
            new_items = []
            for item in items:
                if item.card_id not in queued_ids:
                    queued_ids.add(item.card_id)
                    new_items.append(item)

            self._queue.extend(new_items)
            self._sort_queue()
            queue_size = len(self._queue)

        logger.info(f"Added {len(new_items)} new cards to queue. Total queue size: {queue_size}")

        self._start_processing()
        return len(new_items)

    def _sort_queue(self) -> None:
        # Caller holds the lock
        self._queue.sort(key=lambda item: (
            -PRIORITY_WEIGHT[item.priority],
            timestamp_or_zero(item.last_updated),
        ))

    def _start_processing(self) -> None:
        with self._lock:
            if self._is_processing or not self._queue:
                return
            self._is_processing = True

        self._worker = threading.Thread(target=self._process_queue, name="price-update-queue", daemon=True)
        self._worker.start()

    def _process_queue(self) -> None:
        """Drain the queue in bursts while respecting the cooldown."""
        logger.info("Starting queue processing")
        cooldown = self.rate_limits.cooldown_ms / 1000

        try:
            while True:
                with self._lock:
                    if not self._queue:
                        # Cleared under the same lock that saw the queue empty
                        self._is_processing = False
                        break
                    burst = self._queue[:self.rate_limits.burst_size]
                    del self._queue[:self.rate_limits.burst_size]

                since_last_burst = time.monotonic() - self._last_burst_time
                if since_last_burst < cooldown:
                    time.sleep(cooldown - since_last_burst)

                with ThreadPoolExecutor(max_workers=len(burst)) as executor:
                    results = list(executor.map(self._update_single_card, burst))

                successful = sum(1 for result in results if result["success"])
                logger.info(f"Processed {len(burst)} cards: {successful} successful, {len(burst) - successful} failed")

                self._last_burst_time = time.monotonic()
                time.sleep(cooldown)

        except Exception as e:
            logger.error(f"Error processing queue: {e}")
            with self._lock:
                self._is_processing = False

        logger.info("Queue processing completed")

    def _update_single_card(self, item: PriceUpdateQueueItem) -> Dict[str, Any]:
        card = {
            "id": item.card_id,
            "name": item.card_name,
            "set_id": item.set_id,
            "tcg_price": item.current_price,
        }
        return self._refresh_card(card)

    def get_queue_stats(self) -> QueueStats:
        """Counts per priority and an estimate in minutes to drain the queue."""
        with self._lock:
            priorities = [item.priority for item in self._queue]
            is_processing = self._is_processing

        return QueueStats(
            queued_items=len(priorities),
            high_priority_items=priorities.count("high"),
            medium_priority_items=priorities.count("medium"),
            low_priority_items=priorities.count("low"),
            is_processing=is_processing,
            estimated_time_to_complete=math.ceil(len(priorities) / self.rate_limits.requests_per_minute),
        )

    def get_queued_items(self) -> List[PriceUpdateQueueItem]:
        with self._lock:
            return list(self._queue)

    def clear_queue(self) -> int:
        """Drop every queued card; returns how many were dropped."""
        with self._lock:
            cleared = len(self._queue)
            self._queue.clear()

        logger.info(f"Cleared {cleared} cards from update queue")
        return cleared

    # Stats

    @monitor_memory
    def get_price_update_stats(self) -> Dict[str, Any]:
        """
        Price coverage and freshness across all stored cards.

        Returns:
            Dict: totals, tier counts and ``lastUpdated`` (oldest, newest, averageAgeInDays)
        """
        try:
            cards_collection = get_cards_collection()

            total_cards = cards_collection.count_documents({})
            cards_with_prices = cards_collection.count_documents({"tcg_price": {"$ne": None}})
            high_value_cards = cards_collection.count_documents(tier_price_filter("high"))
            medium_value_cards = cards_collection.count_documents(tier_price_filter("medium"))
            low_value_cards = cards_collection.count_documents(tier_price_filter("low"))

            timestamps = [
                parse_datetime(card["price_updated_at"])
                for card in cards_collection.find(
                    {"price_updated_at": {"$ne": None}}, {"_id": 0, "price_updated_at": 1}
                ).sort("price_updated_at", 1)
            ]
            timestamps = [ts for ts in timestamps if ts is not None]

            oldest = newest = None
            average_age_in_days = 0
            if timestamps:
                oldest = format_datetime_for_api(timestamps[0])
                newest = format_datetime_for_api(timestamps[-1])
                now = get_current_utc_datetime()
                total_age_seconds = sum((now - ts).total_seconds() for ts in timestamps)
                average_age_in_days = round(total_age_seconds / len(timestamps) / 86400)

            return {
                "totalCards": total_cards,
                "cardsWithPrices": cards_with_prices,
                "cardsWithoutPrices": total_cards - cards_with_prices,
                "highValueCards": high_value_cards,
                "mediumValueCards": medium_value_cards,
                "lowValueCards": low_value_cards,
                "lastUpdated": {
                    "oldest": oldest,
                    "newest": newest,
                    "averageAgeInDays": average_age_in_days,
                },
            }

        except Exception as e:
            logger.error(f"Error getting price update stats: {e}")
            raise

    def count_price_history(self) -> int:
        """Number of stored price history rows."""
        return get_card_prices_collection().count_documents({})


# Service instance
price_update_service = PriceUpdateService()
