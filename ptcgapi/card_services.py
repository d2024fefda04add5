"""
Card Services Module

Provides card-related services: synchronizing sets, cards and card variations
from the Pokemon TCG API into the database, and the admin card browser.
"""

import logging
import math
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from pymongo import UpdateOne

from . import tcg_api
from .config import (
    CARD_UPSERT_BATCH_SIZE,
    INVENTORY_PRICE_REFRESH_LIMIT,
    SET_SYNC_BATCH_DELAY,
    SET_SYNC_BATCH_SIZE,
)
from .database import (
    get_card_variations_collection,
    get_cards_collection,
    get_inventory_cards_collection,
    get_sets_collection,
)
from .memory_manager import get_memory_manager, monitor_memory
from .models import CardModel, CardVariationModel, SetModel, SetSyncStatus
from .price_update_service import price_update_service
from .utils import (
    SPECIAL_SUBTYPES,
    batch_process_generator,
    clean_document,
    format_datetime_for_api,
    get_card_era,
    get_current_utc_datetime,
    get_holofoil_pattern,
    get_pokemon_generation,
    get_price,
    get_rarity_code,
    get_special_rarity_type,
    get_special_treatment,
    retry_with_backoff,
    timestamp_or_zero,
)

logger = logging.getLogger(__name__)

PRIORITY_WEIGHT = {"high": 3, "medium": 2, "low": 1}

SORT_FIELDS = {
    "name": "name",
    "set": "set_id",
    "number": "number",
    "price": "tcg_price",
    "updated_at": "price_updated_at",
}


def _set_row(api_set: Dict[str, Any], synced_at) -> Dict[str, Any]:
    images = api_set.get("images") or {}
    return SetModel(
        id=api_set["id"],
        name=api_set.get("name", ""),
        series=api_set.get("series"),
        release_date=api_set.get("releaseDate"),
        total=api_set.get("total"),
        printed_total=api_set.get("printedTotal"),
        logo_url=images.get("logo"),
        symbol_url=images.get("symbol"),
        last_sync_at=synced_at,
    ).model_dump()


def _card_row(api_card: Dict[str, Any], existing: Optional[Dict[str, Any]], synced_at) -> Dict[str, Any]:
    api_set = api_card.get("set") or {}
    images = api_card.get("images") or {}
    dex_numbers = api_card.get("nationalPokedexNumbers") or [None]
    new_price = get_price(api_card)

    # Unchanged prices keep their original timestamp
    if existing is not None and new_price == existing.get("tcg_price"):
        tcg_price = existing.get("tcg_price")
        price_updated_at = existing.get("price_updated_at")
    else:
        tcg_price = new_price
        price_updated_at = synced_at

    return CardModel(
        id=api_card["id"],
        name=api_card.get("name", ""),
        supertype=api_card.get("supertype"),
        subtypes=api_card.get("subtypes"),
        types=api_card.get("types"),
        set_id=api_set.get("id", ""),
        number=api_card.get("number"),
        rarity=api_card.get("rarity"),
        rarity_code=get_rarity_code(api_card.get("rarity")),
        card_era=get_card_era(api_set.get("series")),
        image_small=images.get("small"),
        image_large=images.get("large"),
        pokemon_generation=get_pokemon_generation(dex_numbers[0]),
        tcg_price=tcg_price,
        price_updated_at=price_updated_at,
        last_sync_at=synced_at,
    ).model_dump()


def build_card_variations(api_card: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Derive the printed variations of a card from its API payload.

    Args:
        api_card: Card object as returned by the card API

    Returns:
        List[Dict]: variation rows (normal, holofoil, reverse holofoil, special subtypes)
    """
    api_set = api_card.get("set") or {}
    series = api_set.get("series")
    image_url = (api_card.get("images") or {}).get("small")
    prices = (api_card.get("tcgplayer") or {}).get("prices") or {}
    base = {"card_id": api_card["id"], "set_id": api_set.get("id", ""), "image_url": image_url}

    variations = [CardVariationModel(variation_type="Normal", tcg_api_price_key="normal", **base)]

    if prices.get("holofoil"):
        variations.append(CardVariationModel(
            variation_type="Holofoil",
            holofoil_pattern=get_holofoil_pattern(series),
            tcg_api_price_key="holofoil",
            **base,
        ))

    if prices.get("reverseHolofoil"):
        variations.append(CardVariationModel(
            variation_type="Reverse Holofoil",
            holofoil_pattern=get_holofoil_pattern(series),
            tcg_api_price_key="reverseHolofoil",
            **base,
        ))

    for subtype in api_card.get("subtypes") or []:
        if subtype in SPECIAL_SUBTYPES:
            variations.append(CardVariationModel(
                variation_type=subtype,
                treatment=get_special_treatment(api_card),
                is_special_rarity=True,
                special_rarity_type=get_special_rarity_type(api_card, subtype),
                **base,
            ))

    return [variation.model_dump() for variation in variations]


class CardSyncService:
    """Service for mirroring sets and cards from the card API."""

    def __init__(self, batch_delay: float = SET_SYNC_BATCH_DELAY):
        self.memory_manager = get_memory_manager()
        self.batch_delay = batch_delay

    @monitor_memory
    def sync_sets(self) -> int:
        """
        Fetch every set from the card API and upsert it.

        Returns:
            int: Number of sets written
        """
        try:
            logger.info("Starting set sync...")

            payload = retry_with_backoff(tcg_api.get_all_sets)
            synced_at = get_current_utc_datetime()
            rows = [_set_row(api_set, synced_at) for api_set in payload.get("data", [])]

            if rows:
                get_sets_collection().bulk_write(
                    [UpdateOne({"id": row["id"]}, {"$set": row}, upsert=True) for row in rows],
                    ordered=False,
                )

            logger.info(f"Successfully synced {len(rows)} sets")
            return len(rows)

        except Exception as e:
            logger.error(f"Error syncing sets: {e}")
            raise

    def calculate_sync_priority(self, set_id: str) -> str:
        """
        Rank a set by how much of it is held in inventory.

        Returns:
            str: ``high`` above 50 inventory rows, ``medium`` above 10, else ``low``
        """
        try:
            count = get_inventory_cards_collection().count_documents({"set_id": set_id})
        except Exception as e:
            logger.error(f"Error calculating sync priority for set {set_id}: {e}")
            return "low"

        if count > 50:
            return "high"
        if count > 10:
            return "medium"
        return "low"

    @monitor_memory
    def get_sets_to_sync(self, _seeded: bool = False) -> List[SetSyncStatus]:
        """
        List stored sets in the order they should be synchronized.

        Sets are ordered by priority, then by completion (least complete first),
        then by last sync time (oldest first). An empty sets collection is
        seeded from the card API once.

        Returns:
            List[SetSyncStatus]: prioritized sets
        """
        try:
            logger.info("Getting sets that need synchronization...")

            sets = list(get_sets_collection().find({}, {"_id": 0}).sort("last_sync_at", 1))

            if not sets:
                if _seeded:
                    return []
                logger.warning("No sets found in database. Syncing sets first...")
                self.sync_sets()
                return self.get_sets_to_sync(_seeded=True)

            cards_collection = get_cards_collection()
            statuses = []
            for card_set in sets:
                statuses.append(SetSyncStatus(
                    id=card_set["id"],
                    name=card_set.get("name", ""),
                    total=card_set.get("total") or 0,
                    synced_count=cards_collection.count_documents({"set_id": card_set["id"]}),
                    last_sync_at=card_set.get("last_sync_at"),
                    priority=self.calculate_sync_priority(card_set["id"]),
                ))

            statuses.sort(key=lambda status: (
                -PRIORITY_WEIGHT[status.priority],
                status.completion_ratio,
                timestamp_or_zero(status.last_sync_at),
            ))
            return statuses

        except Exception as e:
            logger.error(f"Error getting sets to sync: {e}")
            raise

    @monitor_memory
    def sync_all_sets(self, batch_size: int = SET_SYNC_BATCH_SIZE) -> Dict[str, Any]:
        """
        Sync the cards of every set, batch by batch.

        Sets inside a batch are synchronized concurrently; a failing set is
        recorded and does not stop the others. The configured delay separates
        consecutive batches.

        Args:
            batch_size: Number of sets synchronized at once

        Returns:
            Dict: per-set outcomes and totals
        """
        try:
            logger.info(f"Starting full synchronization with batch size {batch_size}...")

            sets_to_sync = self.get_sets_to_sync()
            total_batches = math.ceil(len(sets_to_sync) / batch_size) if sets_to_sync else 0
            logger.info(f"Found {len(sets_to_sync)} sets to sync")

            results = []
            for index, batch in enumerate(batch_process_generator(sets_to_sync, batch_size)):
                logger.info(f"Processing batch {index + 1}/{total_batches}")

                with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                    results.extend(executor.map(self._sync_set_safely, batch))

                self.memory_manager.check_memory_and_cleanup()

                if index + 1 < total_batches:
                    logger.info("Waiting between batches to respect API rate limits...")
                    time.sleep(self.batch_delay)

            synced = sum(1 for result in results if result["success"])
            logger.info("Full synchronization completed")

            return {
                "totalSets": len(sets_to_sync),
                "batches": total_batches,
                "syncedSets": synced,
                "failedSets": len(results) - synced,
                "results": results,
            }

        except Exception as e:
            logger.error(f"Error in full synchronization: {e}")
            raise

    def _sync_set_safely(self, status: SetSyncStatus) -> Dict[str, Any]:
        try:
            logger.info(f"Syncing set {status.name} ({status.id}) - Priority: {status.priority}")
            summary = self.sync_cards_by_set(status.id)
            return {"setId": status.id, "priority": status.priority, "success": True, **summary}
        except Exception as e:
            logger.error(f"Error syncing set {status.id}: {e}")
            return {"setId": status.id, "priority": status.priority, "success": False, "error": str(e)}

    @monitor_memory
    def sync_cards_by_set(self, set_id: str) -> Dict[str, Any]:
        """
        Fetch every card of a set and upsert cards and variations.

        Stored prices are only replaced when the API price differs, so the
        price timestamp keeps meaning "last change".

        Args:
            set_id: Set identifier

        Returns:
            Dict: counts of cards written and variations processed
        """
        try:
            logger.info(f"Starting card sync for set {set_id}...")
            cards_collection = get_cards_collection()

            existing_cards = {
                card["id"]: card
                for card in cards_collection.find(
                    {"set_id": set_id}, {"_id": 0, "id": 1, "tcg_price": 1, "price_updated_at": 1}
                )
            }
            logger.info(f"Found {len(existing_cards)} existing cards for set {set_id}")

            payload = retry_with_backoff(lambda: tcg_api.get_cards_by_set(set_id))
            api_cards = payload.get("data", [])

            synced_at = get_current_utc_datetime()
            rows = [_card_row(card, existing_cards.get(card["id"]), synced_at) for card in api_cards]

            total_batches = math.ceil(len(rows) / CARD_UPSERT_BATCH_SIZE)
            for index, batch in enumerate(batch_process_generator(rows, CARD_UPSERT_BATCH_SIZE)):
                logger.info(f"Inserting batch {index + 1}/{total_batches} for set {set_id}")
                cards_collection.bulk_write(
                    [UpdateOne({"id": row["id"]}, {"$set": row}, upsert=True) for row in batch],
                    ordered=False,
                )

            variation_successes = 0
            variation_errors = 0
            for api_card in api_cards:
                try:
                    self.process_card_variations(api_card)
                    variation_successes += 1
                except Exception as e:
                    logger.error(f"Error processing variations for card {api_card.get('id')}: {e}")
                    variation_errors += 1

            get_sets_collection().update_one({"id": set_id}, {"$set": {"last_sync_at": synced_at}})

            logger.info(f"Successfully synced {len(rows)} cards for set {set_id}")
            logger.info(f"Processed variations: {variation_successes} successful, {variation_errors} failed")

            return {
                "cardsSynced": len(rows),
                "variationsProcessed": variation_successes,
                "variationErrors": variation_errors,
            }

        except Exception as e:
            logger.error(f"Error syncing cards for set {set_id}: {e}")
            raise

    def process_card_variations(self, api_card: Dict[str, Any]) -> int:
        """
        Insert the variations of a card that are not stored yet.

        Variations are identified by ``(variation_type, treatment)``.

        Returns:
            int: Number of variations inserted
        """
        collection = get_card_variations_collection()
        existing = {
            (variation["variation_type"], variation.get("treatment"))
            for variation in collection.find(
                {"card_id": api_card["id"]}, {"_id": 0, "variation_type": 1, "treatment": 1}
            )
        }

        inserted = 0
        for variation in build_card_variations(api_card):
            key = (variation["variation_type"], variation["treatment"])
            if key in existing:
                continue
            collection.insert_one(variation)
            existing.add(key)
            inserted += 1

        return inserted

    def sync_set_metadata(self) -> Dict[str, Any]:
        """
        Synchronize set metadata and report the stored set count.

        Returns:
            Dict: ``totalSets``, ``syncedAt`` and ``success``
        """
        try:
            self.sync_sets()
            total_sets = get_sets_collection().count_documents({})

            return {
                "totalSets": total_sets,
                "syncedAt": format_datetime_for_api(get_current_utc_datetime()),
                "success": True,
            }
        except Exception as e:
            logger.error(f"Failed to sync all sets: {e}")
            raise

    def sync_cards_for_set(self, set_id: str) -> Dict[str, Any]:
        """
        Synchronize one set's cards and summarize what is stored afterwards.

        Failures are reported with ``success: False`` rather than raised.
        """
        synced_at = format_datetime_for_api(get_current_utc_datetime())
        try:
            self.sync_cards_by_set(set_id)

            return {
                "setId": set_id,
                "totalCards": get_cards_collection().count_documents({"set_id": set_id}),
                "totalVariations": get_card_variations_collection().count_documents({"set_id": set_id}),
                "syncedAt": synced_at,
                "success": True,
            }
        except Exception as e:
            logger.error(f"Failed to sync cards for set {set_id}: {e}")
            return {
                "setId": set_id,
                "totalCards": 0,
                "totalVariations": 0,
                "syncedAt": synced_at,
                "success": False,
                "error": str(e),
            }

    def get_all_sets(self) -> List[Dict[str, Any]]:
        """Stored sets, most recent release first."""
        cursor = get_sets_collection().find(
            {}, {"_id": 0, "id": 1, "name": 1, "release_date": 1}
        ).sort("release_date", -1)
        return [clean_document(card_set) for card_set in cursor]

    @monitor_memory
    def update_prices_for_inventory_cards(self) -> Dict[str, Any]:
        """
        Refresh the price of every distinct card held in inventory.

        Returns:
            Dict: counts plus one result per card
        """
        try:
            inventory = get_inventory_cards_collection().find(
                {}, {"_id": 0, "card_id": 1}
            ).sort("card_id", 1).limit(INVENTORY_PRICE_REFRESH_LIMIT)

            card_ids = list(dict.fromkeys(row["card_id"] for row in inventory if row.get("card_id")))
            if not card_ids:
                logger.info("No inventory cards to update prices for")
                return {"cardsProcessed": 0, "successfulUpdates": 0, "failedUpdates": 0, "results": []}

            logger.info(f"Updating prices for {len(card_ids)} unique cards in inventory")

            results = [price_update_service.update_price_for_card(card_id) for card_id in card_ids]
            successful = sum(1 for result in results if result["success"])

            logger.info("Inventory price update complete")
            return {
                "cardsProcessed": len(card_ids),
                "successfulUpdates": successful,
                "failedUpdates": len(results) - successful,
                "results": results,
            }

        except Exception as e:
            logger.error(f"Error updating inventory card prices: {e}")
            raise


class CardBrowserService:
    """Service behind the admin card browser."""

    def build_filter(self, filters: Dict[str, Any]) -> Dict[str, Any]:
        """
        Translate browser filters into a MongoDB filter.

        Recognized keys: search, set_id, rarity, type, generation, era,
        min_price, max_price.
        """
        query: Dict[str, Any] = {}

        if filters.get("search"):
            query["name"] = {"$regex": re.escape(filters["search"]), "$options": "i"}
        if filters.get("set_id"):
            query["set_id"] = filters["set_id"]
        if filters.get("rarity"):
            query["rarity"] = filters["rarity"]
        if filters.get("type"):
            query["types"] = filters["type"]
        if filters.get("generation"):
            query["pokemon_generation"] = filters["generation"]
        if filters.get("era"):
            query["card_era"] = filters["era"]

        price_filter = {}
        if filters.get("min_price") is not None:
            price_filter["$gte"] = filters["min_price"]
        if filters.get("max_price") is not None:
            price_filter["$lte"] = filters["max_price"]
        if price_filter:
            query["tcg_price"] = price_filter

        return query

    @monitor_memory
    def list_cards(
        self,
        filters: Dict[str, Any],
        sort_field: str = "name",
        sort_order: str = "asc",
        page: int = 1,
        limit: int = 50,
    ) -> Dict[str, Any]:
        """
        One page of cards plus the facet values the browser offers as filters.

        Raises:
            ValueError: unknown sort field or order, page or limit below 1
        """
        if sort_field not in SORT_FIELDS:
            raise ValueError(f"Invalid sort field: {sort_field}")
        if sort_order not in ("asc", "desc"):
            raise ValueError(f"Invalid sort order: {sort_order}")
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")

        cards_collection = get_cards_collection()
        query = self.build_filter(filters)

        total_count = cards_collection.count_documents(query)
        cursor = (
            cards_collection.find(query, {"_id": 0})
            .sort(SORT_FIELDS[sort_field], 1 if sort_order == "asc" else -1)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        cards = [clean_document(card) for card in cursor]

        sets = [
            clean_document(card_set)
            for card_set in get_sets_collection().find(
                {}, {"_id": 0, "id": 1, "name": 1, "series": 1, "release_date": 1}
            ).sort("release_date", -1)
        ]
        set_names = {card_set["id"]: card_set.get("name") for card_set in sets}
        for card in cards:
            card["set_name"] = set_names.get(card.get("set_id")) or "Unknown Set"

        return {
            "cards": cards,
            "totalCount": total_count,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total_count / limit),
            "sets": sets,
            "rarities": self.get_rarities(),
            "types": self._distinct("types"),
            "generations": self._distinct("pokemon_generation"),
            "eras": self._distinct("card_era"),
            "filters": {key: value for key, value in filters.items() if value is not None},
        }

    def get_rarities(self) -> List[str]:
        """Distinct non-empty rarities across all cards, sorted."""
        return self._distinct("rarity")

    def _distinct(self, field: str) -> List[Any]:
        values = get_cards_collection().distinct(field, {field: {"$ne": None}})
        return sorted(value for value in values if value)


# Service instances
card_sync_service = CardSyncService()
card_browser_service = CardBrowserService()
