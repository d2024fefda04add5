"""
Data Validator Module

Consistency and completeness checks over stored sets and cards.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

from .config import VALIDATION_MAX_AFFECTED_ENTITIES, VALIDATION_PAGE_SIZE
from .database import get_cards_collection, get_sets_collection
from .memory_manager import monitor_memory
from .models import ValidationIssue, ValidationResult, ValidationStats
from .utils import format_datetime_for_api, format_entity, parse_datetime

logger = logging.getLogger(__name__)

CARD_VALIDATION_PROJECTION = {
    "_id": 0,
    "id": 1,
    "name": 1,
    "set_id": 1,
    "tcg_price": 1,
    "price_updated_at": 1,
    "image_small": 1,
    "image_large": 1,
}


def _affected(documents: List[Dict[str, Any]]) -> List[str]:
    return [format_entity(document) for document in documents[:VALIDATION_MAX_AFFECTED_ENTITIES]]


class DataValidator:
    """Runs data-quality checks and reports them as a ValidationResult."""

    def __init__(self, page_size: int = VALIDATION_PAGE_SIZE):
        self.page_size = page_size

    def _iter_cards(self, query: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        """Yield matching cards page by page."""
        cards_collection = get_cards_collection()
        page = 0

        while True:
            paged_cards = list(
                cards_collection.find(query, CARD_VALIDATION_PROJECTION)
                .sort("id", 1)
                .skip(page * self.page_size)
                .limit(self.page_size)
            )
            if paged_cards:
                logger.info(f"Fetched page {page + 1}: {len(paged_cards)} cards")
            yield from paged_cards

            if len(paged_cards) < self.page_size:
                break
            page += 1

    def _check_cards(
        self,
        cards: List[Dict[str, Any]],
        result: ValidationResult,
        scope: str = "",
    ) -> None:
        stats = result.stats
        stats.total_cards = len(cards)

        cards_without_prices = [card for card in cards if card.get("tcg_price") is None]
        stats.cards_without_prices = len(cards_without_prices)
        if cards_without_prices:
            result.warnings.append(ValidationIssue(
                type="CARDS_WITHOUT_PRICES",
                message=f"Found {len(cards_without_prices)} cards without prices{scope}",
                affected_entities=_affected(cards_without_prices),
            ))

        cards_without_images = [
            card for card in cards if not card.get("image_small") or not card.get("image_large")
        ]
        stats.cards_without_images = len(cards_without_images)
        if cards_without_images:
            result.warnings.append(ValidationIssue(
                type="CARDS_WITHOUT_IMAGES",
                message=f"Found {len(cards_without_images)} cards without images{scope}",
                affected_entities=_affected(cards_without_images),
            ))

        update_dates = [parse_datetime(card.get("price_updated_at")) for card in cards]
        update_dates = [date for date in update_dates if date is not None]
        if update_dates:
            stats.oldest_price_update = format_datetime_for_api(min(update_dates))
            stats.newest_price_update = format_datetime_for_api(max(update_dates))

    @staticmethod
    def _failed(result: ValidationResult, error: Exception) -> ValidationResult:
        result.errors.append(ValidationIssue(type="VALIDATION_FAILED", message=f"Validation failed: {error}"))
        result.is_valid = False
        return result

    @monitor_memory
    def validate_card_data(self) -> ValidationResult:
        """
        Validate every stored set and card.

        Sets without cards, cards without prices and cards missing an image are
        reported as warnings. Failures while reading become a VALIDATION_FAILED
        error instead of an exception.

        Returns:
            ValidationResult: issues and aggregate stats
        """
        result = ValidationResult()

        try:
            logger.info("Starting data validation")

            sets = list(get_sets_collection().find({}, {"_id": 0, "id": 1, "name": 1, "release_date": 1}))
            result.stats.total_sets = len(sets)

            cards_collection = get_cards_collection()
            sets_without_cards = [
                card_set for card_set in sets
                if cards_collection.count_documents({"set_id": card_set["id"]}, limit=1) == 0
            ]
            result.stats.sets_without_cards = len(sets_without_cards)
            if sets_without_cards:
                result.warnings.append(ValidationIssue(
                    type="SETS_WITHOUT_CARDS",
                    message=f"Found {len(sets_without_cards)} sets without any cards",
                    affected_entities=_affected(sets_without_cards),
                ))

            logger.info("Fetching all cards using pagination")
            cards = list(self._iter_cards({}))
            logger.info(f"Total cards fetched: {len(cards)}")

            self._check_cards(cards, result)
            if sets:
                result.stats.average_cards_per_set = len(cards) / len(sets)

            result.is_valid = not result.errors
            logger.info("Data validation completed successfully")
            return result

        except Exception as e:
            logger.error(f"Data validation failed: {e}")
            return self._failed(result, e)

    @monitor_memory
    def validate_set(self, set_id: str) -> ValidationResult:
        """
        Validate a single set and its cards.

        Args:
            set_id: Set identifier

        Returns:
            ValidationResult: SET_NOT_FOUND error when the set is not stored
        """
        result = ValidationResult()
        result.stats.total_sets = 1

        try:
            logger.info(f"Starting validation for set {set_id}")

            card_set: Optional[Dict[str, Any]] = get_sets_collection().find_one(
                {"id": set_id}, {"_id": 0, "id": 1, "name": 1, "release_date": 1}
            )
            if card_set is None:
                result.errors.append(ValidationIssue(
                    type="SET_NOT_FOUND",
                    message=f"Set {set_id} not found in the database",
                ))
                result.is_valid = False
                return result

            cards = list(self._iter_cards({"set_id": set_id}))
            logger.info(f"Total cards fetched for set {set_id}: {len(cards)}")

            if not cards:
                result.stats.sets_without_cards = 1
                result.warnings.append(ValidationIssue(
                    type="SET_WITHOUT_CARDS",
                    message=f"Set {set_id} ({card_set.get('name')}) has no cards",
                    affected_entities=[format_entity(card_set)],
                ))

            self._check_cards(cards, result, scope=f" in set {set_id}")
            result.stats.average_cards_per_set = float(len(cards))

            result.is_valid = not result.errors
            logger.info(f"Validation for set {set_id} completed successfully")
            return result

        except Exception as e:
            logger.error(f"Validation for set {set_id} failed: {e}")
            return self._failed(result, e)


# Service instance
data_validator = DataValidator()
