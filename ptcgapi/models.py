"""
Models Module

Defines Pydantic models and data structures used throughout the PTCG inventory API.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

PriorityTier = Literal["high", "medium", "low"]


class SetModel(BaseModel):
    """Row stored in the sets collection."""

    id: str
    name: str
    series: Optional[str] = None
    release_date: Optional[str] = None
    total: Optional[int] = None
    printed_total: Optional[int] = None
    logo_url: Optional[str] = None
    symbol_url: Optional[str] = None
    last_sync_at: Optional[datetime] = None


class CardModel(BaseModel):
    """Row stored in the cards collection."""

    id: str
    name: str
    supertype: Optional[str] = None
    subtypes: Optional[List[str]] = None
    types: Optional[List[str]] = None
    set_id: str
    number: Optional[str] = None
    rarity: Optional[str] = None
    rarity_code: Optional[str] = None
    card_era: Optional[str] = None
    language: str = "English"
    image_small: Optional[str] = None
    image_large: Optional[str] = None
    pokemon_generation: Optional[int] = None
    tcg_price: Optional[float] = None
    price_updated_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None


class CardVariationModel(BaseModel):
    """Printed variation of a card (normal, holofoil, special subtypes)."""

    card_id: str
    set_id: str
    variation_type: str
    treatment: Optional[str] = None
    holofoil_pattern: Optional[str] = None
    is_special_rarity: bool = False
    special_rarity_type: Optional[str] = None
    image_url: Optional[str] = None
    tcg_api_price_key: str = "normal"


class PriceUpdateQueueItem(BaseModel):
    """Card waiting in the in-memory price update queue."""

    card_id: str = Field(alias="cardId")
    card_name: str = Field(alias="cardName")
    set_id: Optional[str] = Field(default=None, alias="setId")
    priority: PriorityTier
    current_price: Optional[float] = Field(default=None, alias="currentPrice")
    last_updated: Optional[datetime] = Field(default=None, alias="lastUpdated")

    class Config:
        populate_by_name = True


class QueueStats(BaseModel):
    """Snapshot of the price update queue."""

    queued_items: int = Field(0, alias="queuedItems")
    high_priority_items: int = Field(0, alias="highPriorityItems")
    medium_priority_items: int = Field(0, alias="mediumPriorityItems")
    low_priority_items: int = Field(0, alias="lowPriorityItems")
    is_processing: bool = Field(False, alias="isProcessing")
    estimated_time_to_complete: int = Field(0, alias="estimatedTimeToComplete")  # minutes

    class Config:
        populate_by_name = True


class RateLimitConfig(BaseModel):
    """Rate limits for draining the price update queue."""

    requests_per_minute: int = 30
    burst_size: int = 5
    cooldown_ms: int = 2000


class RetryConfig(BaseModel):
    """Exponential backoff settings for outbound card API calls."""

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 5000


class SetSyncStatus(BaseModel):
    """Sync progress of a single set used to order full synchronizations."""

    id: str
    name: str
    total: int = 0
    synced_count: int = Field(0, alias="syncedCount")
    last_sync_at: Optional[datetime] = Field(default=None, alias="lastSyncAt")
    priority: PriorityTier = "low"

    class Config:
        populate_by_name = True

    @property
    def completion_ratio(self) -> float:
        if not self.total:
            return 0.0
        return self.synced_count / self.total


class CardSearchParams(BaseModel):
    """Filters accepted by the cross-set card search."""

    name: Optional[str] = None
    set_id: Optional[str] = None
    rarity: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    limit: int = Field(50, ge=1, le=500)
    offset: int = Field(0, ge=0)
    include_set_data: bool = False


class SearchResult(BaseModel):
    """Result of a card search, cached by query key."""

    cards: List[Dict[str, Any]] = Field(default_factory=list)
    total_count: int = Field(0, alias="totalCount")
    execution_time_ms: int = Field(0, alias="executionTimeMs")
    query: str = ""

    class Config:
        populate_by_name = True


class ValidationIssue(BaseModel):
    """Error or warning raised by a data validation run."""

    type: str
    message: str
    affected_entities: Optional[List[str]] = Field(default=None, alias="affectedEntities")

    class Config:
        populate_by_name = True


class ValidationStats(BaseModel):
    """Aggregate figures gathered during a data validation run."""

    total_sets: int = Field(0, alias="totalSets")
    total_cards: int = Field(0, alias="totalCards")
    sets_without_cards: int = Field(0, alias="setsWithoutCards")
    cards_without_prices: int = Field(0, alias="cardsWithoutPrices")
    cards_without_images: int = Field(0, alias="cardsWithoutImages")
    average_cards_per_set: float = Field(0.0, alias="averageCardsPerSet")
    oldest_price_update: Optional[str] = Field(default=None, alias="oldestPriceUpdate")
    newest_price_update: Optional[str] = Field(default=None, alias="newestPriceUpdate")

    class Config:
        populate_by_name = True


class ValidationResult(BaseModel):
    """Outcome of a data validation run."""

    is_valid: bool = Field(True, alias="isValid")
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    stats: ValidationStats = Field(default_factory=ValidationStats)

    class Config:
        populate_by_name = True
