"""
Pokemon TCG API Client Module

Thin wrapper around the Pokemon TCG REST API used for set, card and price data.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from .config import (
    POKEMONTCG_API_KEY,
    POKEMONTCG_API_URL,
    POKEMONTCG_PAGE_SIZE,
    POKEMONTCG_REQUEST_TIMEOUT,
)

logger = logging.getLogger(__name__)


class CardApiError(Exception):
    """Raised when the card API answers with a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _headers() -> Dict[str, str]:
    headers = {"Accept": "application/json"}
    if POKEMONTCG_API_KEY:
        headers["X-Api-Key"] = POKEMONTCG_API_KEY
    return headers


def _get(path: str, params: Optional[Dict[str, Any]] = None, what: str = "resource") -> Dict[str, Any]:
    response = requests.get(
        f"{POKEMONTCG_API_URL}{path}",
        params=params,
        headers=_headers(),
        timeout=POKEMONTCG_REQUEST_TIMEOUT,
    )

    if response.status_code != 200:
        raise CardApiError(
            f"Failed to fetch {what}: {response.status_code} {response.reason}",
            status_code=response.status_code,
        )

    return response.json()


def _get_all_pages(path: str, params: Optional[Dict[str, Any]] = None, what: str = "resource") -> List[Dict[str, Any]]:
    """Follow page/pageSize until totalCount items have been collected."""
    items: List[Dict[str, Any]] = []
    page = 1

    while True:
        page_params = dict(params or {})
        page_params.update({"page": page, "pageSize": POKEMONTCG_PAGE_SIZE})
        payload = _get(path, page_params, what)

        data = payload.get("data", [])
        items.extend(data)

        total_count = payload.get("totalCount", len(items))
        if not data or len(items) >= total_count:
            break
        page += 1

    logger.debug(f"Fetched {len(items)} items for {what} across {page} page(s)")
    return items


def get_all_sets() -> Dict[str, Any]:
    """
    Get all sets from the Pokemon TCG API.

    Returns:
        Dict: ``{"data": [...]}`` with every set
    """
    return {"data": _get_all_pages("/sets", what="sets")}


def get_cards_by_set(set_id: str) -> Dict[str, Any]:
    """
    Get every card of a set from the Pokemon TCG API.

    Args:
        set_id: Set identifier, e.g. ``sv1``

    Returns:
        Dict: ``{"data": [...]}`` with every card of the set
    """
    return {"data": _get_all_pages("/cards", {"q": f"set.id:{set_id}"}, what=f"cards for set {set_id}")}


def get_card_by_id(card_id: str) -> Dict[str, Any]:
    """
    Get a single card from the Pokemon TCG API.

    Args:
        card_id: Card identifier, e.g. ``sv1-25``

    Returns:
        Dict: ``{"data": {...}}``
    """
    return _get(f"/cards/{card_id}", what=f"card {card_id}")


def get_sets_sample(page_size: int = 1) -> Dict[str, Any]:
    """Fetch the first page of sets; used as a cheap availability probe."""
    return _get("/sets", {"page": 1, "pageSize": page_size}, what="sets")
