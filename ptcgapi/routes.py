"""
Routes Module

Defines Flask routes and API endpoints for the PTCG inventory API.
All route handlers are organized here with proper error handling and logging.
"""

import logging
import time
import traceback
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from . import tcg_api
from .card_search import card_search
from .card_services import card_browser_service, card_sync_service
from .config import is_development
from .data_validator import data_validator
from .memory_manager import force_memory_cleanup, get_memory_stats, monitor_memory
from .models import CardSearchParams
from .price_update_service import price_update_service
from .utils import format_datetime_for_api, get_current_utc_datetime

logger = logging.getLogger(__name__)

SYNC_MODES = ("full", "sets-only", "cards-only")
SCHEDULE_MODES = ("stats", "run")
PRICE_TIERS = ("high", "medium", "low", "all")


def _timestamp() -> str:
    return format_datetime_for_api(get_current_utc_datetime())


def _elapsed_ms(start_time: float) -> int:
    return round((time.perf_counter() - start_time) * 1000)


def _int_arg(name: str, default: Optional[int] = None, minimum: int = 1) -> Optional[int]:
    """Read an integer query parameter; raises ValueError when malformed."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer")
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}")
    return value


def _float_arg(name: str) -> Optional[float]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number")


def _bool_arg(name: str, default: bool = False) -> bool:
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.lower() == "true"


def _error_response(message: str, error: Exception, status_code: int = 500, **extra: Any):
    """JSON error body; the traceback is only exposed in development."""
    body: Dict[str, Any] = {
        "status": "error",
        "message": message,
        "error": str(error),
        "timestamp": _timestamp(),
        **extra,
    }
    if is_development():
        body["stack"] = traceback.format_exc()
    return jsonify(body), status_code


def _bad_request(error: Exception, **extra: Any):
    return jsonify({"status": "error", "message": str(error), "timestamp": _timestamp(), **extra}), 400


def register_routes(app: Flask) -> None:
    """
    Register all routes with the Flask application.

    Args:
        app: Flask application instance
    """

    @app.route("/health", methods=["GET"])
    @monitor_memory
    def health_check():
        """Health check endpoint."""
        return jsonify(
            {
                "status": "healthy",
                "service": "PTCG Inventory API",
                "timestamp": _timestamp(),
                "memory_stats": get_memory_stats(),
            }
        )

    @app.route("/api/card-search", methods=["GET"])
    def search_cards():
        """Search cards across every set."""
        try:
            params = CardSearchParams(
                name=request.args.get("q") or None,
                set_id=request.args.get("set") or None,
                rarity=request.args.get("rarity") or None,
                min_price=_float_arg("minPrice"),
                max_price=_float_arg("maxPrice"),
                limit=_int_arg("limit", 20),
                offset=_int_arg("offset", 0, minimum=0),
                include_set_data=_bool_arg("includeSetData"),
            )
            use_cache = request.args.get("cache") != "false"
        except ValueError as e:
            return _bad_request(e)

        try:
            start_time = time.perf_counter()
            logger.info(f"Card search request: {params.model_dump(exclude_none=True)}, cache={use_cache}")

            result = card_search.search_cards(params, use_cache=use_cache)

            return jsonify({
                "status": "success",
                **result.model_dump(by_alias=True),
                "executionTimeMs": _elapsed_ms(start_time),
            })

        except Exception as e:
            logger.error(f"Search failed: {e}")
            return _error_response("Card search failed", e)

    @app.route("/api/card-search/cache", methods=["DELETE"])
    def clear_search_cache():
        """Clear the card search cache."""
        try:
            card_search.clear_cache()
            return jsonify({"status": "success", "message": "Search cache cleared", "timestamp": _timestamp()})
        except Exception as e:
            logger.error(f"Error clearing search cache: {e}")
            return _error_response("Failed to clear search cache", e)

    @app.route("/api/admin/cards", methods=["GET"])
    def admin_cards():
        """Paginated card listing with the facets the admin browser filters on."""
        try:
            filters = {
                "search": request.args.get("search") or None,
                "set_id": request.args.get("set") or None,
                "rarity": request.args.get("rarity") or None,
                "type": request.args.get("type") or None,
                "generation": _int_arg("generation"),
                "era": request.args.get("era") or None,
                "min_price": _float_arg("minPrice"),
                "max_price": _float_arg("maxPrice"),
            }
            sort_field = request.args.get("sort", "name")
            sort_order = request.args.get("order", "asc")
            page = _int_arg("page", 1)
            limit = _int_arg("limit", 50)

            result = card_browser_service.list_cards(filters, sort_field, sort_order, page, limit)
            return jsonify({"status": "success", **result})

        except ValueError as e:
            return _bad_request(e)
        except Exception as e:
            logger.error(f"Error in admin cards API: {e}")
            return _error_response("Failed to load cards", e)

    @app.route("/api/rarities", methods=["GET"])
    def get_rarities():
        """Distinct card rarities."""
        try:
            rarities = card_browser_service.get_rarities()
            return jsonify({"status": "success", "rarities": rarities, "count": len(rarities)})
        except Exception as e:
            logger.error(f"Error fetching rarities: {e}")
            return _error_response("Failed to fetch rarities", e)

    @app.route("/api/sets", methods=["GET"])
    def list_sets():
        """Stored sets for the admin set pickers, newest release first."""
        try:
            sets = card_sync_service.get_all_sets()
            return jsonify({"status": "success", "sets": sets, "count": len(sets)})
        except Exception as e:
            logger.error(f"Error fetching sets: {e}")
            return _error_response("Failed to fetch sets", e)

    @app.route("/api/data-validation", methods=["GET"])
    def validate_data():
        """Run data-quality checks for every set or a single set."""
        set_id = request.args.get("setId") or None
        start_time = time.perf_counter()

        try:
            logger.info(f"Starting data validation{f' for set {set_id}' if set_id else ''}")

            if set_id:
                result = data_validator.validate_set(set_id)
            else:
                result = data_validator.validate_card_data()

            return jsonify({
                "status": "success",
                "setId": set_id,
                "executionTimeMs": _elapsed_ms(start_time),
                "result": result.model_dump(mode="json", by_alias=True),
            })

        except Exception as e:
            logger.error(f"Data validation failed: {e}")
            return _error_response("Data validation failed", e, setId=set_id, executionTimeMs=_elapsed_ms(start_time))

    @app.route("/api/pokemon-tcg", methods=["GET"])
    def sync_pokemon_tcg():
        """Synchronize sets and cards from the Pokemon TCG API."""
        set_id = request.args.get("setId") or None
        mode = request.args.get("mode", "full")
        start_time = time.perf_counter()

        try:
            if mode not in SYNC_MODES:
                raise ValueError(f"Invalid mode: {mode}. Valid modes are {', '.join(SYNC_MODES)}")
            batch_size = _int_arg("batchSize", 5)
        except ValueError as e:
            return _bad_request(e, mode=mode, setId=set_id)

        try:
            logger.info(f"Starting sync operation: mode={mode}, setId={set_id or 'all'}, batchSize={batch_size}")

            if mode == "sets-only":
                result = card_sync_service.sync_set_metadata()
            elif set_id:
                result = card_sync_service.sync_cards_for_set(set_id)
            elif mode == "cards-only":
                result = {"message": "Syncing all cards requires mode=full or a setId"}
            else:
                result = {
                    "sets": card_sync_service.sync_set_metadata(),
                    "cards": card_sync_service.sync_all_sets(batch_size),
                }

            execution_time_ms = _elapsed_ms(start_time)
            logger.info(f"Sync completed in {execution_time_ms}ms")

            return jsonify({
                "status": "success",
                "mode": mode,
                "setId": set_id,
                "executionTimeMs": execution_time_ms,
                "result": result,
            })

        except Exception as e:
            logger.error(f"Sync failed: {e}")
            return _error_response("Sync failed", e, mode=mode, setId=set_id, executionTimeMs=_elapsed_ms(start_time))

    @app.route("/api/pokemon-tcg/health", methods=["GET"])
    def pokemon_tcg_health():
        """Probe the Pokemon TCG API."""
        try:
            payload = tcg_api.get_sets_sample()
            return jsonify({
                "status": "success",
                "message": "Pokemon TCG API is available",
                "timestamp": _timestamp(),
                "stats": {"totalSets": payload.get("totalCount", len(payload.get("data", [])))},
            })
        except Exception as e:
            logger.error(f"Pokemon TCG API health check failed: {e}")
            return _error_response("Pokemon TCG API is unavailable", e, status_code=503)

    @app.route("/api/price-update", methods=["GET"])
    def update_prices():
        """Refresh prices for one card, a price tier, or oldest-first in batches."""
        card_id = request.args.get("cardId") or None
        tier = request.args.get("tier") or None
        start_time = time.perf_counter()

        try:
            if tier is not None and tier not in PRICE_TIERS:
                raise ValueError(f"Invalid tier: {tier}. Valid tiers are {', '.join(PRICE_TIERS)}")
            batch_size = _int_arg("batchSize", 10)
            limit = _int_arg("limit")
            priority_only = _bool_arg("priorityOnly")
        except ValueError as e:
            return _bad_request(e, cardId=card_id)

        try:
            if card_id:
                logger.info(f"Starting price update for specific card: {card_id}")
                result = price_update_service.update_price_for_card(card_id)
                if result.get("statusCode") == 404:
                    return jsonify({
                        "status": "error",
                        "cardId": card_id,
                        "executionTimeMs": _elapsed_ms(start_time),
                        "result": result,
                    }), 404
            elif tier:
                result = price_update_service.update_prices_by_tier(tier, limit or 50)
            else:
                logger.info(
                    f"Starting batch price update: batchSize={batch_size}, "
                    f"limit={limit or 'none'}, priorityOnly={priority_only}"
                )
                result = price_update_service.batch_update_prices(batch_size, limit, priority_only)

            return jsonify({
                "status": "success",
                "cardId": card_id,
                "executionTimeMs": _elapsed_ms(start_time),
                "result": result,
            })

        except Exception as e:
            logger.error(f"Price update failed: {e}")
            return _error_response("Price update failed", e, cardId=card_id, executionTimeMs=_elapsed_ms(start_time))

    @app.route("/api/price-update/schedule", methods=["GET"])
    def price_update_schedule():
        """Price freshness stats, or run the tiered update schedule."""
        mode = request.args.get("mode", "stats")
        if mode not in SCHEDULE_MODES:
            return _bad_request(ValueError(f"Invalid mode: {mode}. Valid modes are 'stats' and 'run'."))

        try:
            if mode == "stats":
                logger.info("Fetching price update statistics")
                return jsonify({
                    "status": "success",
                    "timestamp": _timestamp(),
                    "stats": price_update_service.get_price_update_stats(),
                })

            logger.info("Starting scheduled price updates")
            start_time = time.perf_counter()
            scheduled = price_update_service.run_scheduled_tiers()

            return jsonify({
                "status": "success",
                "timestamp": _timestamp(),
                "executionTimeMs": _elapsed_ms(start_time),
                **scheduled,
            })

        except Exception as e:
            logger.error(f"Price schedule failed: {e}")
            return _error_response("Price schedule failed", e, mode=mode)

    @app.route("/api/price-update/queue", methods=["POST"])
    def queue_price_updates():
        """Queue every stored card for a rate-limited price refresh."""
        try:
            result = price_update_service.schedule_updates()
            return jsonify({"status": "success", "timestamp": _timestamp(), **result})
        except Exception as e:
            logger.error(f"Failed to queue price updates: {e}")
            return _error_response("Failed to queue price updates", e)

    @app.route("/api/price-update/queue-stats", methods=["GET"])
    def price_queue_stats():
        """Live price update queue statistics."""
        try:
            return jsonify({
                "status": "success",
                "timestamp": _timestamp(),
                "stats": price_update_service.get_queue_stats().model_dump(by_alias=True),
            })
        except Exception as e:
            logger.error(f"Failed to get queue stats: {e}")
            return _error_response("Failed to get queue stats", e)

    @app.route("/api/price-update/health", methods=["GET"])
    def price_update_health():
        """Probe the price history collection."""
        try:
            logger.info("Performing price update service health check")
            return jsonify({
                "status": "success",
                "message": "Price update service is available",
                "timestamp": _timestamp(),
                "stats": {"cardPricesCount": price_update_service.count_price_history()},
            })
        except Exception as e:
            logger.error(f"Price update service health check failed: {e}")
            return _error_response("Price update service is unavailable", e, status_code=503)

    @app.route("/api/inventory/refresh-prices", methods=["POST"])
    def refresh_inventory_prices():
        """Refresh prices of every card held in inventory."""
        start_time = time.perf_counter()
        try:
            result = card_sync_service.update_prices_for_inventory_cards()
            return jsonify({"status": "success", "executionTimeMs": _elapsed_ms(start_time), "result": result})
        except Exception as e:
            logger.error(f"Inventory price refresh failed: {e}")
            return _error_response("Inventory price refresh failed", e)

    @app.route("/memory/cleanup", methods=["POST"])
    def memory_cleanup():
        """Force memory cleanup."""
        try:
            force_memory_cleanup()
            return jsonify({
                "status": "success",
                "message": "Memory cleanup completed",
                "memory_stats": get_memory_stats(),
            })
        except Exception as e:
            logger.error(f"Error during memory cleanup: {e}")
            return _error_response("Memory cleanup failed", e)

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 errors."""
        return jsonify({"status": "error", "message": "Endpoint not found"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 errors."""
        return jsonify({"status": "error", "message": "Internal server error"}), 500
