"""
Configuration Module

Centralizes all configuration settings, environment variables, and constants
used throughout the PTCG inventory API.
"""

import logging
import os

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

logger = logging.getLogger(__name__)

# Pokemon TCG API Configuration
POKEMONTCG_API_URL = os.getenv("POKEMONTCG_API_URL", "https://api.pokemontcg.io/v2")
POKEMONTCG_API_KEY = os.getenv("POKEMONTCG_API_KEY", "")
POKEMONTCG_REQUEST_TIMEOUT = int(os.getenv("POKEMONTCG_REQUEST_TIMEOUT", "30"))
POKEMONTCG_PAGE_SIZE = 250  # Largest page the API serves

# MongoDB Configuration
MONGODB_CONNECTION_STRING = os.getenv('MONGODB_CONNECTION_STRING')
SETS_COLLECTION = "sets"
CARDS_COLLECTION = "cards"
CARD_VARIATIONS_COLLECTION = "card_variations"
INVENTORY_CARDS_COLLECTION = "inventory_cards"
CARD_PRICES_COLLECTION = "card_prices"

# MongoDB connection settings
MONGODB_CONNECT_TIMEOUT_MS = 60000
MONGODB_SERVER_SELECTION_TIMEOUT_MS = 30000

# Price tier thresholds (USD)
HIGH_TIER_MIN_PRICE = 50.0   # strictly greater than
MEDIUM_TIER_MIN_PRICE = 10.0  # greater than or equal

# Price update queue rate limits
QUEUE_REQUESTS_PER_MINUTE = int(os.getenv('QUEUE_REQUESTS_PER_MINUTE', '30'))
QUEUE_BURST_SIZE = int(os.getenv('QUEUE_BURST_SIZE', '5'))
QUEUE_COOLDOWN_MS = int(os.getenv('QUEUE_COOLDOWN_MS', '2000'))

# Retry configuration for outbound card API calls
RETRY_MAX_RETRIES = 3
RETRY_BASE_DELAY_MS = 1000
RETRY_MAX_DELAY_MS = 5000

# Sync configuration
SET_SYNC_BATCH_SIZE = int(os.getenv('SET_SYNC_BATCH_SIZE', '5'))
SET_SYNC_BATCH_DELAY = float(os.getenv('SET_SYNC_BATCH_DELAY', '5'))  # seconds
CARD_UPSERT_BATCH_SIZE = 100
INVENTORY_PRICE_REFRESH_LIMIT = 500

# Data validation
VALIDATION_PAGE_SIZE = 1000
VALIDATION_MAX_AFFECTED_ENTITIES = 20

# Card search cache
SEARCH_CACHE_TTL_SECONDS = 5 * 60
SEARCH_CACHE_MAX_SIZE = 100

# Memory Management Configuration
MEM_LIMIT_MB = int(os.getenv('MEM_LIMIT', '512'))
MEMORY_WARNING_THRESHOLD = 0.8
MEMORY_CRITICAL_THRESHOLD = 0.9

# Application Configuration
ALLOW_START_WITHOUT_DATABASE = os.getenv('ALLOW_START_WITHOUT_DATABASE', '0') == '1'
DEFAULT_PORT = int(os.getenv("PORT", 8081))
DEBUG_MODE = os.getenv("DEBUG", "true").lower() == "true"

# Logging Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

def get_port() -> int:
    """Get application port from environment."""
    return DEFAULT_PORT

def get_debug_mode() -> bool:
    """Get debug mode setting."""
    return DEBUG_MODE

def is_development() -> bool:
    """Check if running in development environment."""
    return os.getenv("ENVIRONMENT", "development").lower() == "development"

def get_log_level() -> str:
    """Get logging level."""
    return LOG_LEVEL

# Validation
def validate_config() -> bool:
    """
    Validate essential configuration settings.

    Returns:
        bool: True if configuration is valid, False otherwise
    """
    if not MONGODB_CONNECTION_STRING:
        logger.error("MONGODB_CONNECTION_STRING environment variable is required")
        return False

    if MEM_LIMIT_MB <= 0:
        logger.error("MEM_LIMIT must be a positive number")
        return False

    if QUEUE_BURST_SIZE <= 0 or QUEUE_REQUESTS_PER_MINUTE <= 0:
        logger.error("QUEUE_BURST_SIZE and QUEUE_REQUESTS_PER_MINUTE must be positive")
        return False

    if not POKEMONTCG_API_KEY:
        logger.warning("POKEMONTCG_API_KEY is not set, card API requests will be rate limited")

    return True
