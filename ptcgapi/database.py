"""
Database Module

Manages MongoDB connections for the card inventory store and exposes one
accessor per collection (sets, cards, card variations, inventory, prices).
"""

import logging
import os
from contextlib import contextmanager
from typing import Optional

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from .config import (
    CARD_PRICES_COLLECTION,
    CARD_VARIATIONS_COLLECTION,
    CARDS_COLLECTION,
    INVENTORY_CARDS_COLLECTION,
    MONGODB_CONNECT_TIMEOUT_MS,
    MONGODB_CONNECTION_STRING,
    MONGODB_SERVER_SELECTION_TIMEOUT_MS,
    SETS_COLLECTION,
)
from .memory_manager import get_memory_manager

logger = logging.getLogger(__name__)


class DatabaseUnavailableError(RuntimeError):
    """Raised when a collection is requested but no database is reachable."""


def _connections_disabled() -> bool:
    return os.environ.get('DISABLE_DB_CONNECTION') == '1'


class DatabaseManager:
    """
    Database manager for MongoDB operations with lazy connection and
    resource cleanup.
    """

    def __init__(self):
        self._client: Optional[MongoClient] = None
        self._db: Optional[Database] = None
        self.connection_string = MONGODB_CONNECTION_STRING

        memory_manager = get_memory_manager()
        memory_manager.register_cleanup_callback("database_cleanup", self._cleanup_connections)

    def _cleanup_connections(self):
        """Close the client so the next access reconnects."""
        if self._client:
            try:
                self._client.close()
                logger.info("Database connections cleaned up")
            except Exception as e:
                logger.error(f"Error cleaning up database connections: {e}")
            finally:
                self._client = None
                self._db = None

    def get_client(self) -> Optional[MongoClient]:
        """
        Get MongoDB client connection.

        Returns:
            MongoClient: MongoDB client instance, or None when connections are disabled
        """
        if _connections_disabled():
            logger.info("Database connections disabled by DISABLE_DB_CONNECTION environment variable")
            return None

        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    connectTimeoutMS=MONGODB_CONNECT_TIMEOUT_MS,
                    serverSelectionTimeoutMS=MONGODB_SERVER_SELECTION_TIMEOUT_MS
                )
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except Exception as e:
                logger.error(f"MongoDB connection failed: {e}")
                self._client = None
                raise ConnectionError(f"Failed to connect to MongoDB: {e}")

        return self._client

    def get_database(self) -> Optional[Database]:
        """
        Get database instance.

        Returns:
            Database: MongoDB database instance
        """
        if _connections_disabled():
            return None

        if self._db is None:
            client = self.get_client()
            if client is None:
                return None
            self._db = client.get_default_database()

        return self._db

    def get_collection(self, collection_name: str) -> Optional[Collection]:
        """
        Get collection instance.

        Args:
            collection_name: Name of the collection

        Returns:
            Collection: MongoDB collection instance
        """
        db = self.get_database()
        if db is None:
            return None
        return db[collection_name]

    def get_sets_collection(self) -> Optional[Collection]:
        """Get sets collection."""
        return self.get_collection(SETS_COLLECTION)

    def get_cards_collection(self) -> Optional[Collection]:
        """Get cards collection."""
        return self.get_collection(CARDS_COLLECTION)

    def get_card_variations_collection(self) -> Optional[Collection]:
        """Get card variations collection."""
        return self.get_collection(CARD_VARIATIONS_COLLECTION)

    def get_inventory_cards_collection(self) -> Optional[Collection]:
        """Get inventory cards collection."""
        return self.get_collection(INVENTORY_CARDS_COLLECTION)

    def get_card_prices_collection(self) -> Optional[Collection]:
        """Get card price history collection."""
        return self.get_collection(CARD_PRICES_COLLECTION)

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.

        Yields:
            MongoClient: Database client
        """
        if _connections_disabled():
            yield None
            return

        # Pooled client stays open, only explicit cleanup closes it
        yield self.get_client()

    def ensure_indexes(self):
        """Create the indexes the query paths rely on."""
        db = self.get_database()
        if db is None:
            return

        try:
            db[SETS_COLLECTION].create_index("id", unique=True)
            db[SETS_COLLECTION].create_index("last_sync_at")
            db[CARDS_COLLECTION].create_index("id", unique=True)
            db[CARDS_COLLECTION].create_index("set_id")
            db[CARDS_COLLECTION].create_index("tcg_price")
            db[CARDS_COLLECTION].create_index("price_updated_at")
            db[CARD_VARIATIONS_COLLECTION].create_index(
                [("card_id", 1), ("variation_type", 1), ("treatment", 1)], unique=True
            )
            db[INVENTORY_CARDS_COLLECTION].create_index("set_id")
            db[INVENTORY_CARDS_COLLECTION].create_index("card_id")
            db[CARD_PRICES_COLLECTION].create_index([("card_id", 1), ("recorded_at", -1)])
            logger.info("Database indexes ensured")
        except Exception as e:
            logger.warning(f"Failed to create indexes: {e}")

    def close(self):
        """Close database connections."""
        self._cleanup_connections()

    def test_connection(self) -> bool:
        """
        Test database connection.

        Returns:
            bool: True if connection is successful
        """
        if _connections_disabled():
            logger.info("Database connections disabled by DISABLE_DB_CONNECTION environment variable")
            return True

        try:
            with self.get_connection() as client:
                if client is None:
                    return False
                client.admin.command('ping')
                return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False

# Global database manager instance
_db_manager: Optional[DatabaseManager] = None

def get_database_manager() -> DatabaseManager:
    """Get the global database manager instance."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager

def require_collection(collection: Optional[Collection], name: str) -> Collection:
    """Return the collection or raise when the database is unavailable."""
    if collection is None:
        raise DatabaseUnavailableError(f"Database unavailable: cannot access '{name}'")
    return collection

def get_sets_collection() -> Collection:
    """Get sets collection."""
    return require_collection(get_database_manager().get_sets_collection(), SETS_COLLECTION)

def get_cards_collection() -> Collection:
    """Get cards collection."""
    return require_collection(get_database_manager().get_cards_collection(), CARDS_COLLECTION)

def get_card_variations_collection() -> Collection:
    """Get card variations collection."""
    return require_collection(
        get_database_manager().get_card_variations_collection(), CARD_VARIATIONS_COLLECTION
    )

def get_inventory_cards_collection() -> Collection:
    """Get inventory cards collection."""
    return require_collection(
        get_database_manager().get_inventory_cards_collection(), INVENTORY_CARDS_COLLECTION
    )

def get_card_prices_collection() -> Collection:
    """Get card price history collection."""
    return require_collection(
        get_database_manager().get_card_prices_collection(), CARD_PRICES_COLLECTION
    )

def close_database_connections():
    """Close all database connections."""
    global _db_manager
    if _db_manager:
        _db_manager.close()
        _db_manager = None

def test_database_connection() -> bool:
    """
    Test database connection.

    Returns:
        bool: True if connection is successful
    """
    if _connections_disabled():
        logger.info("Database connections disabled by DISABLE_DB_CONNECTION environment variable")
        return True

    return get_database_manager().test_connection()
