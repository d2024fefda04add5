"""
Unit tests for database.py module.

Tests DatabaseManager connection handling, the collection accessors and the
DISABLE_DB_CONNECTION switch used by tests and offline starts.
"""

import os
from unittest.mock import MagicMock, patch

import pytest

from ptcgapi import database
from ptcgapi.database import (
    DatabaseManager,
    DatabaseUnavailableError,
    close_database_connections,
    get_cards_collection,
    get_database_manager,
    require_collection,
)

CONNECTIONS_ENABLED = {"DISABLE_DB_CONNECTION": "0"}


@pytest.fixture
def db_manager():
    return DatabaseManager()


@pytest.fixture
def mongo_client():
    with patch("ptcgapi.database.MongoClient") as mock_client_class:
        client = MagicMock()
        mock_client_class.return_value = client
        yield mock_client_class


class TestDatabaseManager:
    """Test cases for DatabaseManager class."""

    def test_init(self, db_manager):
        assert db_manager._client is None
        assert db_manager._db is None
        assert db_manager.connection_string == "mongodb://localhost:27017/ptcg_test"

    def test_get_client_disabled(self, db_manager, mongo_client):
        assert db_manager.get_client() is None
        mongo_client.assert_not_called()

    @patch.dict(os.environ, CONNECTIONS_ENABLED)
    def test_get_client_connects_once(self, db_manager, mongo_client):
        client = db_manager.get_client()

        assert client is mongo_client.return_value
        assert db_manager.get_client() is client
        mongo_client.assert_called_once()
        client.admin.command.assert_called_once_with("ping")

    @patch.dict(os.environ, CONNECTIONS_ENABLED)
    def test_get_client_failure(self, db_manager, mongo_client):
        mongo_client.return_value.admin.command.side_effect = RuntimeError("refused")

        with pytest.raises(ConnectionError, match="Failed to connect to MongoDB: refused"):
            db_manager.get_client()

        assert db_manager._client is None

    @patch.dict(os.environ, CONNECTIONS_ENABLED)
    def test_get_collection(self, db_manager, mongo_client):
        db = mongo_client.return_value.get_default_database.return_value

        collection = db_manager.get_cards_collection()

        assert collection is db.__getitem__.return_value
        db.__getitem__.assert_called_with("cards")

    @pytest.mark.parametrize("accessor,name", [
        ("get_sets_collection", "sets"),
        ("get_card_variations_collection", "card_variations"),
        ("get_inventory_cards_collection", "inventory_cards"),
        ("get_card_prices_collection", "card_prices"),
    ])
    def test_collection_names(self, db_manager, accessor, name):
        with patch.object(db_manager, "get_collection") as mock_get:
            getattr(db_manager, accessor)()
        mock_get.assert_called_once_with(name)

    def test_get_collection_disabled(self, db_manager):
        assert db_manager.get_collection("cards") is None

    @patch.dict(os.environ, CONNECTIONS_ENABLED)
    def test_cleanup_closes_client(self, db_manager, mongo_client):
        client = db_manager.get_client()

        db_manager.close()

        client.close.assert_called_once()
        assert db_manager._client is None
        assert db_manager._db is None

    @patch.dict(os.environ, CONNECTIONS_ENABLED)
    def test_cleanup_survives_close_error(self, db_manager, mongo_client):
        client = db_manager.get_client()
        client.close.side_effect = RuntimeError("already closed")

        db_manager.close()

        assert db_manager._client is None

    @patch.dict(os.environ, CONNECTIONS_ENABLED)
    def test_ensure_indexes(self, db_manager, mongo_client):
        db = mongo_client.return_value.get_default_database.return_value

        db_manager.ensure_indexes()

        assert db.__getitem__.return_value.create_index.call_count == 10

    @patch.dict(os.environ, CONNECTIONS_ENABLED)
    def test_ensure_indexes_failure_is_logged(self, db_manager, mongo_client):
        db = mongo_client.return_value.get_default_database.return_value
        db.__getitem__.return_value.create_index.side_effect = RuntimeError("no permission")

        db_manager.ensure_indexes()

    def test_connection_disabled_reports_ok(self, db_manager):
        assert db_manager.test_connection() is True

    @patch.dict(os.environ, CONNECTIONS_ENABLED)
    def test_connection_failure(self, db_manager, mongo_client):
        mongo_client.return_value.admin.command.side_effect = RuntimeError("timeout")
        assert db_manager.test_connection() is False


class TestModuleFunctions:
    """Test module-level accessors."""

    def test_get_database_manager_singleton(self):
        assert get_database_manager() is get_database_manager()

    def test_require_collection_passthrough(self):
        collection = MagicMock()
        assert require_collection(collection, "cards") is collection

    def test_require_collection_raises(self):
        with pytest.raises(DatabaseUnavailableError, match="cannot access 'cards'"):
            require_collection(None, "cards")

    def test_getter_raises_when_disabled(self):
        with pytest.raises(DatabaseUnavailableError):
            get_cards_collection()

    def test_close_database_connections_resets_manager(self):
        manager = get_database_manager()
        close_database_connections()
        assert get_database_manager() is not manager

    def test_database_connection_probe_disabled(self):
        assert database.test_database_connection() is True

    @patch.dict(os.environ, CONNECTIONS_ENABLED)
    def test_database_connection_probe_delegates(self):
        with patch.object(database, "get_database_manager") as mock_get:
            mock_get.return_value.test_connection.return_value = False
            assert database.test_database_connection() is False
