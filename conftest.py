"""
Test configuration and fixtures for the PTCG inventory API tests.

This module provides pytest fixtures for Flask app testing, database mocking,
and external API mocking to ensure isolated and reliable test execution.
"""

import os

# Set test environment variables BEFORE any package imports so config
# validation passes during app creation
os.environ.update({
    "MONGODB_CONNECTION_STRING": "mongodb://localhost:27017/ptcg_test",
    "ALLOW_START_WITHOUT_DATABASE": "1",
    "DISABLE_DB_CONNECTION": "1",
    "DEBUG": "false",
    "LOG_LEVEL": "WARNING",
    "ENVIRONMENT": "testing",
    "POKEMONTCG_API_KEY": "test-api-key",
})

from typing import Dict
from unittest.mock import MagicMock, patch

import pytest
from flask import Flask
from flask.testing import FlaskClient

from ptcgapi.app import create_app
from tests.fixtures.mock_services import make_collection

# Modules that import collection getters by name
COLLECTION_GETTERS = {
    "sets": ["ptcgapi.card_search", "ptcgapi.card_services", "ptcgapi.data_validator"],
    "cards": [
        "ptcgapi.card_search",
        "ptcgapi.card_services",
        "ptcgapi.data_validator",
        "ptcgapi.price_update_service",
    ],
    "card_variations": ["ptcgapi.card_services"],
    "inventory_cards": ["ptcgapi.card_services"],
    "card_prices": ["ptcgapi.price_update_service"],
}


@pytest.fixture(scope="function")
def mock_collections() -> Dict[str, MagicMock]:
    """Patch every collection getter with an in-memory MagicMock collection.

    Tests configure the returned collections (documents, counts) directly.
    """
    collections = {name: make_collection() for name in COLLECTION_GETTERS}
    patchers = [
        patch(f"{module}.get_{name}_collection", return_value=collections[name])
        for name, modules in COLLECTION_GETTERS.items()
        for module in modules
    ]

    for patcher in patchers:
        patcher.start()
    try:
        yield collections
    finally:
        for patcher in patchers:
            patcher.stop()


@pytest.fixture(scope="function")
def app() -> Flask:
    """Create a test Flask application with the database probe stubbed."""
    with patch("ptcgapi.app.test_database_connection", return_value=True), \
         patch("ptcgapi.app.get_database_manager"):
        flask_app = create_app()

    flask_app.config.update({"TESTING": True})
    return flask_app


@pytest.fixture(scope="function")
def client(app: Flask) -> FlaskClient:
    """Create a test client for the Flask application."""
    return app.test_client()


@pytest.fixture(scope="function", autouse=True)
def isolate_external_calls():
    """Automatically isolate external API calls for all tests."""
    with patch("requests.get") as mock_get:
        mock_get.return_value.status_code = 200
        mock_get.return_value.json.return_value = {"data": [], "totalCount": 0}
        yield mock_get


@pytest.fixture(scope="function")
def no_sleep():
    """Skip real sleeps in retry and batching code."""
    with patch("time.sleep") as mock_sleep:
        yield mock_sleep
