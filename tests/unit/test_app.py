"""
Unit tests for app.py and config.py modules.

Tests Flask application creation, startup database handling, server selection
and configuration validation.
"""

from unittest.mock import patch

import pytest
from flask import Flask

from ptcgapi import config
from ptcgapi.app import create_app, run_app


class TestAppCreation:
    """Test Flask application creation and configuration."""

    @patch("ptcgapi.app.get_database_manager")
    @patch("ptcgapi.app.test_database_connection", return_value=True)
    def test_create_app(self, _mock_probe, mock_manager):
        app = create_app()

        assert isinstance(app, Flask)
        assert app.name == "ptcgapi.app"
        mock_manager.return_value.ensure_indexes.assert_called_once()

    @patch("ptcgapi.app.get_database_manager")
    @patch("ptcgapi.app.test_database_connection", return_value=True)
    def test_routes_registered(self, _mock_probe, _mock_manager):
        rules = {rule.rule for rule in create_app().url_map.iter_rules()}

        assert "/health" in rules
        assert "/api/card-search" in rules
        assert "/api/price-update/queue" in rules

    @patch("ptcgapi.app.validate_config", return_value=False)
    def test_invalid_config_raises(self, _mock_validate):
        with pytest.raises(RuntimeError, match="Configuration validation failed"):
            create_app()

    @patch("ptcgapi.app.ALLOW_START_WITHOUT_DATABASE", False)
    @patch("ptcgapi.app.test_database_connection", return_value=False)
    def test_database_failure_raises(self, _mock_probe):
        with pytest.raises(RuntimeError, match="Database connection failed"):
            create_app()

    @patch("ptcgapi.app.get_database_manager")
    @patch("ptcgapi.app.ALLOW_START_WITHOUT_DATABASE", True)
    @patch("ptcgapi.app.test_database_connection", return_value=False)
    def test_database_failure_allowed(self, _mock_probe, mock_manager):
        app = create_app()

        assert isinstance(app, Flask)
        mock_manager.return_value.ensure_indexes.assert_not_called()

    def test_cors_headers(self, client):
        response = client.get("/health", headers={"Origin": "http://localhost:3000"})
        assert response.headers.get("Access-Control-Allow-Origin") == "http://localhost:3000"


class TestRunApp:
    """Test server selection."""

    @patch("ptcgapi.app.get_debug_mode", return_value=True)
    @patch("ptcgapi.app.get_port", return_value=9000)
    @patch("ptcgapi.app.create_app")
    def test_development_server(self, mock_create, _mock_port, _mock_debug):
        run_app()
        mock_create.return_value.run.assert_called_once_with(host="0.0.0.0", port=9000, debug=True)

    @patch("waitress.serve")
    @patch("ptcgapi.app.get_debug_mode", return_value=False)
    @patch("ptcgapi.app.get_port", return_value=9000)
    @patch("ptcgapi.app.create_app")
    def test_waitress_server(self, mock_create, _mock_port, _mock_debug, mock_serve):
        run_app()
        mock_serve.assert_called_once_with(mock_create.return_value, host="0.0.0.0", port=9000, threads=4)


class TestConfig:
    """Test configuration validation."""

    def test_valid_config(self):
        assert config.validate_config() is True

    def test_missing_connection_string(self):
        with patch.object(config, "MONGODB_CONNECTION_STRING", None):
            assert config.validate_config() is False

    def test_non_positive_memory_limit(self):
        with patch.object(config, "MEM_LIMIT_MB", 0):
            assert config.validate_config() is False

    def test_non_positive_burst(self):
        with patch.object(config, "QUEUE_BURST_SIZE", 0):
            assert config.validate_config() is False

    def test_missing_api_key_only_warns(self):
        with patch.object(config, "POKEMONTCG_API_KEY", ""):
            assert config.validate_config() is True

    def test_is_development(self):
        assert config.is_development() is False
