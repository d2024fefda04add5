"""
Main Application Module

Initializes and configures the Flask application with all modules and services.
"""

import logging

from flask import Flask
from flask_cors import CORS

from .config import ALLOW_START_WITHOUT_DATABASE, get_debug_mode, get_log_level, get_port, validate_config
from .database import get_database_manager, test_database_connection
from .memory_manager import get_memory_manager
from .routes import register_routes


def create_app() -> Flask:
    """
    Create and configure the Flask application.

    Returns:
        Flask: Configured Flask application
    """
    if not validate_config():
        raise RuntimeError("Configuration validation failed")

    app = Flask(__name__)

    # Admin front ends run locally during development and on the hosted domain
    CORS(app, resources={
        r"/*": {
            "origins": [
                "http://localhost:*",
                "http://127.0.0.1:*",
                "https://*.onrender.com",
            ],
            "methods": ["GET", "POST", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "X-Requested-With"],
            "max_age": 600,
        }
    })

    logging.basicConfig(
        level=getattr(logging, get_log_level(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger = logging.getLogger(__name__)
    logger.info("Initializing PTCG Inventory API...")

    memory_manager = get_memory_manager()
    logger.info(f"Memory manager initialized with limit: {memory_manager.limit_mb}MB")

    if not test_database_connection():
        if ALLOW_START_WITHOUT_DATABASE:
            logger.warning("Database connection failed, but continuing startup as ALLOW_START_WITHOUT_DATABASE is enabled")
        else:
            logger.error("Database connection test failed")
            raise RuntimeError("Database connection failed")
    else:
        logger.info("Database connection test passed")
        get_database_manager().ensure_indexes()

    register_routes(app)
    logger.info("Routes registered successfully")

    for rule in app.url_map.iter_rules():
        logger.debug(f"  {sorted(rule.methods)} {rule.rule}")

    return app


def run_app():
    """
    Run the Flask application.
    In production, uses Waitress as the WSGI server.
    In development, uses Flask's built-in server with debug mode.
    """
    app = create_app()
    port = get_port()
    debug = get_debug_mode()
    logger = logging.getLogger(__name__)

    if debug:
        logger.info(f"Starting development server on port {port}...")
        app.run(host='0.0.0.0', port=port, debug=debug)
    else:
        from waitress import serve
        logger.info(f"Starting Waitress WSGI server on port {port}...")
        serve(app, host='0.0.0.0', port=port, threads=4)


if __name__ == '__main__':
    run_app()
