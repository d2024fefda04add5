#!/usr/bin/env python3
"""
PTCG Inventory API

Flask application serving card search, synchronization, price update and
data validation endpoints for a Pokemon TCG inventory.

Usage:
    python3 main.py

Environment Variables:
    - PORT: Server port (default: 8081)
    - MEM_LIMIT: Memory limit in MB (default: 512)
    - MONGODB_CONNECTION_STRING: MongoDB connection string
    - POKEMONTCG_API_KEY: Pokemon TCG API key (optional)
    - DEBUG: Use the Flask development server (default: true)
"""

import logging
import sys

from ptcgapi.app import run_app

logger = logging.getLogger(__name__)

if __name__ == '__main__':
    try:
        run_app()
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        sys.exit(1)
