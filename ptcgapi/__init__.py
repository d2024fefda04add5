"""
PTCG Inventory API Package

Admin backend for a Pokemon trading card inventory: set and card
synchronization from the Pokemon TCG API, cross-set search, tiered price
updates and data-quality checks, backed by MongoDB.
"""

__version__ = "1.0.0"
