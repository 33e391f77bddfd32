"""
Relational persistence for ingested entities.

Components:
    - EntityStore: async upserts, inventory adjustments and read accessors
    - models: SQLAlchemy table definitions
"""

from ingestion.storage.models import metadata
from ingestion.storage.store import RECENT_ORDERS_LIMIT, EntityStore

__all__ = ["EntityStore", "RECENT_ORDERS_LIMIT", "metadata"]
