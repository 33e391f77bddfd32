"""Ingestion worker processes.

Import workers directly from their submodules:
    from ingestion.workers.event_ingester import EventIngestWorker
"""

# Don't import concrete implementations here to avoid loading
# aiokafka, sqlalchemy and redis at package import time.

__all__: list[str] = []
