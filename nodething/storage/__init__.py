"""Storage module - document store adapters"""

import logging

from ..config import ThingConfig
from .base import ChangeRecord, ChangeType, Collection, StoreHandle, Watch
from .memory_store import MemoryCollection, MemoryStore

logger = logging.getLogger(__name__)

MEMORY_SCHEME = "memory://"


def connect(config: ThingConfig) -> StoreHandle:
    """Open the store named by ``config.store_uri``.

    Raises StoreConnectionError if the store cannot be reached.
    """
    if config.store_uri.startswith(MEMORY_SCHEME):
        logger.info("Using in-memory store")
        return MemoryStore()

    from .firestore_store import connect_firestore
    return connect_firestore(config)


__all__ = [
    'ChangeRecord', 'ChangeType', 'Collection', 'StoreHandle', 'Watch',
    'MemoryCollection', 'MemoryStore', 'connect',
]
