"""Repository layer for data access."""

from .database import create_store_engine
from .retention_store import RetentionStore

__all__ = [
    "RetentionStore",
    "create_store_engine",
]
