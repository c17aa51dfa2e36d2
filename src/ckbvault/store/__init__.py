"""Shared counter store for rate limits and chain sync state."""

from ckbvault.store.database import close_db, get_engine, get_store, init_db
from ckbvault.store.models import Base, HashEntry, KeyValue, SortedSetEntry
from ckbvault.store.repository import CounterStore, StorePipeline

__all__ = [
    # Models
    "Base",
    "KeyValue",
    "HashEntry",
    "SortedSetEntry",
    # Store
    "CounterStore",
    "StorePipeline",
    # Database
    "get_engine",
    "get_store",
    "init_db",
    "close_db",
]
