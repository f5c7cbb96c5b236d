"""Local and remote storage backends for spendsync."""

from .cloud import HttpDocumentStore
from .documents import SERVER_TIMESTAMP, InMemoryDocumentStore, Timestamp, collection_path
from .sqlite import SQLiteStore

__all__ = [
    "SQLiteStore",
    "HttpDocumentStore",
    "InMemoryDocumentStore",
    "SERVER_TIMESTAMP",
    "Timestamp",
    "collection_path",
]
