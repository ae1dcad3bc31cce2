# SPDX-License-Identifier: MIT
"""Clients for the record store, the collaborative mirror and the local cache.

- RecordStoreClient / MirrorClient / LocalCache: collaborator protocols
- AirtableRecordStore: durable record store over HTTP
- HttpMirrorClient: best-effort real-time mirror over HTTP
- InMemoryLocalCache / SqliteLocalCache: offline read path
"""

from .local_cache import InMemoryLocalCache, SqliteLocalCache
from .mirror import HttpMirrorClient
from .protocols import LocalCache, MirrorClient, RecordStoreClient
from .record_store import AirtableRecordStore


__all__ = [
    "AirtableRecordStore",
    "HttpMirrorClient",
    "InMemoryLocalCache",
    "LocalCache",
    "MirrorClient",
    "RecordStoreClient",
    "SqliteLocalCache",
]
