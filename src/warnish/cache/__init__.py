"""
Store access for the cache filters: key derivation, the redis wrapper and
the replay stream.
"""

from .keys import CacheKeys, CacheKeyDeriver, IDENTITY
from .store import CacheStore, StoreError, StoreConnectionError, connect
from .stream import StoreStream

__all__ = [
    "CacheKeys",
    "CacheKeyDeriver",
    "IDENTITY",
    "CacheStore",
    "StoreError",
    "StoreConnectionError",
    "connect",
    "StoreStream",
]
