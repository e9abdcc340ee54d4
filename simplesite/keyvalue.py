"""Key-value storage for sessions and form tokens.

A miss and an empty string are the same thing here: ``get`` returns ``""``
for keys that do not exist, so callers treat the empty string as absent.
"""
import threading
import time
from datetime import timedelta
from typing import Protocol

import redis


class StoreError(Exception):
    """Raised when the underlying storage fails."""


class Store(Protocol):
    """String key-value storage with optional expiry."""

    def get(self, key: str) -> str: ...

    def set(self, key: str, value: str) -> None: ...

    def set_expiring(self, key: str, value: str, ttl: timedelta) -> None: ...

    def delete(self, key: str) -> None: ...


class PrefixedStore:
    """Store decorator that prefixes each key."""

    def __init__(self, store: Store, prefix: str):
        self.store = store
        self.prefix = prefix

    def get(self, key: str) -> str:
        return self.store.get(self.prefix + key)

    def set(self, key: str, value: str) -> None:
        self.store.set(self.prefix + key, value)

    def set_expiring(self, key: str, value: str, ttl: timedelta) -> None:
        self.store.set_expiring(self.prefix + key, value, ttl)

    def delete(self, key: str) -> None:
        self.store.delete(self.prefix + key)


class RedisStore:
    """Store backed by a redis client.

    The client must be created with ``decode_responses=True``.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(redis.Redis.from_url(url, encoding="utf-8", decode_responses=True))

    def get(self, key: str) -> str:
        try:
            value = self.client.get(key)
        except redis.RedisError as exc:
            raise StoreError(f"failed to get {key!r}") from exc
        return value or ""

    def set(self, key: str, value: str) -> None:
        try:
            self.client.set(key, value)
        except redis.RedisError as exc:
            raise StoreError(f"failed to set {key!r}") from exc

    def set_expiring(self, key: str, value: str, ttl: timedelta) -> None:
        try:
            self.client.set(key, value, px=int(ttl.total_seconds() * 1000))
        except redis.RedisError as exc:
            raise StoreError(f"failed to set {key!r}") from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError as exc:
            raise StoreError(f"failed to delete {key!r}") from exc


class MemoryStore:
    """In-process store, for development and tests."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return ""
            value, expires_at = entry
            if expires_at is not None and time.monotonic() >= expires_at:
                del self._entries[key]
                return ""
            return value

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._entries[key] = (value, None)

    def set_expiring(self, key: str, value: str, ttl: timedelta) -> None:
        with self._lock:
            self._entries[key] = (value, time.monotonic() + ttl.total_seconds())

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)
