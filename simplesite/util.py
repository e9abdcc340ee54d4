"""Small shared helpers."""
import io
import posixpath
import queue
import secrets
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from urllib.parse import urlsplit, urlunsplit


def random_hex(length: int) -> str:
    """Return a cryptographically random hex string of exactly ``length`` chars."""
    return secrets.token_hex((length + 1) // 2)[:length]


def parse_uuid(value: str) -> str:
    """Canonical form of a UUID string; raises ValueError if it is not one."""
    return str(uuid.UUID(value))


def utcnow_iso() -> str:
    """Current UTC time as an ISO 8601 string with a fixed-width offset."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class BufferPool:
    """Bounded pool of reusable text buffers.

    Buffers carry no data between users: they are emptied before they go back
    into the pool, and a buffer that does not fit into a full pool is dropped.
    """

    def __init__(self, size: int = 64):
        self._pool: queue.LifoQueue[io.StringIO] = queue.LifoQueue(maxsize=size)

    @contextmanager
    def acquire(self) -> Iterator[io.StringIO]:
        try:
            buf = self._pool.get_nowait()
        except queue.Empty:
            buf = io.StringIO()
        try:
            yield buf
        finally:
            buf.seek(0)
            buf.truncate(0)
            try:
                self._pool.put_nowait(buf)
            except queue.Full:
                pass

    def __len__(self) -> int:
        return self._pool.qsize()


class BaseURL:
    """The public base URL of the site."""

    def __init__(self, raw_url: str):
        self._parts = urlsplit(raw_url)

    def path(self, *parts: str) -> str:
        """Build an absolute URL by appending path segments to the base path."""
        joined = posixpath.join(self._parts.path or "/", *(p.strip("/") for p in parts))
        return urlunsplit(self._parts._replace(path=posixpath.normpath(joined)))
