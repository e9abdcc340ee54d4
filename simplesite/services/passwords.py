"""Password hashing and breached password lookups."""
import hashlib
import threading
import time
from dataclasses import dataclass
from typing import Protocol

import bcrypt
import httpx

# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72

PWNED_CACHE_TTL_SECONDS = 60 * 60


def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(password: str, salt: str | None = None) -> tuple[str, str]:
    """Hash a password. Returns the hash and the salt (generated if not given)."""
    if password_too_long(password):
        raise ValueError("password is too long")
    raw_salt = salt.encode("utf-8") if salt else bcrypt.gensalt()
    hashed = bcrypt.hashpw(password.encode("utf-8"), raw_salt)
    return hashed.decode("utf-8"), raw_salt.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    if password_too_long(plain_password):
        return False
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


class PasswordCheckError(Exception):
    """Raised when a password cannot be checked."""


class PasswordValidator(Protocol):
    """Checks a password on registration. Returns True if it is compromised."""

    def validate(self, password: str) -> bool: ...


class AcceptAllPasswords:
    """Password validator that never reports a compromise."""

    def validate(self, password: str) -> bool:
        return False


@dataclass
class _CacheEntry:
    suffixes: frozenset[str]
    expires_at: float


class PwnedPasswordValidator:
    """Checks passwords against the Pwned Passwords range API.

    Only the first five characters of the SHA-1 hash leave the process. Range
    responses are cached for an hour.
    """

    def __init__(self, base_url: str, http_client: httpx.Client | None = None, timeout: float = 10):
        self.base_url = base_url.rstrip("/") + "/"
        self.http_client = http_client or httpx.Client(timeout=timeout, headers={"Add-Padding": "true"})
        self._cache: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def validate(self, password: str) -> bool:
        digest = hashlib.sha1(password.encode("utf-8")).hexdigest().upper()
        prefix, suffix = digest[:5], digest[5:]
        return suffix in self._range(prefix)

    def _range(self, prefix: str) -> frozenset[str]:
        with self._lock:
            entry = self._cache.get(prefix)
            if entry is not None and time.monotonic() < entry.expires_at:
                return entry.suffixes

        try:
            response = self.http_client.get(self.base_url + prefix)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PasswordCheckError(f"failed to query password range {prefix}") from exc

        suffixes = set()
        for line in response.text.splitlines():
            suffix, _, count = line.strip().partition(":")
            # Padding entries have a count of 0.
            if suffix and count.strip() != "0":
                suffixes.add(suffix.upper())

        entry = _CacheEntry(frozenset(suffixes), time.monotonic() + PWNED_CACHE_TTL_SECONDS)
        with self._lock:
            self._cache[prefix] = entry
        return entry.suffixes

    def close(self) -> None:
        self.http_client.close()
