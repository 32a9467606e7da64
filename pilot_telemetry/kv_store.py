from __future__ import annotations

from typing import Protocol

import redis


KEY_PREFIX = "pilot:analytics:"  # + {key}


class KeyValueStore(Protocol):
    """Durable opaque string storage (consent flags, user properties)."""

    def get(self, key: str) -> str | None:  # pragma: no cover
        ...

    def set(self, key: str, value: str) -> None:  # pragma: no cover
        ...

    def delete(self, key: str) -> None:  # pragma: no cover
        ...


class RedisKeyValueStore:
    def __init__(self, r: redis.Redis, *, prefix: str = KEY_PREFIX) -> None:
        self._r = r
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> str | None:
        raw = self._r.get(self._key(key))
        if raw is None:
            return None
        # Clients created without decode_responses hand back bytes.
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return str(raw)

    def set(self, key: str, value: str) -> None:
        self._r.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self._r.delete(self._key(key))
