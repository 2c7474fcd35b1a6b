import time
from typing import Any, Callable, Dict, Optional

class TTLCache:
    """In-memory key/value store with per-entry expiry in minutes.

    Expired entries are dropped lazily when read; there is no sweeper.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._values: Dict[str, Any] = {}
        self._expires: Dict[str, float] = {}

    def _expired(self, key: str) -> bool:
        expires = self._expires.get(key)
        # Still valid at exactly the expiry instant
        return expires is not None and expires < self._clock()

    def get(self, key: str) -> Optional[Any]:
        if key not in self._values:
            return None
        if self._expired(key):
            self.delete(key)
            return None
        return self._values[key]

    def set(self, key: str, value: Any, ttl_minutes: float = 60):
        self._values[key] = value
        if ttl_minutes > 0:
            self._expires[key] = self._clock() + ttl_minutes * 60
        else:
            self._expires.pop(key, None)

    def delete(self, key: str):
        self._values.pop(key, None)
        self._expires.pop(key, None)

    def has(self, key: str) -> bool:
        if key not in self._values:
            return False
        if self._expired(key):
            self.delete(key)
            return False
        return True

    def clear(self):
        self._values.clear()
        self._expires.clear()
