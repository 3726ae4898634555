from typing import Any, Callable, Dict, Hashable, Optional, Tuple
import time


class TTLCache:
    """Small key/value cache with optional expiry and an injectable clock.

    ``ttl=None`` keeps entries until they are invalidated, which is what pool
    identity lookups want. Reserve snapshots and prices pass a ttl in seconds.
    """

    def __init__(
        self,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be positive or None")
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default

        value, stored_at = entry
        if self.ttl is not None and self.clock() - stored_at >= self.ttl:
            del self._entries[key]
            return default
        return value

    def set(self, key: Hashable, value: Any):
        self._entries[key] = (value, self.clock())

    def invalidate(self, key: Hashable):
        self._entries.pop(key, None)

    def clear(self):
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def __len__(self) -> int:
        return len(self._entries)
