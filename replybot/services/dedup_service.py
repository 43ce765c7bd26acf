import time
from typing import Callable

from replybot.logging_config import get_logger

logger = get_logger("dedup_service")

EMERGENCY_EVICT_RATIO = 0.2


class DeduplicationStore:
    """Remembers accepted message ids for a TTL window.

    Platform callbacks are retried on slow acknowledgements, so the same
    message id can arrive several times within seconds.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        # dicts keep insertion order, so the first key is always the oldest
        self._seen: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._seen)

    def is_processed(self, message_id: str) -> bool:
        marked_at = self._seen.get(message_id)
        if marked_at is None:
            return False
        if self._clock() - marked_at > self.ttl_seconds:
            del self._seen[message_id]
            return False
        return True

    def mark_processed(self, message_id: str) -> None:
        if message_id not in self._seen and len(self._seen) >= self.max_entries:
            logger.warning(f"Dedup store reached capacity {self.max_entries}, evicting oldest entries")
            self._evict_oldest()
        self._seen.pop(message_id, None)
        self._seen[message_id] = self._clock()

    def cleanup_expired(self) -> int:
        now = self._clock()
        expired = [mid for mid, marked_at in self._seen.items() if now - marked_at > self.ttl_seconds]
        for message_id in expired:
            del self._seen[message_id]
        if expired:
            logger.debug(f"Removed {len(expired)} expired dedup entries")
        return len(expired)

    def _evict_oldest(self) -> None:
        count = max(1, int(len(self._seen) * EMERGENCY_EVICT_RATIO))
        for message_id in list(self._seen)[:count]:
            del self._seen[message_id]
        logger.info(f"Evicted {count} oldest dedup entries")

    def clear(self) -> int:
        size = len(self._seen)
        self._seen.clear()
        return size

    def get_stats(self) -> dict:
        return {
            "cached_message_ids": len(self._seen),
            "max_capacity": self.max_entries,
            "utilization_percent": round(len(self._seen) / self.max_entries * 100, 2) if self.max_entries else 0,
            "ttl_seconds": self.ttl_seconds,
        }
