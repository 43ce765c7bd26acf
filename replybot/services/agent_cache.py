import hashlib
import json
import time
from dataclasses import dataclass
from typing import Callable, Optional

from replybot.logging_config import get_logger
from replybot.schemas.agent import ChatRequest, ChatResponse

logger = get_logger("agent_cache")


@dataclass
class CacheEntry:
    response: ChatResponse
    expires_at: float
    size_bytes: int


def fingerprint(request: ChatRequest) -> str:
    """SHA-256 over every request field that can change the answer."""
    key_parts = {
        "model": request.model,
        "messages": [message.model_dump(mode="json", exclude_none=True) for message in request.messages],
        "tools": sorted(request.allowedTools or []),
        "context": request.context,
        "toolContext": request.toolContext,
        "systemPrompt": request.systemPrompt,
        "promptType": request.promptType,
    }
    canonical = json.dumps(key_parts, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class AgentResponseCache:
    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_item_kb: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_item_bytes = max_item_kb * 1024
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[ChatResponse]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.response

    def set(self, key: str, response: ChatResponse) -> bool:
        size_bytes = len(response.model_dump_json().encode("utf-8"))
        if size_bytes > self.max_item_bytes:
            logger.debug(
                "Agent response too large to cache",
                extra={"context": {"size_bytes": size_bytes, "limit_bytes": self.max_item_bytes}},
            )
            return False
        self._entries[key] = CacheEntry(
            response=response,
            expires_at=self._clock() + self.ttl_seconds,
            size_bytes=size_bytes,
        )
        return True

    @staticmethod
    def should_cache(response: ChatResponse, request: ChatRequest) -> bool:
        """Answers that used tools or request context depend on outside state."""
        if response.tools.used:
            return False
        if request.context or request.toolContext:
            return False
        return True

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        return size

    def get_stats(self) -> dict:
        lookups = self.hits + self.misses
        return {
            "entries": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / lookups, 3) if lookups else 0.0,
            "total_bytes": sum(entry.size_bytes for entry in self._entries.values()),
            "ttl_seconds": self.ttl_seconds,
        }
