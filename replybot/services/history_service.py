import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from replybot.errors import ValidationError
from replybot.logging_config import get_logger
from replybot.schemas.agent import SimpleMessage, StructuredMessage

logger = get_logger("history_service")

VALID_ROLES = {"user", "assistant", "system"}

MessageInput = Union[SimpleMessage, StructuredMessage, dict]


@dataclass
class HistoryMessage:
    role: str
    content: str
    timestamp: float = field(default_factory=time.time)

    def to_simple(self) -> SimpleMessage:
        return SimpleMessage(role=self.role, content=self.content)


def _join_parts(parts: list[Any]) -> str:
    texts = []
    for part in parts:
        if isinstance(part, dict):
            text = part.get("text") if part.get("type", "text") == "text" else None
        else:
            text = getattr(part, "text", None) if getattr(part, "type", "text") == "text" else None
        if text:
            texts.append(text)
    return "\n".join(texts)


def normalize_message(message: MessageInput, timestamp: Optional[float] = None) -> HistoryMessage:
    """Reduce either message shape to a canonical role/content pair.

    Raises ValidationError for unknown roles, empty content or an
    unrecognized shape.
    """
    if isinstance(message, SimpleMessage):
        role, content = message.role, message.content
    elif isinstance(message, StructuredMessage):
        role, content = message.role, _join_parts(message.parts)
    elif isinstance(message, dict):
        role = message.get("role")
        if isinstance(message.get("content"), str):
            content = message["content"]
        elif isinstance(message.get("parts"), list):
            content = _join_parts(message["parts"])
        else:
            raise ValidationError("Message has neither content nor parts")
    else:
        raise ValidationError(f"Unsupported message type: {type(message).__name__}")

    if not isinstance(role, str) or role not in VALID_ROLES:
        raise ValidationError(f"Unknown message role: {role!r}")
    content = (content or "").strip()
    if not content:
        raise ValidationError("Message content is empty")

    return HistoryMessage(role=role, content=content, timestamp=timestamp if timestamp is not None else time.time())


class HistoryStore:
    """Bounded, TTL-limited per-conversation transcripts kept in memory."""

    def __init__(
        self,
        max_messages: int,
        timeout_ms: int,
        clock: Callable[[], float] = time.time,
    ):
        self.max_messages = max_messages
        self.timeout_seconds = timeout_ms / 1000
        self._clock = clock
        self._conversations: dict[str, list[HistoryMessage]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    def _is_expired(self, message: HistoryMessage, now: float) -> bool:
        return now - message.timestamp > self.timeout_seconds

    async def add_message(self, conversation_id: str, message: MessageInput) -> HistoryMessage:
        normalized = normalize_message(message, timestamp=self._clock())
        async with self._lock_for(conversation_id):
            self._append(conversation_id, [normalized])
        return normalized

    async def add_messages(self, conversation_id: str, messages: list[MessageInput]) -> list[HistoryMessage]:
        now = self._clock()
        # validate the whole batch before touching the transcript
        normalized = [normalize_message(message, timestamp=now) for message in messages]
        if not normalized:
            return []
        async with self._lock_for(conversation_id):
            self._append(conversation_id, normalized)
        return normalized

    def _append(self, conversation_id: str, messages: list[HistoryMessage]) -> None:
        transcript = self._conversations.setdefault(conversation_id, [])
        transcript.extend(messages)
        if len(transcript) > self.max_messages:
            del transcript[: len(transcript) - self.max_messages]

    def get_history(self, conversation_id: str, limit: int = 20) -> list[HistoryMessage]:
        transcript = self._conversations.get(conversation_id)
        if not transcript or limit <= 0:
            return []
        now = self._clock()
        valid = [message for message in transcript if not self._is_expired(message, now)]
        return valid[-limit:]

    def clear_conversation(self, conversation_id: str) -> bool:
        self._locks.pop(conversation_id, None)
        return self._conversations.pop(conversation_id, None) is not None

    def clear(self) -> int:
        count = len(self._conversations)
        self._conversations.clear()
        self._locks.clear()
        return count

    def active_conversations(self) -> list[str]:
        return list(self._conversations)

    def cleanup_expired(self) -> int:
        """Drop conversations whose newest message is past the timeout."""
        now = self._clock()
        stale = [
            conversation_id
            for conversation_id, transcript in self._conversations.items()
            if not transcript or self._is_expired(transcript[-1], now)
        ]
        removed = 0
        for conversation_id in stale:
            lock = self._locks.get(conversation_id)
            if lock is not None and lock.locked():
                continue
            self._conversations.pop(conversation_id, None)
            self._locks.pop(conversation_id, None)
            removed += 1
        if removed:
            logger.info(
                "Expired conversation histories removed",
                extra={"context": {"count": removed, "remaining": len(self._conversations)}},
            )
        return removed

    def get_stats(self, conversation_id: Optional[str] = None) -> dict:
        if conversation_id is not None:
            transcript = self._conversations.get(conversation_id, [])
            return {
                "conversation_id": conversation_id,
                "message_count": len(transcript),
                "oldest_timestamp": transcript[0].timestamp if transcript else None,
                "newest_timestamp": transcript[-1].timestamp if transcript else None,
            }
        return {
            "active_conversations": len(self._conversations),
            "total_messages": sum(len(transcript) for transcript in self._conversations.values()),
            "max_messages_per_conversation": self.max_messages,
            "timeout_ms": int(self.timeout_seconds * 1000),
        }
