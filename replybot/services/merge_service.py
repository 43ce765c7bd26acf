import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from replybot.logging_config import get_logger
from replybot.schemas.callback import MessageCallback

logger = get_logger("merge_service")


@dataclass
class MergedBatch:
    conversation_id: str
    events: list[MessageCallback]

    @property
    def content(self) -> str:
        return "\n".join(event.text for event in self.events if event.text)

    @property
    def last_event(self) -> MessageCallback:
        return self.events[-1]


BatchProcessor = Callable[[MergedBatch], Awaitable[None]]


@dataclass
class _PendingBatch:
    processor: BatchProcessor
    deadline: float
    events: list[MessageCallback] = field(default_factory=list)
    handle: Optional[asyncio.TimerHandle] = None


class MergeWindow:
    """Collects bursts of messages per conversation into one batch.

    The first message opens a window of ``window_ms``; later messages join
    the batch without extending it. A batch that reaches
    ``max_merged_messages`` is flushed at once. Flushes for the same
    conversation never overlap: a new batch may collect while the previous
    one is still being processed, but its processor waits its turn.
    """

    def __init__(self, window_ms: int = 3000, max_merged_messages: int = 3):
        self.window_seconds = window_ms / 1000
        self.max_merged_messages = max(1, max_merged_messages)
        self._pending: dict[str, _PendingBatch] = {}
        self._flush_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()
        self.flushed_batches = 0

    def enqueue(self, event: MessageCallback, processor: BatchProcessor) -> int:
        """Add an event to its conversation's batch and return the batch size."""
        conversation_id = event.conversation_id
        loop = asyncio.get_running_loop()
        batch = self._pending.get(conversation_id)
        if batch is None:
            batch = _PendingBatch(processor=processor, deadline=loop.time() + self.window_seconds)
            batch.handle = loop.call_later(self.window_seconds, self._flush, conversation_id, "timer")
            self._pending[conversation_id] = batch
        batch.events.append(event)
        size = len(batch.events)

        logger.debug(
            "Message queued for merge",
            extra={"context": {"conversation_id": conversation_id, "batch_size": size}},
        )
        if size >= self.max_merged_messages:
            self._flush(conversation_id, "size")
        return size

    def _flush(self, conversation_id: str, trigger: str) -> None:
        batch = self._pending.pop(conversation_id, None)
        if batch is None:
            return
        if batch.handle is not None:
            batch.handle.cancel()

        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        if conversation_id not in self._flush_locks:
            self._flush_locks[conversation_id] = asyncio.Lock()

        logger.info(
            "Flushing merged messages",
            extra={"context": {"conversation_id": conversation_id, "batch_size": len(batch.events), "trigger": trigger}},
        )
        task = asyncio.get_running_loop().create_task(self._run(conversation_id, batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, conversation_id: str, batch: _PendingBatch) -> None:
        lock = self._flush_locks[conversation_id]
        try:
            async with lock:
                self.flushed_batches += 1
                await batch.processor(MergedBatch(conversation_id=conversation_id, events=batch.events))
        except Exception as exc:
            logger.error(
                "Merged batch processing failed",
                extra={"context": {"conversation_id": conversation_id, "error": str(exc)}},
                exc_info=True,
            )
        finally:
            remaining = self._lock_users.get(conversation_id, 1) - 1
            if remaining <= 0:
                self._lock_users.pop(conversation_id, None)
                self._flush_locks.pop(conversation_id, None)
            else:
                self._lock_users[conversation_id] = remaining

    def flush_all(self) -> int:
        conversation_ids = list(self._pending)
        for conversation_id in conversation_ids:
            self._flush(conversation_id, "shutdown")
        return len(conversation_ids)

    def clear(self, conversation_id: Optional[str] = None) -> int:
        """Drop pending batches without processing them."""
        targets = [conversation_id] if conversation_id is not None else list(self._pending)
        dropped = 0
        for target in targets:
            batch = self._pending.pop(target, None)
            if batch is None:
                continue
            if batch.handle is not None:
                batch.handle.cancel()
            dropped += len(batch.events)
        return dropped

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        flushed = self.flush_all()
        if flushed:
            logger.info(f"Flushed {flushed} pending merge batches on shutdown")
        await self.drain()

    def pending_count(self, conversation_id: str) -> int:
        batch = self._pending.get(conversation_id)
        return len(batch.events) if batch else 0

    def get_stats(self) -> dict:
        return {
            "pending_conversations": len(self._pending),
            "pending_messages": sum(len(batch.events) for batch in self._pending.values()),
            "running_flushes": len(self._tasks),
            "flushed_batches": self.flushed_batches,
            "window_ms": int(self.window_seconds * 1000),
            "max_merged_messages": self.max_merged_messages,
        }
