import asyncio

import pytest
from conftest import callback_payload

from replybot.schemas.callback import MessageCallback
from replybot.services.merge_service import MergedBatch, MergeWindow


def event(message_id: str, text: str, chat_id: str = "chat-1") -> MessageCallback:
    return MessageCallback.model_validate(callback_payload(message_id, chat_id=chat_id, text=text))


class BatchRecorder:
    def __init__(self):
        self.batches: list[MergedBatch] = []

    async def __call__(self, batch: MergedBatch) -> None:
        self.batches.append(batch)


class TestMergeWindow:
    @pytest.mark.asyncio
    async def test_burst_is_merged_into_one_call(self):
        window = MergeWindow(window_ms=50, max_merged_messages=5)
        recorder = BatchRecorder()

        for i, text in enumerate(["a", "b", "c"]):
            window.enqueue(event(f"m{i}", text), recorder)
        await asyncio.sleep(0.1)
        await window.drain()

        assert len(recorder.batches) == 1
        assert recorder.batches[0].content == "a\nb\nc"
        assert [e.message_id for e in recorder.batches[0].events] == ["m0", "m1", "m2"]

    @pytest.mark.asyncio
    async def test_spaced_events_flush_separately(self):
        window = MergeWindow(window_ms=30, max_merged_messages=5)
        recorder = BatchRecorder()

        for i in range(3):
            window.enqueue(event(f"m{i}", f"t{i}"), recorder)
            await asyncio.sleep(0.08)
        await window.drain()

        assert [batch.content for batch in recorder.batches] == ["t0", "t1", "t2"]

    @pytest.mark.asyncio
    async def test_reaching_max_size_flushes_immediately(self):
        window = MergeWindow(window_ms=10_000, max_merged_messages=2)
        recorder = BatchRecorder()

        window.enqueue(event("m0", "a"), recorder)
        window.enqueue(event("m1", "b"), recorder)
        assert window.pending_count("chat-1") == 0

        await window.drain()
        assert recorder.batches[0].content == "a\nb"

    @pytest.mark.asyncio
    async def test_later_events_do_not_extend_deadline(self):
        window = MergeWindow(window_ms=100, max_merged_messages=10)
        recorder = BatchRecorder()

        window.enqueue(event("m0", "a"), recorder)
        await asyncio.sleep(0.06)
        window.enqueue(event("m1", "b"), recorder)
        await asyncio.sleep(0.07)

        assert len(recorder.batches) == 1
        assert recorder.batches[0].content == "a\nb"

    @pytest.mark.asyncio
    async def test_conversations_are_independent(self):
        window = MergeWindow(window_ms=30, max_merged_messages=5)
        recorder = BatchRecorder()

        window.enqueue(event("m0", "a", chat_id="chat-1"), recorder)
        window.enqueue(event("m1", "b", chat_id="chat-2"), recorder)
        await asyncio.sleep(0.08)
        await window.drain()

        assert sorted(batch.conversation_id for batch in recorder.batches) == ["chat-1", "chat-2"]

    @pytest.mark.asyncio
    async def test_flushes_for_one_conversation_never_overlap(self):
        window = MergeWindow(window_ms=10_000, max_merged_messages=1)
        release = asyncio.Event()
        running = 0
        peak = 0
        order = []

        async def slow_processor(batch: MergedBatch) -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            order.append(batch.content)
            await release.wait()
            running -= 1

        window.enqueue(event("m0", "first"), slow_processor)
        await asyncio.sleep(0.01)
        window.enqueue(event("m1", "second"), slow_processor)
        await asyncio.sleep(0.01)

        assert order == ["first"]
        release.set()
        await window.drain()

        assert order == ["first", "second"]
        assert peak == 1

    @pytest.mark.asyncio
    async def test_processor_errors_are_contained(self):
        window = MergeWindow(window_ms=10_000, max_merged_messages=1)

        async def failing(batch: MergedBatch) -> None:
            raise RuntimeError("boom")

        window.enqueue(event("m0", "a"), failing)
        await window.drain()

        assert window.get_stats()["running_flushes"] == 0
        assert window.flushed_batches == 1

    @pytest.mark.asyncio
    async def test_clear_drops_pending_batch(self):
        window = MergeWindow(window_ms=30, max_merged_messages=5)
        recorder = BatchRecorder()
        window.enqueue(event("m0", "a"), recorder)

        assert window.clear("chat-1") == 1
        await asyncio.sleep(0.06)

        assert recorder.batches == []

    @pytest.mark.asyncio
    async def test_shutdown_flushes_pending(self):
        window = MergeWindow(window_ms=10_000, max_merged_messages=5)
        recorder = BatchRecorder()
        window.enqueue(event("m0", "a"), recorder)

        await window.shutdown()

        assert [batch.content for batch in recorder.batches] == ["a"]
        assert window.get_stats()["pending_conversations"] == 0
