"""Inbound callback dispatch and the AI reply pipeline.

``handle_event`` always answers the platform with success: the platform
retries unacknowledged callbacks, so any failure after intake is logged and
swallowed here instead of being reported upstream.
"""

import asyncio
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from replybot.config import Settings
from replybot.errors import EmptyReplyError, NonRetryableApiError, RateLimitError
from replybot.logging_config import bind_logger, get_logger, preview
from replybot.schemas.agent import SimpleMessage
from replybot.schemas.callback import CallbackResponse, MessageCallback
from replybot.schemas.message import ClearCacheRequest
from replybot.services.agent_client import AgentClient, extract_reply_text
from replybot.services.agent_profile import AgentProfile
from replybot.services.chat_record_service import ChatRecordService
from replybot.services.dedup_service import DeduplicationStore
from replybot.services.delivery_service import ReplyDelivery
from replybot.services.filter_service import MessageFilter
from replybot.services.governor import ConcurrencyGovernor
from replybot.services.history_service import HistoryStore
from replybot.services.merge_service import MergedBatch, MergeWindow

logger = get_logger("dispatcher")


@dataclass
class ReplyJob:
    conversation_id: str
    content: str
    events: list[MessageCallback]
    started_at: float = field(default_factory=time.monotonic)

    @property
    def last_event(self) -> MessageCallback:
        return self.events[-1]


class Dispatcher:
    def __init__(
        self,
        settings: Settings,
        message_filter: MessageFilter,
        dedup: DeduplicationStore,
        governor: ConcurrencyGovernor,
        history: HistoryStore,
        merge_window: MergeWindow,
        agent_client: AgentClient,
        profile: AgentProfile,
        delivery: ReplyDelivery,
        chat_records: Optional[ChatRecordService] = None,
    ):
        self.settings = settings
        self.message_filter = message_filter
        self.dedup = dedup
        self.governor = governor
        self.history = history
        self.merge_window = merge_window
        self.agent_client = agent_client
        self.profile = profile
        self.delivery = delivery
        self.chat_records = chat_records
        self.counters: Counter = Counter()
        self.filtered: Counter = Counter()
        self._tasks: set[asyncio.Task] = set()

    async def handle_event(self, raw: dict) -> CallbackResponse:
        self.counters["received"] += 1
        try:
            event = MessageCallback.model_validate(raw)
        except PydanticValidationError as exc:
            self.counters["malformed"] += 1
            logger.warning(
                "Malformed callback dropped",
                extra={"context": {"errors": exc.errors(include_url=False), "keys": sorted(raw) if isinstance(raw, dict) else []}},
            )
            return CallbackResponse(message="Malformed callback ignored")

        if not self.settings.enable_ai_reply:
            return CallbackResponse(message="AI reply disabled")

        result = self.message_filter.validate(event)
        if not result.passed:
            self.filtered[result.reason] += 1
            logger.debug(
                f"Message filtered: {result.reason}",
                extra={"context": {"message_id": event.message_id, **result.details}},
            )
            return CallbackResponse(message=f"Message ignored: {result.reason}")

        if self.dedup.is_processed(event.message_id):
            self.counters["duplicates"] += 1
            logger.info(f"Duplicate message ignored: {event.message_id}")
            return CallbackResponse(message="Duplicate message ignored")
        # must stay before any await or branch so a retried delivery is caught above
        self.dedup.mark_processed(event.message_id)

        logger.info(
            "Message accepted",
            extra={
                "context": {
                    "conversation_id": event.conversation_id,
                    "message_id": event.message_id,
                    "contact_name": event.contact_name,
                    "text": preview(result.content),
                }
            },
        )

        if self.settings.enable_message_merge:
            if not self.governor.has_capacity:
                self._reject(event.conversation_id, [event.message_id])
                return CallbackResponse(message="Busy, message dropped")
            self.merge_window.enqueue(event, self._process_batch)
            return CallbackResponse(message="Message queued")

        if not self.governor.try_acquire():
            self._reject(event.conversation_id, [event.message_id])
            return CallbackResponse(message="Busy, message dropped")
        job = ReplyJob(conversation_id=event.conversation_id, content=result.content, events=[event])
        self._spawn(self._run_admitted(job))
        return CallbackResponse(message="Message accepted")

    def _reject(self, conversation_id: str, message_ids: list[str]) -> None:
        self.counters["rate_limited"] += 1
        logger.warning(
            f"Concurrency limit reached, {len(message_ids)} message(s) dropped",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "message_ids": message_ids,
                    **self.governor.get_stats(),
                }
            },
        )

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process_batch(self, batch: MergedBatch) -> None:
        if not self.governor.try_acquire():
            # already acknowledged as queued and marked processed, so the batch is lost
            self.counters["dropped_batches"] += 1
            self._reject(batch.conversation_id, [event.message_id for event in batch.events])
            return
        self.counters["merged_batches"] += 1
        job = ReplyJob(conversation_id=batch.conversation_id, content=batch.content, events=batch.events)
        await self._run_admitted(job)

    async def _run_admitted(self, job: ReplyJob) -> None:
        try:
            await self._run_reply(job)
        finally:
            self.governor.release()

    async def _run_reply(self, job: ReplyJob) -> None:
        log = bind_logger(logger, conversation_id=job.conversation_id, message_id=job.last_event.message_id)
        conversation_id = job.conversation_id
        try:
            await self.history.add_message(conversation_id, SimpleMessage(role="user", content=job.content))
            for event in job.events:
                await self._record(conversation_id, "user", event.text, event.message_id, event.contact_name)

            history = self.history.get_history(conversation_id, limit=self.settings.history_limit)
            request = self.profile.build_request([message.to_simple() for message in history])

            agent_started = time.monotonic()
            result = await self.agent_client.chat(request, conversation_id)
            agent_process_time_ms = (time.monotonic() - agent_started) * 1000

            reply = extract_reply_text(result.response)
            await self.history.add_message(conversation_id, SimpleMessage(role="assistant", content=reply))
            await self._record(conversation_id, "assistant", reply, None, None)
            log.info(
                "Agent reply ready",
                context={
                    "merged_messages": len(job.events),
                    "from_cache": result.from_cache,
                    "correlation_id": result.correlation_id,
                    "agent_ms": int(agent_process_time_ms),
                    "reply": preview(reply),
                },
            )

            delivery = await self.delivery.deliver(
                reply, job.last_event, agent_process_time_ms=agent_process_time_ms
            )
            if delivery.success:
                self.counters["replies_sent"] += 1
            else:
                self.counters["failures"] += 1
            log.info(
                "Reply pipeline finished",
                context={
                    "segments": delivery.segment_count,
                    "failed_segments": delivery.failed_segments,
                    "total_ms": int((time.monotonic() - job.started_at) * 1000),
                },
            )
        except RateLimitError as exc:
            self.counters["failures"] += 1
            log.warning("Agent rate limit exhausted, reply skipped", context={"retry_after": exc.retry_after})
        except NonRetryableApiError as exc:
            self.counters["failures"] += 1
            log.error(
                f"Agent rejected request, reply skipped: {exc.message}",
                context={"status_code": exc.status_code},
            )
        except EmptyReplyError:
            self.counters["failures"] += 1
            log.warning("Agent returned no reply text")
        except Exception as exc:
            self.counters["failures"] += 1
            log.error(f"Reply pipeline failed: {exc}", exc_info=True)

    async def _record(
        self,
        conversation_id: str,
        role: str,
        content: str,
        message_id: Optional[str],
        contact_name: Optional[str],
    ) -> None:
        if self.chat_records is None or not content:
            return
        # session work blocks, so it runs in a worker thread
        await asyncio.to_thread(
            self.chat_records.append,
            conversation_id,
            role,
            content,
            message_id=message_id,
            contact_name=contact_name,
        )

    async def handle_sent_result(self, payload: dict) -> CallbackResponse:
        logger.info("Send result received", extra={"context": payload})
        return CallbackResponse(message="Send result received")

    async def drain(self) -> None:
        """Wait for merge flushes and direct reply jobs that are still running."""
        while self._tasks or self.merge_window.get_stats()["running_flushes"]:
            await self.merge_window.drain()
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear_cache(self, request: ClearCacheRequest) -> dict:
        cleared: dict = {}
        if request.deduplication:
            cleared["deduplication"] = self.dedup.clear()
        if request.history:
            if request.conversation_id:
                cleared["history"] = int(self.history.clear_conversation(request.conversation_id))
            else:
                cleared["history"] = self.history.clear()
        if request.merge_queues:
            cleared["merge_queues"] = self.merge_window.clear(request.conversation_id)
        if request.agent_cache and self.agent_client.cache is not None:
            cleared["agent_cache"] = self.agent_client.cache.clear()
        logger.info("Caches cleared", extra={"context": cleared})
        return cleared

    def get_status(self) -> dict:
        status = {
            "enable_ai_reply": self.settings.enable_ai_reply,
            "enable_message_merge": self.settings.enable_message_merge,
            "counters": {
                "received": self.counters["received"],
                "malformed": self.counters["malformed"],
                "duplicates": self.counters["duplicates"],
                "rate_limited": self.counters["rate_limited"],
                "merged_batches": self.counters["merged_batches"],
                "dropped_batches": self.counters["dropped_batches"],
                "replies_sent": self.counters["replies_sent"],
                "failures": self.counters["failures"],
            },
            "filtered": dict(self.filtered),
            "governor": self.governor.get_stats(),
            "deduplication": self.dedup.get_stats(),
            "merge": self.merge_window.get_stats(),
            "history": self.history.get_stats(),
        }
        if self.agent_client.cache is not None:
            status["agent_cache"] = self.agent_client.cache.get_stats()
        return status
