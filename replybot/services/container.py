from dataclasses import dataclass
from typing import Optional

import httpx

from replybot.config import Settings
from replybot.database import build_session_factory
from replybot.logging_config import get_logger, mask_secret
from replybot.services.agent_client import AgentClient
from replybot.services.agent_profile import AgentProfile, load_profile
from replybot.services.chat_record_service import ChatRecordService
from replybot.services.dedup_service import DeduplicationStore
from replybot.services.delivery_service import (
    HttpMessageSender,
    LoggingMessageSender,
    MessageSender,
    ReplyDelivery,
)
from replybot.services.dispatcher import Dispatcher
from replybot.services.filter_service import MessageFilter
from replybot.services.governor import ConcurrencyGovernor
from replybot.services.history_service import HistoryStore
from replybot.services.merge_service import MergeWindow
from replybot.services.pacing_service import ReplyPacer

logger = get_logger("container")


@dataclass
class ServiceContainer:
    settings: Settings
    dedup: DeduplicationStore
    history: HistoryStore
    governor: ConcurrencyGovernor
    merge_window: MergeWindow
    agent_client: AgentClient
    profile: AgentProfile
    sender: MessageSender
    dispatcher: Dispatcher

    def run_cleanup(self) -> dict:
        """One sweep over every TTL-bound store."""
        return {
            "history": self.history.cleanup_expired(),
            "deduplication": self.dedup.cleanup_expired(),
            "agent_cache": self.agent_client.cache.evict_expired() if self.agent_client.cache else 0,
        }

    async def shutdown(self) -> None:
        await self.merge_window.shutdown()
        await self.dispatcher.drain()
        await self.agent_client.aclose()
        if isinstance(self.sender, HttpMessageSender):
            await self.sender.aclose()


def build_services(
    settings: Settings,
    sender: Optional[MessageSender] = None,
    agent_transport: Optional[httpx.AsyncBaseTransport] = None,
    pacer: Optional[ReplyPacer] = None,
) -> ServiceContainer:
    settings.require_runtime()

    if sender is None:
        if settings.message_sender_url:
            sender = HttpMessageSender(settings.message_sender_url, settings.message_sender_timeout_seconds)
        else:
            sender = LoggingMessageSender()

    dedup = DeduplicationStore(settings.dedup_ttl_seconds, settings.dedup_max_entries)
    history = HistoryStore(settings.conversation_max_messages, settings.conversation_timeout_ms)
    governor = ConcurrencyGovernor(settings.max_concurrent_jobs)
    merge_window = MergeWindow(settings.merge_window_ms, settings.max_merged_messages)
    agent_client = AgentClient.from_settings(settings, transport=agent_transport)
    profile = load_profile(settings)
    delivery = ReplyDelivery(sender, pacer or ReplyPacer.from_settings(settings), split_send=settings.enable_split_send)
    chat_records = (
        ChatRecordService(build_session_factory(settings.database_url)) if settings.chat_records_enabled else None
    )

    dispatcher = Dispatcher(
        settings=settings,
        message_filter=MessageFilter(settings.accepted_message_sources, reply_in_rooms=settings.reply_in_rooms),
        dedup=dedup,
        governor=governor,
        history=history,
        merge_window=merge_window,
        agent_client=agent_client,
        profile=profile,
        delivery=delivery,
        chat_records=chat_records,
    )
    logger.info(
        "Reply services ready",
        extra={
            "context": {
                "agent_api_base_url": settings.agent_api_base_url,
                "agent_api_key": mask_secret(settings.agent_api_key),
                "model": profile.model,
                "merge_enabled": settings.enable_message_merge,
                "max_concurrent_jobs": settings.max_concurrent_jobs,
                "chat_records_enabled": settings.chat_records_enabled,
            }
        },
    )
    return ServiceContainer(
        settings=settings,
        dedup=dedup,
        history=history,
        governor=governor,
        merge_window=merge_window,
        agent_client=agent_client,
        profile=profile,
        sender=sender,
        dispatcher=dispatcher,
    )
