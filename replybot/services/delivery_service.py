import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import httpx

from replybot.logging_config import get_logger, mask_secret, preview
from replybot.schemas.callback import MessageCallback
from replybot.schemas.message import SendMessageRequest, SendPayload
from replybot.services.pacing_service import ReplyPacer

logger = get_logger("delivery_service")


def split_reply_segments(text: str) -> list[str]:
    """One segment per non-empty line."""
    return [line.strip() for line in text.split("\n") if line.strip()]


class MessageSender(ABC):
    """Hands a single outbound message to the chat platform."""

    @abstractmethod
    async def send_message(self, request: SendMessageRequest) -> bool:
        pass


class HttpMessageSender(MessageSender):
    def __init__(self, url: str, timeout_seconds: float = 30.0, http_client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def send_message(self, request: SendMessageRequest) -> bool:
        try:
            response = await self._client.post(self.url, json=request.model_dump(mode="json", exclude_none=True))
        except httpx.HTTPError as exc:
            logger.error(f"Error sending message to {request.chatId}: {exc!r}")
            return False
        logger.info(
            f"Send response: status={response.status_code}, chat={request.chatId}, body={response.text[:200]}"
        )
        return response.is_success

    async def aclose(self) -> None:
        await self._client.aclose()


class LoggingMessageSender(MessageSender):
    """Used when no sender URL is configured: replies are only logged."""

    async def send_message(self, request: SendMessageRequest) -> bool:
        logger.warning(
            "No message sender configured, reply not delivered",
            extra={
                "context": {
                    "chat_id": request.chatId,
                    "token": mask_secret(request.token),
                    "text": preview(request.payload.text),
                }
            },
        )
        return True


@dataclass
class DeliveryResult:
    success: bool
    segment_count: int
    failed_segments: list[int] = field(default_factory=list)
    total_time_ms: int = 0


class ReplyDelivery:
    def __init__(self, sender: MessageSender, pacer: ReplyPacer, split_send: bool = True):
        self.sender = sender
        self.pacer = pacer
        self.split_send = split_send

    async def deliver(
        self,
        reply: str,
        event: MessageCallback,
        agent_process_time_ms: Optional[float] = None,
    ) -> DeliveryResult:
        started = time.monotonic()
        segments = split_reply_segments(reply) if self.split_send else [reply.strip()]
        segments = [segment for segment in segments if segment]
        failed: list[int] = []

        for index, segment in enumerate(segments):
            delay_ms = self.pacer.calculate_delay(
                segment,
                is_first_segment=index == 0,
                agent_process_time_ms=agent_process_time_ms,
            )
            await self.pacer.sleep(delay_ms)

            request = SendMessageRequest(
                token=event.token,
                chatId=event.conversation_id,
                payload=SendPayload(text=segment),
            )
            try:
                sent = await self.sender.send_message(request)
            except Exception as exc:
                logger.error(
                    f"Segment {index + 1}/{len(segments)} send raised: {exc!r}",
                    extra={"context": {"conversation_id": event.conversation_id}},
                )
                sent = False
            if not sent:
                failed.append(index)
                continue
            logger.debug(
                f"Segment {index + 1}/{len(segments)} sent after {delay_ms}ms",
                extra={"context": {"conversation_id": event.conversation_id, "text": preview(segment)}},
            )

        result = DeliveryResult(
            success=bool(segments) and not failed,
            segment_count=len(segments),
            failed_segments=failed,
            total_time_ms=int((time.monotonic() - started) * 1000),
        )
        if failed:
            logger.warning(
                "Reply delivered with failed segments",
                extra={
                    "context": {
                        "conversation_id": event.conversation_id,
                        "failed_segments": failed,
                        "segment_count": result.segment_count,
                    }
                },
            )
        return result
