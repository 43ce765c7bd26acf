import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from replybot.config import Settings
from replybot.errors import (
    AgentApiError,
    EmptyReplyError,
    NonRetryableApiError,
    RateLimitError,
    TransientError,
)
from replybot.logging_config import get_logger
from replybot.schemas.agent import ApiEnvelope, ChatRequest, ChatResponse, UsageStats
from replybot.services.agent_cache import AgentResponseCache, fingerprint

logger = get_logger("agent_client")

NON_RETRYABLE_STATUSES = {400, 401, 403}
CORRELATION_HEADER = "x-correlation-id"


@dataclass
class AgentChatResult:
    response: ChatResponse
    usage: UsageStats
    tools_used: list[str] = field(default_factory=list)
    from_cache: bool = False
    correlation_id: Optional[str] = None
    attempts: int = 0


def extract_reply_text(response: ChatResponse) -> str:
    """Text of the last assistant message, parts separated by a blank line."""
    for message in reversed(response.messages):
        if message.role != "assistant":
            continue
        texts = [part.text.strip() for part in message.parts if part.type == "text" and part.text and part.text.strip()]
        if texts:
            return "\n\n".join(texts)
    raise EmptyReplyError("Agent response contains no assistant text")


class AgentClient:
    """Client for the agent backend's /chat endpoint with cache and retry."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 600,
        max_retries: int = 3,
        retry_base_delay_ms: int = 1000,
        rate_limit_default_wait_seconds: float = 60,
        cache: Optional[AgentResponseCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep_func: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_retries = max(1, max_retries)
        self.retry_base_delay_seconds = retry_base_delay_ms / 1000
        self.rate_limit_default_wait_seconds = rate_limit_default_wait_seconds
        self.cache = cache
        self._sleep = sleep_func
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "AgentClient":
        kwargs.setdefault(
            "cache",
            AgentResponseCache(
                ttl_seconds=settings.agent_cache_ttl_seconds,
                max_item_kb=settings.agent_cache_max_item_kb,
            ),
        )
        return cls(
            base_url=settings.agent_api_base_url,
            api_key=settings.agent_api_key,
            timeout_seconds=settings.agent_api_timeout_seconds,
            max_retries=settings.agent_max_retries,
            retry_base_delay_ms=settings.agent_retry_base_delay_ms,
            rate_limit_default_wait_seconds=settings.agent_rate_limit_default_wait_seconds,
            **kwargs,
        )

    async def chat(self, request: ChatRequest, conversation_id: str) -> AgentChatResult:
        cache_key = fingerprint(request)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(
                    "Agent cache hit",
                    extra={"context": {"conversation_id": conversation_id, "cache_key": cache_key[:12]}},
                )
                return AgentChatResult(
                    response=cached,
                    usage=cached.usage,
                    tools_used=list(cached.tools.used),
                    from_cache=True,
                )

        payload = request.to_payload()
        headers = {"X-Conversation-Id": conversation_id}
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            is_last = attempt == self.max_retries - 1
            try:
                response = await self._client.post("/chat", json=payload, headers=headers)
            except httpx.HTTPError as exc:
                last_error = exc
                logger.warning(
                    "Agent request failed",
                    extra={"context": {"conversation_id": conversation_id, "attempt": attempt + 1, "error": repr(exc)}},
                )
            else:
                if response.status_code == 429:
                    retry_after = self._retry_after(response)
                    if is_last:
                        raise RateLimitError(retry_after)
                    logger.warning(
                        "Agent rate limited",
                        extra={
                            "context": {
                                "conversation_id": conversation_id,
                                "attempt": attempt + 1,
                                "retry_after": retry_after,
                            }
                        },
                    )
                    await self._sleep(retry_after)
                    continue

                if response.status_code in NON_RETRYABLE_STATUSES:
                    raise NonRetryableApiError(
                        f"Agent API rejected request: {response.status_code}",
                        status_code=response.status_code,
                        details=self._error_details(response),
                    )

                if response.is_success:
                    try:
                        envelope = ApiEnvelope.model_validate(response.json())
                    except (ValueError, PydanticValidationError) as exc:
                        last_error = exc
                        logger.warning(
                            "Agent response is not a valid envelope",
                            extra={"context": {"conversation_id": conversation_id, "attempt": attempt + 1}},
                        )
                    else:
                        return self._accept(request, cache_key, envelope, response, attempt + 1, conversation_id)
                else:
                    last_error = AgentApiError(
                        f"Agent API error: {response.status_code}",
                        status_code=response.status_code,
                        details=self._error_details(response),
                    )
                    logger.warning(
                        "Agent API error response",
                        extra={
                            "context": {
                                "conversation_id": conversation_id,
                                "attempt": attempt + 1,
                                "status_code": response.status_code,
                            }
                        },
                    )

            if is_last:
                break
            await self._sleep(2**attempt * self.retry_base_delay_seconds)

        raise TransientError(
            f"Agent API failed after {self.max_retries} attempts",
            status_code=getattr(last_error, "status_code", None),
        ) from last_error

    def _accept(
        self,
        request: ChatRequest,
        cache_key: str,
        envelope: ApiEnvelope,
        response: httpx.Response,
        attempts: int,
        conversation_id: str,
    ) -> AgentChatResult:
        if not envelope.success or envelope.data is None:
            raise NonRetryableApiError(
                envelope.error or "Agent API returned an unsuccessful response",
                status_code=response.status_code,
                details=envelope.details if isinstance(envelope.details, dict) else None,
            )

        data = envelope.data
        correlation_id = response.headers.get(CORRELATION_HEADER) or envelope.correlationId
        logger.info(
            "Agent reply received",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "correlation_id": correlation_id,
                    "attempts": attempts,
                    "total_tokens": data.usage.totalTokens,
                    "tools_used": data.tools.used,
                }
            },
        )

        if self.cache is not None and AgentResponseCache.should_cache(data, request):
            self.cache.set(cache_key, data)

        return AgentChatResult(
            response=data,
            usage=data.usage,
            tools_used=list(data.tools.used),
            from_cache=False,
            correlation_id=correlation_id,
            attempts=attempts,
        )

    def _retry_after(self, response: httpx.Response) -> float:
        header = response.headers.get("retry-after")
        if header:
            try:
                return float(header)
            except ValueError:
                pass
        retry_after = self._error_details(response).get("retryAfter")
        if isinstance(retry_after, (int, float)):
            return float(retry_after)
        return self.rate_limit_default_wait_seconds

    @staticmethod
    def _error_details(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError:
            return {}
        if isinstance(body, dict) and isinstance(body.get("details"), dict):
            return body["details"]
        return {}

    async def get_models(self) -> Any:
        response = await self._client.get("/models")
        response.raise_for_status()
        return response.json()

    async def get_tools(self) -> Any:
        response = await self._client.get("/tools")
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()
