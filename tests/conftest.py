from typing import Optional

import pytest

from replybot.config import Settings
from replybot.schemas.message import SendMessageRequest
from replybot.services.delivery_service import MessageSender


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class RecordingSender(MessageSender):
    def __init__(self, fail_on: Optional[set[int]] = None):
        self.sent: list[SendMessageRequest] = []
        self.fail_on = fail_on or set()
        self._calls = 0

    async def send_message(self, request: SendMessageRequest) -> bool:
        index = self._calls
        self._calls += 1
        if index in self.fail_on:
            return False
        self.sent.append(request)
        return True

    @property
    def texts(self) -> list[str]:
        return [request.payload.text for request in self.sent]


def make_settings(**overrides) -> Settings:
    values = {
        "conversation_max_messages": 10,
        "conversation_timeout_ms": 3_600_000,
        "conversation_cleanup_interval_ms": 60_000,
        "agent_api_base_url": "http://agent.test",
        "agent_api_key": "test-key",
        "agent_model": "test-model",
        "merge_window_ms": 50,
        "max_merged_messages": 3,
        "cleanup_worker_enabled": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def agent_envelope(text: str = "Hello there", tools_used: Optional[list[str]] = None, **extra) -> dict:
    return {
        "success": True,
        "data": {
            "messages": [{"role": "assistant", "parts": [{"type": "text", "text": text}]}],
            "usage": {"inputTokens": 10, "outputTokens": 5, "totalTokens": 15},
            "tools": {"used": tools_used or [], "skipped": []},
        },
        **extra,
    }


def callback_payload(message_id: str = "msg-1", chat_id: str = "chat-1", text: str = "hi", **overrides) -> dict:
    payload = {
        "messageId": message_id,
        "chatId": chat_id,
        "token": "tok-123456789",
        "imContactId": "contact-1",
        "contactName": "Alice",
        "messageType": 7,
        "source": 0,
        "isSelf": False,
        "timestamp": "1700000000000",
        "payload": {"text": text},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def sender():
    return RecordingSender()
