from typing import Optional

from pydantic import BaseModel

from replybot.schemas.callback import MessageType


class SendPayload(BaseModel):
    text: str


class SendMessageRequest(BaseModel):
    token: Optional[str] = None
    chatId: str
    messageType: int = MessageType.TEXT
    payload: SendPayload


class HistoryEntry(BaseModel):
    role: str
    content: str
    timestamp: float


class HistoryResponse(BaseModel):
    conversation_id: str
    message_count: int
    messages: list[HistoryEntry]


class ClearCacheRequest(BaseModel):
    deduplication: bool = False
    history: bool = False
    merge_queues: bool = False
    agent_cache: bool = False
    conversation_id: Optional[str] = None
