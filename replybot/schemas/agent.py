from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


class ContextStrategy(str, Enum):
    ERROR = "error"
    SKIP = "skip"
    REPORT = "report"


class MessagePart(BaseModel):
    type: str = "text"
    text: Optional[str] = None

    model_config = {"extra": "allow"}


class SimpleMessage(BaseModel):
    role: str
    content: str


class StructuredMessage(BaseModel):
    role: str
    parts: list[MessagePart] = Field(default_factory=list)


class PruneOptions(BaseModel):
    maxOutputTokens: Optional[int] = None
    targetTokens: Optional[int] = None
    preserveRecentMessages: Optional[int] = None


class ChatRequest(BaseModel):
    """Body of POST /chat on the agent backend."""

    model: str
    messages: list[Union[SimpleMessage, StructuredMessage]]
    systemPrompt: Optional[str] = None
    promptType: Optional[str] = None
    allowedTools: Optional[list[str]] = None
    context: Optional[dict[str, Any]] = None
    toolContext: Optional[dict[str, Any]] = None
    contextStrategy: Optional[ContextStrategy] = None
    prune: Optional[bool] = None
    pruneOptions: Optional[PruneOptions] = None

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class UsageStats(BaseModel):
    inputTokens: int = 0
    outputTokens: int = 0
    totalTokens: int = 0
    cachedInputTokens: Optional[int] = None


class ToolsInfo(BaseModel):
    used: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


class ChatResponse(BaseModel):
    messages: list[StructuredMessage] = Field(default_factory=list)
    usage: UsageStats = Field(default_factory=UsageStats)
    tools: ToolsInfo = Field(default_factory=ToolsInfo)


class ApiEnvelope(BaseModel):
    success: bool
    data: Optional[ChatResponse] = None
    error: Optional[str] = None
    details: Optional[Any] = None
    correlationId: Optional[str] = None
