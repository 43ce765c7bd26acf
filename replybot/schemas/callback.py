from enum import IntEnum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


class MessageType(IntEnum):
    UNKNOWN = 0
    FILE = 1
    VOICE = 2
    CONTACT_CARD = 3
    CHAT_HISTORY = 4
    EMOTION = 5
    IMAGE = 6
    TEXT = 7
    LOCATION = 8
    MINI_PROGRAM = 9
    MONEY = 10
    REVOKE = 11
    LINK = 12
    VIDEO = 13
    CHANNELS = 14
    CALL_RECORD = 15
    GROUP_SOLITAIRE = 16
    ROOM_INVITE = 9999
    SYSTEM = 10000
    WECOM_SYSTEM = 10001


class MessageSource(IntEnum):
    MOBILE_PUSH = 0
    AGGREGATED_CHAT_MANUAL = 1
    ADVANCED_GROUP_SEND_SOP = 2
    AUTO_REPLY = 3
    CREATE_GROUP = 4
    OTHER_BOT_REPLY = 5
    API_SEND = 6
    NEW_CUSTOMER_ANSWER_SOP = 7
    API_GROUP_SEND = 8
    TAG_SOP = 9
    MULTI_GROUP_FORWARD = 11
    MULTI_GROUP_REPLAY = 12
    AUTO_END_CONVERSATION = 13
    SCHEDULED_MESSAGE = 14
    AI_REPLY = 15


def describe_source(source: Optional[int]) -> str:
    try:
        return MessageSource(source).name.lower()
    except (TypeError, ValueError):
        return "unknown"


class TextPayload(BaseModel):
    text: Optional[str] = None
    pureText: Optional[str] = None
    mention: Optional[list[str]] = None

    model_config = {"extra": "allow"}


class MessageCallback(BaseModel):
    """Inbound chat-platform callback event."""

    message_id: str = Field(validation_alias=AliasChoices("messageId", "message_id"))
    conversation_id: str = Field(validation_alias=AliasChoices("chatId", "conversationId", "conversation_id"))
    message_type: int = Field(validation_alias=AliasChoices("messageType", "message_type"))
    source: Optional[int] = Field(default=None, validation_alias=AliasChoices("source", "sourceCode"))
    is_self: bool = Field(default=False, validation_alias=AliasChoices("isSelf", "is_self"))
    token: Optional[str] = None
    contact_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("imContactId", "contactId", "contact_id"),
    )
    contact_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("contactName", "contact_name"))
    contact_type: Optional[int] = Field(default=None, validation_alias=AliasChoices("contactType", "contact_type"))
    bot_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("imBotId", "botId"))
    room_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("imRoomId", "roomId"))
    room_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("roomName", "room_name"))
    timestamp: Optional[str] = None
    payload: Optional[Any] = None

    @property
    def is_text(self) -> bool:
        return self.message_type == MessageType.TEXT

    @property
    def text(self) -> str:
        """Text content, preferring the variant without @-mentions."""
        if not self.is_text or not isinstance(self.payload, dict):
            return ""
        payload = TextPayload.model_validate(self.payload)
        return (payload.pureText or payload.text or "").strip()


class CallbackResponse(BaseModel):
    success: bool = True
    message: str
