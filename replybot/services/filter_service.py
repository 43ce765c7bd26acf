from dataclasses import dataclass, field
from typing import Iterable, Optional

from replybot.schemas.callback import MessageCallback, MessageType, describe_source


@dataclass
class FilterResult:
    passed: bool
    reason: Optional[str] = None
    content: str = ""
    details: dict = field(default_factory=dict)


class MessageFilter:
    """Decides whether an inbound callback deserves an AI reply."""

    def __init__(self, accepted_sources: Iterable[int], reply_in_rooms: bool = False):
        self.accepted_sources = frozenset(accepted_sources)
        self.reply_in_rooms = reply_in_rooms

    def validate(self, event: MessageCallback) -> FilterResult:
        if event.is_self:
            return FilterResult(False, "self_message")

        if event.room_id and not self.reply_in_rooms:
            return FilterResult(False, "room_message", details={"room_id": event.room_id})

        if event.message_type != MessageType.TEXT:
            return FilterResult(False, "non_text", details={"message_type": event.message_type})

        if event.source not in self.accepted_sources:
            return FilterResult(
                False,
                "source",
                details={"source": event.source, "source_name": describe_source(event.source)},
            )

        content = event.text
        if not content:
            return FilterResult(False, "empty_content")

        return FilterResult(True, content=content)
