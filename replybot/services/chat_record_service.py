from typing import Optional

from sqlalchemy.orm import sessionmaker

from replybot.database import session_scope
from replybot.logging_config import get_logger
from replybot.models import ChatRecord

logger = get_logger("chat_record_service")


class ChatRecordService:
    """Append-only log of conversation turns in the database."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def append(
        self,
        conversation_id: str,
        role: str,
        content: str,
        message_id: Optional[str] = None,
        contact_name: Optional[str] = None,
    ) -> bool:
        try:
            with session_scope(self._session_factory) as db:
                db.add(
                    ChatRecord(
                        conversation_id=conversation_id,
                        message_id=message_id,
                        role=role,
                        content=content,
                        contact_name=contact_name,
                    )
                )
                db.commit()
            return True
        except Exception as exc:
            logger.error(
                "Failed to store chat record",
                extra={"context": {"conversation_id": conversation_id, "role": role, "error": str(exc)}},
            )
            return False

    def list_for_conversation(self, conversation_id: str, limit: int = 50) -> list[ChatRecord]:
        with session_scope(self._session_factory) as db:
            rows = (
                db.query(ChatRecord)
                .filter(ChatRecord.conversation_id == conversation_id)
                .order_by(ChatRecord.id.desc())
                .limit(limit)
                .all()
            )
            db.expunge_all()
        return list(reversed(rows))
