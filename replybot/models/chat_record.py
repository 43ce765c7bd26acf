from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from replybot.database import Base


class ChatRecord(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(128), nullable=False, index=True)
    message_id = Column(String(128), nullable=True)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    contact_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
