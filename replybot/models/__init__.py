from replybot.models.chat_record import ChatRecord

__all__ = ["ChatRecord"]
