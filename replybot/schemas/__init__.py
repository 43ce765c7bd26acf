from replybot.schemas.agent import ChatRequest, ChatResponse
from replybot.schemas.callback import CallbackResponse, MessageCallback
from replybot.schemas.message import SendMessageRequest

__all__ = ["MessageCallback", "CallbackResponse", "ChatRequest", "ChatResponse", "SendMessageRequest"]
