from replybot.services.container import ServiceContainer, build_services
from replybot.services.dispatcher import Dispatcher, ReplyJob

__all__ = ["ServiceContainer", "build_services", "Dispatcher", "ReplyJob"]
