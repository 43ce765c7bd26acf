from fastapi import APIRouter, Depends, Request
from starlette.requests import ClientDisconnect

from replybot.logging_config import get_logger
from replybot.schemas.callback import CallbackResponse
from replybot.schemas.message import ClearCacheRequest, HistoryEntry, HistoryResponse
from replybot.services.container import ServiceContainer

logger = get_logger("message_router")

router = APIRouter(prefix="/message", tags=["message"])


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


async def _read_json(request: Request) -> dict | None:
    try:
        payload = await request.json()
    except ClientDisconnect:
        logger.info("Callback client disconnected during read")
        return None
    except ValueError as exc:
        raw = await request.body()
        logger.warning(
            "Callback payload is not valid JSON",
            extra={"context": {"error": str(exc), "body_preview": raw[:200].decode("utf-8", "ignore")}},
        )
        return None
    if not isinstance(payload, dict):
        logger.warning("Callback payload is not an object", extra={"context": {"type": type(payload).__name__}})
        return None
    return payload


@router.post("/callback", response_model=CallbackResponse)
async def receive_callback(request: Request, services: ServiceContainer = Depends(get_services)):
    """Inbound chat message. Always acknowledged so the platform does not retry."""
    payload = await _read_json(request)
    if payload is None:
        return CallbackResponse(message="Invalid payload ignored")
    return await services.dispatcher.handle_event(payload)


@router.post("/sent-result", response_model=CallbackResponse)
async def receive_sent_result(request: Request, services: ServiceContainer = Depends(get_services)):
    payload = await _read_json(request)
    if payload is None:
        return CallbackResponse(message="Invalid payload ignored")
    return await services.dispatcher.handle_sent_result(payload)


@router.get("/status")
async def get_status(services: ServiceContainer = Depends(get_services)):
    return services.dispatcher.get_status()


@router.get("/history/{conversation_id}", response_model=HistoryResponse)
async def get_history(conversation_id: str, limit: int = 20, services: ServiceContainer = Depends(get_services)):
    messages = services.history.get_history(conversation_id, limit=limit)
    return HistoryResponse(
        conversation_id=conversation_id,
        message_count=len(messages),
        messages=[HistoryEntry(role=m.role, content=m.content, timestamp=m.timestamp) for m in messages],
    )


@router.post("/cache/clear")
async def clear_cache(request: ClearCacheRequest, services: ServiceContainer = Depends(get_services)):
    cleared = services.dispatcher.clear_cache(request)
    return {"success": True, "cleared": cleared}
