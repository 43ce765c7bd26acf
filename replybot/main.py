import asyncio
from typing import Optional

from fastapi import FastAPI

from replybot.config import Settings
from replybot.config import settings as default_settings
from replybot.logging_config import get_logger, setup_logging
from replybot.routers import message
from replybot.services.container import ServiceContainer, build_services

cleanup_logger = get_logger("cleanup_worker")


async def _cleanup_worker_loop(services: ServiceContainer, interval_seconds: float) -> None:
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            results = services.run_cleanup()
            if any(results.values()):
                cleanup_logger.info("Cleanup sweep finished", extra={"context": results})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            cleanup_logger.error(
                "Cleanup worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


def create_app(settings: Optional[Settings] = None, services: Optional[ServiceContainer] = None) -> FastAPI:
    settings = settings or (services.settings if services is not None else default_settings)
    setup_logging(settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="ReplyBot API",
        description="Chat callback intake and AI reply pipeline",
        version="0.1.0",
        debug=settings.debug,
    )
    app.include_router(message.router)
    app.state.services = services
    app.state.cleanup_task = None

    @app.on_event("startup")
    async def start_services() -> None:
        if app.state.services is None:
            # raises ConfigurationError and aborts startup when required settings are missing
            app.state.services = build_services(settings)
        if settings.cleanup_worker_enabled:
            interval_seconds = max(settings.conversation_cleanup_interval_ms / 1000, 0.1)
            app.state.cleanup_task = asyncio.create_task(_cleanup_worker_loop(app.state.services, interval_seconds))
            cleanup_logger.info(f"Cleanup worker started, interval={interval_seconds}s")

    @app.on_event("shutdown")
    async def stop_services() -> None:
        task = app.state.cleanup_task
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            app.state.cleanup_task = None
        if app.state.services is not None:
            await app.state.services.shutdown()

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
