"""
FastAPI Application — REST API for scheduling Telegram notifications.

Provides:
- Create / inspect / cancel / list notifications
- Queue depth diagnostics
- Health endpoint
- A browser page for scheduling and watching notifications
- Dispatcher workers and the delayed-message promoter, started with the app
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from cache.base import CacheError
from config.logging import configure_logging
from config.settings import load_settings
from core.container import NotifierContainer
from core.errors import DependencyFailureError, InvalidInputError, NotFoundError, NotifierError
from models.schemas import Notification

logger = structlog.get_logger()

WEB_DIR = Path(__file__).parent / "web"


# ──────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────

class NotifyRequest(BaseModel):
    message: str = ""
    time: str = ""            # RFC3339; empty sends immediately
    chat_id: int = 0


def _status_code(error: NotifierError) -> int:
    if isinstance(error, InvalidInputError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, DependencyFailureError):
        return 503
    return 500


def _container(request: Request) -> NotifierContainer:
    return request.app.state.container


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

def create_app(container: Optional[NotifierContainer] = None) -> FastAPI:
    """
    Build the API. Without a container one is built from settings when the
    app starts, so importing this module has no side effects.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if container is None:
            settings = load_settings()
            configure_logging(settings)
            app.state.container = NotifierContainer.from_settings(settings)
        else:
            app.state.container = container

        await app.state.container.start()
        logger.info("delayed_notifier_started", app=app.state.container.settings.app_name)
        yield
        await app.state.container.stop()
        logger.info("delayed_notifier_stopped")

    app = FastAPI(
        title="DelayedNotifier API",
        description="Schedules Telegram messages for delivery at a given time",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotifierError)
    async def notifier_error_handler(request: Request, exc: NotifierError):
        code = _status_code(exc)
        if code >= 500:
            logger.error("request_failed", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=code, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "invalid request body"})

    # ══════════════════════════════════════════════════════════
    #  BROWSER UI
    # ══════════════════════════════════════════════════════════

    app.mount("/static", StaticFiles(directory=WEB_DIR / "static"), name="static")

    @app.get("/", include_in_schema=False)
    async def index():
        return FileResponse(WEB_DIR / "index.html")

    # ══════════════════════════════════════════════════════════
    #  HEALTH & DIAGNOSTICS
    # ══════════════════════════════════════════════════════════

    @app.get("/health")
    async def health(request: Request):
        c = _container(request)
        try:
            cache_ok = await c.cache.ping()
        except CacheError as e:
            logger.warning("health_cache_unreachable", error=str(e))
            cache_ok = False
        return {
            "status": "healthy" if c.started else "starting",
            "cache": cache_ok,
            "channel": await c.channel.health_check(),
        }

    @app.get("/api/v1/queue/stats")
    async def queue_stats(request: Request):
        c = _container(request)
        queue = c.queue
        return {
            "queue_depth": await queue.queue_length(c.settings.queue.routing_key),
            "delayed_depth": await queue.queue_length(queue.DELAYED),
            "dlq_depth": await queue.queue_length(queue.dead_letter_queue),
            "consumer_running": c.consumer.running,
        }

    # ══════════════════════════════════════════════════════════
    #  NOTIFICATIONS
    # ══════════════════════════════════════════════════════════

    @app.post("/api/v1/notify")
    async def create_notification(req: NotifyRequest, request: Request):
        notification = Notification(message=req.message, time=req.time, chat_id=req.chat_id)
        notification_id = await _container(request).service.create(notification)
        return {"id": notification_id}

    @app.get("/api/v1/notify/{notification_id}")
    async def get_notification_status(notification_id: str, request: Request):
        status = await _container(request).service.get_status(notification_id)
        return {"status": status.value}

    @app.delete("/api/v1/notify/{notification_id}")
    async def delete_notification(notification_id: str, request: Request):
        await _container(request).service.delete(notification_id)
        return {"status": f"notify {notification_id} is deleted"}

    @app.get("/api/v1/notifications")
    async def list_notifications(request: Request):
        notifications = await _container(request).service.list_all()
        return [n.to_dict() for n in notifications]

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = load_settings()
    uvicorn.run("api.main:app", host=settings.host, port=settings.port, reload=settings.debug)
