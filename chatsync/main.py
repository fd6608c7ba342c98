import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from chatsync.core.config import Settings
from chatsync.repositories.message_api import HttpMessageApi
from chatsync.routers.sync import router as sync_router


@asynccontextmanager
async def lifespan(app: FastAPI):

    settings: Settings = app.state.settings
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if getattr(app.state, "message_api", None) is None:
        app.state.message_api = HttpMessageApi(
            settings.api_url,
            settings.api_token,
            timeout_seconds=settings.request_timeout_seconds,
            page_size=settings.thread_page_size,
        )
    app.state.controller = None
    app.state.mount_lock = asyncio.Lock()
    try:
        yield
    finally:
        controller = app.state.controller
        if controller is not None:
            await controller.unmount()
            await controller.scheduler.drain()
        close = getattr(app.state.message_api, "close", None)
        if close is not None:
            await close()


def create_app(settings: Optional[Settings] = None, message_api=None) -> FastAPI:

    app = FastAPI(title="chatsync", lifespan=lifespan)
    app.state.settings = settings or Settings.from_env()
    app.state.message_api = message_api
    app.include_router(sync_router)

    @app.get("/health")
    async def health(request: Request):
        controller = getattr(request.app.state, "controller", None)
        return {"ok": True, "mounted": bool(controller is not None and controller.mounted)}

    return app


app = create_app()
