from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from ..config import SessionSettings
from ..manager import ShellSessionManager
from .router import router as shells_router
from .websocket import router as events_router


def create_app(
    manager: Optional[ShellSessionManager] = None,
    settings: Optional[SessionSettings] = None,
) -> FastAPI:
    """Build an app that owns ``manager`` and closes its shells on shutdown."""
    mgr = manager or ShellSessionManager(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            await mgr.close_all()

    app = FastAPI(title="Shell Sessions", lifespan=lifespan)
    app.state.manager = mgr
    app.include_router(shells_router)
    app.include_router(events_router)
    return app
