"""
parley: FastAPI entry point.

Chat store and delivery engine: single, group and broadcast chats, cursor
paginated history, per-user delete/clear overlays and read tracking.
Real-time events go out over one WebSocket per user at /ws.
"""

import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from sqlalchemy.orm import Session

from parley.api import chats, health, schedules
from parley.config import settings
from parley.core.errors import ChatServiceError
from parley.database import get_db
from parley.redis.client import close_redis, init_redis
from parley.redis.relay import run_relay
from parley.websocket.handlers import user_ws_handler
from parley.workers.scheduler import run_scheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

os.makedirs(settings.UPLOAD_DIR, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_redis()
    tasks = [asyncio.create_task(run_relay()), asyncio.create_task(run_scheduler())]
    yield
    for task in tasks:
        task.cancel()
    for task in tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task
    await close_redis()


app = FastAPI(
    title="parley",
    description="Chat message store and delivery engine",
    version="1.0.0",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------
# allow_origins=["*"] cannot be combined with allow_credentials=True, so a
# wildcard entry is turned into allow_origin_regex=".*".
_cors_origins = [o for o in settings.CORS_ORIGINS if o != "*"]
_cors_regex = ".*" if len(_cors_origins) < len(settings.CORS_ORIGINS) else None

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_origin_regex=_cors_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(health.router)
app.include_router(chats.router, prefix="/api")
app.include_router(schedules.router, prefix="/api")

# Local object store serves attachments as static files
app.mount(settings.PUBLIC_UPLOAD_PATH, StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, db: Session = Depends(get_db)) -> None:
    await user_ws_handler(websocket, db)


# ---------------------------------------------------------------------------
# Custom exception handlers
# ---------------------------------------------------------------------------


@app.exception_handler(ChatServiceError)
async def chat_service_error_handler(request: Request, exc: ChatServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.exception_handler(ValidationError)
async def pydantic_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    # A model that fails to validate server-side data is a bug, not bad input
    logger.error("%s %s produced an invalid %s: %s", request.method, request.url.path, exc.title, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "code": "internal_error"})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})
