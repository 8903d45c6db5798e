from __future__ import annotations

import logging
import time
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from localbiz.core.config import settings
from localbiz.core.errors import register_error_handlers
from localbiz.core.logging_config import configure_logging
from localbiz.db.base import Base
from localbiz.db.session import engine

import localbiz.models

from localbiz.routers import admin, analytics, auth, businesses, reviews, uploads, users

configure_logging(log_dir=settings.log_dir, level=settings.log_level)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Local Business Directory", version="0.1.0")

    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    @app.on_event("startup")
    async def on_startup() -> None:
        Base.metadata.create_all(bind=engine)
        logger.info("DB ready")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.time()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error")
            return JSONResponse(status_code=500, content={"detail": "Internal server error"})
        duration_ms = int((time.time() - start) * 1000)
        logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration_ms)
        return response

    @app.get("/health", tags=["health"])
    def health() -> dict:
        return {"status": "ok"}

    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(businesses.router)
    app.include_router(reviews.router)
    app.include_router(analytics.router)
    app.include_router(uploads.router)
    app.include_router(admin.router)

    if settings.storage_backend.lower() == "local":
        media_dir = Path(settings.media_dir)
        media_dir.mkdir(parents=True, exist_ok=True)
        prefix = "/" + settings.media_url_prefix.strip("/")
        app.mount(prefix, StaticFiles(directory=str(media_dir)), name="media")

    return app


app = create_app()
