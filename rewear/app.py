"""
FastAPI application entry point for the ReWear backend.

    uvicorn rewear.app:app --reload
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rewear.config import get_settings
from rewear.errors import ReWearError, ValidationError
from rewear.routes import router

logger = logging.getLogger(__name__)


async def handle_service_error(request: Request, exc: ReWearError) -> JSONResponse:
    body = {"detail": exc.message}
    if isinstance(exc, ValidationError) and exc.field:
        body["field"] = exc.field
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="ReWear API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ReWearError, handle_service_error)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
