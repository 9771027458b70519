# backend/compass/interfaces/http/main.py
from __future__ import annotations

import logging
import os
import traceback
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from compass import __version__
from compass.core.config import get_settings
from compass.core.errors import (
    CompassError,
    DanglingReference,
    FlowNotFound,
    ImportFailed,
    InvalidTransition,
    SessionBusy,
    SessionRestoreFailed,
    StorageError,
    ValidationFailed,
)
from compass.core.logging import setup_logging

logger = logging.getLogger("compass")

_STATUS_BY_ERROR = {
    FlowNotFound: 404,
    SessionRestoreFailed: 404,
    ValidationFailed: 422,
    DanglingReference: 422,
    ImportFailed: 400,
    InvalidTransition: 409,
    SessionBusy: 409,
    StorageError: 503,
}


def _status_for(exc: CompassError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[cls]
    return 400


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    app = FastAPI(title=settings.APP_NAME, version=__version__)

    allowed_origins = ["http://localhost:3000", "http://localhost:3001"]
    env_origins = os.getenv("ALLOWED_ORIGINS")
    if env_origins:
        allowed_origins.extend(o.strip() for o in env_origins.split(",") if o.strip())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins if settings.ENV == "production" else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # simple liveness
    @app.get("/_/ping")
    def _ping():
        return {"ok": True}

    # Every error response carries a request_id that also appears in the logs.

    @app.exception_handler(CompassError)
    async def compass_error_handler(request: Request, exc: CompassError):
        req_id = str(uuid.uuid4())
        status = _status_for(exc)
        logger.warning("CompassError %s %s %s", req_id, exc.code, exc)
        content = exc.to_dict()
        return JSONResponse(
            status_code=status,
            content={
                "error": content.pop("code"),
                "message": content.pop("message"),
                "request_id": req_id,
                **content,
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        req_id = str(uuid.uuid4())
        logger.warning("HTTPException %s %s %s", req_id, exc.status_code, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "http_error",
                "status_code": exc.status_code,
                "message": exc.detail,
                "request_id": req_id,
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        req_id = str(uuid.uuid4())
        logger.warning("ValidationError %s %s", req_id, exc)
        return JSONResponse(
            status_code=422,
            content={
                "error": "validation_error",
                "message": "Invalid request payload",
                "details": jsonable_encoder(exc.errors()),
                "request_id": req_id,
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        req_id = str(uuid.uuid4())
        logger.error("Unhandled exception %s %s\n%s", req_id, exc, traceback.format_exc())
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "type": exc.__class__.__name__,
                "message": str(exc),
                "request_id": req_id,
            },
        )

    from compass.interfaces.http.routers import api

    app.include_router(api)
    return app


app = create_app()
