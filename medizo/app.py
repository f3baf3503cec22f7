"""
FastAPI application entry point.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from medizo.config import DEFAULT_JWT_SECRET, Settings, get_settings
from medizo.dependencies import get_db_client
from medizo.routes import auth, doctors, health, patients, prescriptions, uploads, users
from medizo.seed import seed_demo_users

logger = logging.getLogger(__name__)


def _validation_messages(exc: RequestValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())[1:])
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return messages


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if isinstance(exc.detail, dict):
            content = dict(exc.detail)
        else:
            content = {"message": exc.detail}
        return JSONResponse(
            content, status_code=exc.status_code, headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            {"message": "Validation failed", "errors": _validation_messages(exc)},
            status_code=400,
        )

    @app.exception_handler(Exception)
    async def server_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"message": "Server error"}, status_code=500)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.is_production and settings.jwt_secret == DEFAULT_JWT_SECRET:
        raise RuntimeError("JWT_SECRET must be set to a non-default value in production")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.seed_demo_users:
            db = app.dependency_overrides.get(get_db_client, get_db_client)()
            seed_demo_users(db)
        yield

    app = FastAPI(title="Medizo Healthcare API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "x-auth-token"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s -> %d (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    _install_error_handlers(app)

    prefix = settings.api_prefix
    app.include_router(auth.router, prefix=f"{prefix}/auth", tags=["auth"])
    app.include_router(users.router, prefix=f"{prefix}/users", tags=["users"])
    app.include_router(doctors.router, prefix=f"{prefix}/doctors", tags=["doctors"])
    app.include_router(patients.router, prefix=f"{prefix}/patients", tags=["patients"])
    app.include_router(
        prescriptions.router, prefix=f"{prefix}/prescriptions", tags=["prescriptions"]
    )
    app.include_router(uploads.router)
    app.include_router(health.router)
    return app


app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run("medizo.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
