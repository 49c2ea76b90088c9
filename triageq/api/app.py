"""FastAPI server for TriageQ"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from triageq.api.routes.agent import router as agent_router
from triageq.api.routes.events import router as events_router
from triageq.api.routes.folder_watcher import router as folder_watcher_router
from triageq.api.routes.health import router as health_router
from triageq.api.routes.mail_watchers import router as mail_watchers_router
from triageq.api.routes.pending import router as pending_router
from triageq.config import API_HOST, API_PORT, APP_VERSION, is_development
from triageq.errors import AuthorizationRequiredError, PathNotAllowedError, TriageError
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter, log_event
from triageq.runtime import AutomationRuntime

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)

ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


def create_app(runtime: AutomationRuntime | None = None) -> FastAPI:
    """
    Build the API. When runtime is None one is created at startup; either
    way it is started with its own signals attached as the host, so active
    mailbox watchers resume.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        active = runtime or AutomationRuntime()
        app.state.runtime = active
        loaded = await active.start(host=active.signals)
        log_event("api.startup", service="triageq", version=APP_VERSION, mail_watchers=loaded)
        try:
            yield
        finally:
            await active.shutdown()
            log_event("api.shutdown", service="triageq")

    app = FastAPI(title="TriageQ API", version=APP_VERSION, lifespan=lifespan)

    # Custom validation error handler to prevent information leakage
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
        counter("api.validation_errors")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": "Invalid request format. Please check your request and try again.",
                "error_count": len(exc.errors()),
                "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
            },
        )

    @app.exception_handler(AuthorizationRequiredError)
    async def authorization_handler(request: Request, exc: AuthorizationRequiredError) -> JSONResponse:
        counter("api.authorization_required")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": str(exc), "provider": exc.provider},
        )

    @app.exception_handler(PathNotAllowedError)
    async def path_handler(request: Request, exc: PathNotAllowedError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": str(exc)})

    @app.exception_handler(TriageError)
    async def triage_error_handler(request: Request, exc: TriageError) -> JSONResponse:
        logger.error("Request to %s failed: %s", request.url.path, exc)
        counter("api.domain_errors")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    if is_development():
        app.add_middleware(
            CORSMiddleware,
            allow_origins=ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        )

    app.include_router(health_router)
    app.include_router(folder_watcher_router)
    app.include_router(mail_watchers_router)
    app.include_router(pending_router)
    app.include_router(agent_router)
    app.include_router(events_router)

    @app.get("/")
    def root() -> dict[str, Any]:
        return {
            "service": "TriageQ API",
            "version": APP_VERSION,
            "status": "running",
            "endpoints": {
                "health": "/api/health",
                "folder_watcher": "/api/folder-watcher",
                "mail_watchers": "/api/mail-watchers",
                "pending": "/api/pending",
                "agent": "/api/agent/chat",
                "events": "/api/events",
            },
        }

    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run("triageq.api.app:app", host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    main()
