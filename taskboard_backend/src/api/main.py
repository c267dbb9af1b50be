from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import get_basic_auth_dependency
from .data_service import DataService, build_data_service
from .errors import DataServiceError, NotAuthenticated, NotFound, PermissionDenied
from .logging_setup import setup_logging
from .routers import dashboard as dashboard_router
from .routers import notifications as notifications_router
from .routers import profiles as profiles_router
from .routers import tasks as tasks_router
from .settings import Settings, get_settings
from .views import ViewRegistry

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "profiles", "description": "Sign-up, profile lookup and session teardown."},
    {
        "name": "tasks",
        "description": "Create, assign, edit, complete and delete tasks; filter the caller's board.",
    },
    {"name": "notifications", "description": "Notification feed with unread tracking."},
    {"name": "dashboard", "description": "Task counters, chart series and upcoming deadlines."},
]


def _error_body(error: str, message: str, detail: object = None) -> dict:
    return {"error": error, "message": message, "detail": detail if detail is not None else message}


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    app.state.views.close_all()
    app.state.data_service.close()
    logger.info("Taskboard backend stopped")


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None, data_service: Optional[DataService] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: defaults to environment settings (see settings.py).
        data_service: defaults to the backend selected by PERSISTENCE_BACKEND.
    """
    settings = settings or get_settings()
    setup_logging(level=settings.log_level, log_dir=settings.log_dir)

    app = FastAPI(
        title="Taskboard Backend",
        description="Task management API: tasks, assignments, notifications and a dashboard.",
        version="0.1.0",
        openapi_tags=openapi_tags,
        lifespan=_lifespan,
    )
    app.state.settings = settings
    app.state.data_service = data_service or build_data_service(settings)
    app.state.views = ViewRegistry(app.state.data_service, settings)

    # Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handlers for consistent JSON on validation errors
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Return a consistent JSON structure for request validation errors.

        Response format:
            {
                "error": "ValidationError",
                "detail": [... pydantic/fastapi error details ...],
                "message": "Request validation failed"
            }
        """
        return JSONResponse(
            status_code=422,
            content=_error_body("ValidationError", "Request validation failed", jsonable_encoder(exc.errors())),
        )

    @app.exception_handler(NotAuthenticated)
    async def not_authenticated_handler(request: Request, exc: NotAuthenticated) -> JSONResponse:
        return JSONResponse(status_code=401, content=_error_body("NotAuthenticated", str(exc)))

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
        label = (exc.table or "record").rstrip("s").capitalize()
        return JSONResponse(status_code=404, content=_error_body("NotFound", f"{label} not found"))

    @app.exception_handler(PermissionDenied)
    async def permission_denied_handler(request: Request, exc: PermissionDenied) -> JSONResponse:
        return JSONResponse(status_code=403, content=_error_body("PermissionDenied", str(exc)))

    @app.exception_handler(DataServiceError)
    async def data_service_error_handler(request: Request, exc: DataServiceError) -> JSONResponse:
        logger.error("Data service failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=502, content=_error_body("DataServiceError", str(exc)))

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {"message": "Healthy", "backend": settings.persistence_backend}

    auth_dep = get_basic_auth_dependency(settings)
    for module in (profiles_router, tasks_router, notifications_router, dashboard_router):
        app.include_router(module.router, dependencies=[Depends(auth_dep)])

    logger.info("Taskboard backend ready backend=%s", settings.persistence_backend)
    return app


app = create_app()
