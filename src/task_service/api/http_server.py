"""FastAPI application exposing the task service REST API."""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from task_service import __version__
from task_service.api.dependencies import get_context, require_scope
from task_service.config import Settings, get_settings
from task_service.core.auth import Principal, Scope
from task_service.core.context import ServiceContext, build_context
from task_service.core.errors import Internal, InvalidParameter, RateLimitExceeded, ServiceError
from task_service.models import (
    ProjectCreate,
    ProjectStatus,
    ProjectUpdate,
    SubscriptionCreate,
    TaskCreate,
    TaskPriority,
    TaskStatus,
    TaskStatusUpdate,
    TaskUpdate,
    UserUpsert,
)
from task_service.utils.logging import bind_request_context, clear_request_context, get_logger
from task_service.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()

HTTP_ERROR_CODES = {404: "not_found", 405: "method_not_allowed"}


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", "unmatched")


def _error_response(error: ServiceError, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(content=error.to_dict(), status_code=error.status_code, headers=headers)


def _validation_failure(exc: RequestValidationError) -> InvalidParameter:
    """Translate the first pydantic error into an invalid_parameter error."""
    errors = exc.errors()
    error = errors[0] if errors else {}
    loc = [str(part) for part in error.get("loc", ())]

    if error.get("type") == "json_invalid" or len(loc) < 2:
        parameter = "body"
    else:
        parameter = ".".join(loc[1:])

    provided = None if error.get("type") == "missing" else error.get("input")
    reason = error.get("msg", "invalid value")
    return InvalidParameter(
        parameter,
        jsonable_encoder(provided),
        message=f"Invalid value for '{parameter}': {reason}",
    )


def create_http_server(context: ServiceContext) -> FastAPI:
    """Create the FastAPI application.

    Args:
        context: Wired service components; started and stopped with the
            application lifespan

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await context.startup()
        try:
            yield
        finally:
            await context.shutdown()

    app = FastAPI(
        title="Task Service",
        description="Task and project management API",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.context = context

    @app.middleware("http")
    async def observe_requests(request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        clear_request_context()
        bind_request_context(request_id=request_id, method=request.method, path=request.url.path)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            metrics.record_http_request(
                request.method, _route_template(request), 500, time.perf_counter() - start_time
            )
            raise

        duration = time.perf_counter() - start_time
        metrics.record_http_request(request.method, _route_template(request), response.status_code, duration)

        rate_limit = getattr(request.state, "rate_limit", None)
        if rate_limit is not None:
            response.headers.update(rate_limit.headers())
        response.headers["X-Request-Id"] = request_id

        logger.debug(
            "http_request_handled",
            status=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )
        return response

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        headers: dict[str, str] = {}
        if exc.status_code == 401:
            headers["WWW-Authenticate"] = "Bearer"
        if isinstance(exc, RateLimitExceeded):
            headers.update(
                {
                    "X-RateLimit-Limit": str(exc.limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(exc.reset_at),
                    "Retry-After": str(max(0, exc.reset_at - int(time.time()))),
                }
            )
        if exc.status_code >= 500:
            logger.error("request_failed", code=exc.code, error=exc.message)
        else:
            logger.info("request_rejected", code=exc.code, status=exc.status_code)
        return _error_response(exc, headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        failure = _validation_failure(exc)
        logger.info("request_rejected", code=failure.code, parameter=failure.parameter)
        return _error_response(failure)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        body = {
            "error": {
                "code": HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
                "message": str(exc.detail),
                "details": {"path": request.url.path},
            }
        }
        return JSONResponse(content=body, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_request_error", method=request.method, path=request.url.path)
        return _error_response(Internal())

    # Tasks

    @app.post("/tasks", status_code=201)
    async def create_task(
        body: TaskCreate,
        request: Request,
        principal: Principal = Depends(require_scope(Scope.TASKS_WRITE)),
    ) -> dict[str, Any]:
        return await get_context(request).tasks.create_task(body, principal)

    @app.get("/tasks")
    async def list_tasks(
        request: Request,
        project_id: int | None = None,
        assignee_id: int | None = None,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        page: int = 1,
        limit: int | None = None,
        principal: Principal = Depends(require_scope(Scope.TASKS_READ)),
    ) -> dict[str, Any]:
        return await get_context(request).tasks.list_tasks(
            project_id=project_id,
            assignee_id=assignee_id,
            status=status,
            priority=priority,
            page=page,
            limit=limit,
        )

    @app.get("/tasks/{task_id}")
    async def get_task(
        task_id: int,
        request: Request,
        principal: Principal = Depends(require_scope(Scope.TASKS_READ)),
    ) -> dict[str, Any]:
        return await get_context(request).tasks.get_task(task_id)

    @app.patch("/tasks/{task_id}")
    async def update_task(
        task_id: int,
        body: TaskUpdate,
        request: Request,
        principal: Principal = Depends(require_scope(Scope.TASKS_WRITE)),
    ) -> dict[str, Any]:
        return await get_context(request).tasks.update_task(task_id, body, principal)

    @app.patch("/tasks/{task_id}/status")
    async def update_task_status(
        task_id: int,
        body: TaskStatusUpdate,
        request: Request,
        principal: Principal = Depends(require_scope(Scope.TASKS_WRITE)),
    ) -> dict[str, Any]:
        return await get_context(request).tasks.update_status(task_id, body.status, principal)

    # Projects

    @app.post("/projects", status_code=201)
    async def create_project(
        body: ProjectCreate,
        request: Request,
        principal: Principal = Depends(require_scope(Scope.PROJECTS_WRITE)),
    ) -> dict[str, Any]:
        return await get_context(request).projects.create_project(body, principal)

    @app.get("/projects")
    async def list_projects(
        request: Request,
        owner_id: int | None = None,
        member_id: int | None = None,
        status: ProjectStatus | None = None,
        page: int = 1,
        limit: int | None = None,
        principal: Principal = Depends(require_scope(Scope.PROJECTS_READ)),
    ) -> dict[str, Any]:
        return await get_context(request).projects.list_projects(
            owner_id=owner_id,
            member_id=member_id,
            status=status,
            page=page,
            limit=limit,
        )

    @app.get("/projects/{project_id}")
    async def get_project(
        project_id: int,
        request: Request,
        principal: Principal = Depends(require_scope(Scope.PROJECTS_READ)),
    ) -> dict[str, Any]:
        return await get_context(request).projects.get_project(project_id)

    @app.patch("/projects/{project_id}")
    async def update_project(
        project_id: int,
        body: ProjectUpdate,
        request: Request,
        principal: Principal = Depends(require_scope(Scope.PROJECTS_WRITE)),
    ) -> dict[str, Any]:
        return await get_context(request).projects.update_project(project_id, body, principal)

    # Users

    @app.get("/users")
    async def list_users(
        request: Request,
        page: int = 1,
        limit: int | None = None,
        principal: Principal = Depends(require_scope(Scope.USERS_READ)),
    ) -> dict[str, Any]:
        return await get_context(request).users.list_users(page=page, limit=limit)

    @app.get("/users/{user_id}")
    async def get_user(
        user_id: int,
        request: Request,
        principal: Principal = Depends(require_scope(Scope.USERS_READ)),
    ) -> dict[str, Any]:
        return await get_context(request).users.get_user(user_id)

    @app.put("/users/{user_id}")
    async def upsert_user(
        user_id: int,
        body: UserUpsert,
        request: Request,
        principal: Principal = Depends(require_scope(Scope.USERS_WRITE)),
    ) -> dict[str, Any]:
        return await get_context(request).users.upsert_user(user_id, body, principal)

    # Webhooks

    @app.post("/webhooks", status_code=201)
    async def create_webhook(
        body: SubscriptionCreate,
        request: Request,
        principal: Principal = Depends(require_scope(Scope.WEBHOOKS_MANAGE)),
    ) -> dict[str, Any]:
        subscription = get_context(request).dispatcher.registry.create(
            url=str(body.url),
            events=body.events,
            secret=body.secret,
            active=body.active,
        )
        return subscription.to_payload()

    @app.get("/webhooks")
    async def list_webhooks(
        request: Request,
        principal: Principal = Depends(require_scope(Scope.WEBHOOKS_MANAGE)),
    ) -> dict[str, Any]:
        subscriptions = get_context(request).dispatcher.registry.all()
        return {"data": [s.to_payload() for s in subscriptions]}

    @app.get("/webhooks/{subscription_id}")
    async def get_webhook(
        subscription_id: int,
        request: Request,
        principal: Principal = Depends(require_scope(Scope.WEBHOOKS_MANAGE)),
    ) -> dict[str, Any]:
        return get_context(request).dispatcher.registry.get(subscription_id).to_payload()

    @app.delete("/webhooks/{subscription_id}", status_code=204)
    async def delete_webhook(
        subscription_id: int,
        request: Request,
        principal: Principal = Depends(require_scope(Scope.WEBHOOKS_MANAGE)),
    ) -> Response:
        get_context(request).dispatcher.registry.delete(subscription_id)
        return Response(status_code=204)

    # Operations

    @app.get("/health")
    async def health() -> JSONResponse:
        """Liveness check endpoint.

        Returns 200 if the service is running.
        """
        return JSONResponse(
            content={
                "status": "ok",
                "service": "task-service",
                "version": __version__,
                "records": context.store.counts(),
                "webhooks": {
                    "running": context.dispatcher.running,
                    "pending": context.dispatcher.pending,
                },
            },
            status_code=200,
        )

    @app.get("/health/ready")
    async def readiness() -> JSONResponse:
        """Readiness check endpoint.

        Ready once the webhook workers are running.
        """
        ready = context.dispatcher.running
        return JSONResponse(
            content={
                "status": "ready" if ready else "not_ready",
                "checks": {"webhook_dispatcher": ready},
            },
            status_code=200 if ready else 503,
        )

    @app.get("/metrics")
    async def prometheus_metrics() -> Response:
        """Prometheus metrics endpoint.

        Returns metrics in Prometheus exposition format.
        """
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST,
        )

    return app


def create_app(settings: Settings | None = None, **components: Any) -> FastAPI:
    """Build the application from settings, with optional component overrides.

    ``components`` accepts the keyword arguments of ``build_context``.
    """
    return create_http_server(build_context(settings or get_settings(), **components))
