import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.db import engine
from app.errors import ApiError, error_response
from app.logging_utils import setup_json_logging
from app.routers import notifications
from app.services.automatic_notifications import run_automatic_notifications
from app.services.scheduled_notifications import run_scheduled_notifications
from app.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from app.settings import get_app_timezone, get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(service=settings.app_name)
logger = logging.getLogger("app.request")
notification_worker_logger = logging.getLogger("app.notification_worker")
MIN_WORKER_INTERVAL_SECONDS = 15


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "system")
    request.state.actor_id = getattr(request.state, "actor_id", "system")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        401: "INVALID_TOKEN",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(notifications.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def automatic_run_key(now_utc: datetime) -> str:
    """Identify the local hour an automatic run belongs to; reminders are hour-granular."""
    return now_utc.astimezone(get_app_timezone()).strftime("%Y-%m-%dT%H")


async def _notification_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(MIN_WORKER_INTERVAL_SECONDS, int(settings.notification_worker_interval_seconds))
    last_automatic_run_key: str | None = None
    while not stop_event.is_set():
        now_utc = datetime.now(timezone.utc)
        try:
            scheduled_result = await asyncio.to_thread(run_scheduled_notifications, now_utc)
        except Exception:
            notification_worker_logger.exception("scheduled_notifications_tick_failed")
        else:
            if scheduled_result.get("sent_notifications"):
                notification_worker_logger.info("scheduled_notifications_tick", extra=scheduled_result)

        run_key = automatic_run_key(now_utc)
        if run_key != last_automatic_run_key:
            try:
                automatic_result = await asyncio.to_thread(run_automatic_notifications, now_utc)
            except Exception:
                notification_worker_logger.exception("automatic_notifications_tick_failed")
            else:
                notification_worker_logger.info("automatic_notifications_tick", extra=automatic_result)
            last_automatic_run_key = run_key

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        notification_worker_logger.info(
            "schema_guard_ok",
            extra=result.to_dict(),
        )
        return

    notification_worker_logger.error(
        "schema_guard_failed",
        extra=result.to_dict(),
    )
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_notification_worker() -> None:
    if not settings.notification_worker_enabled:
        return
    if getattr(app.state, "notification_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_notification_worker_loop(stop_event))
    app.state.notification_worker_stop_event = stop_event
    app.state.notification_worker_task = task
    notification_worker_logger.info(
        "notification_worker_started",
        extra={
            "interval_seconds": max(MIN_WORKER_INTERVAL_SECONDS, int(settings.notification_worker_interval_seconds)),
            "timezone": settings.app_timezone,
        },
    )


@app.on_event("shutdown")
async def stop_notification_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "notification_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "notification_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.notification_worker_stop_event = None
    app.state.notification_worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    worker_task = getattr(app.state, "notification_worker_task", None)
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "notification_worker": {
            "enabled": settings.notification_worker_enabled,
            "running": worker_task is not None and not worker_task.done(),
        },
    }
