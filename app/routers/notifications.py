from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import ApiError, FUNCTION_CORS_HEADERS, function_error_response, function_response
from app.schemas import AutomaticNotificationsResult, BroadcastRequest, BroadcastResponse, ReminderConfigRead
from app.security import require_service_key
from app.services.automatic_notifications import run_automatic_notifications
from app.services.broadcasts import send_broadcast
from app.services.notification_settings import load_reminder_config
from app.services.scheduled_notifications import run_scheduled_notifications

router = APIRouter(tags=["notifications"])
logger = logging.getLogger("app.functions")


def _preflight() -> Response:
    return Response(content=None, headers=dict(FUNCTION_CORS_HEADERS))


@router.options("/functions/v1/automatic-notifications", include_in_schema=False)
def automatic_notifications_preflight() -> Response:
    return _preflight()


@router.options("/functions/v1/scheduled-notifications", include_in_schema=False)
def scheduled_notifications_preflight() -> Response:
    return _preflight()


@router.post("/functions/v1/automatic-notifications")
def invoke_automatic_notifications(
    request: Request,
    db: Session = Depends(get_db),
    _actor: str = Depends(require_service_key),
) -> JSONResponse:
    logger.info("automatic_notifications_invoked", extra={"request_id": getattr(request.state, "request_id", None)})
    try:
        result = run_automatic_notifications(datetime.now(timezone.utc), db=db)
    except Exception as exc:
        logger.error("automatic_notifications_invocation_failed", extra={"error": str(exc)[:500]})
        return function_error_response(exc)

    validated = AutomaticNotificationsResult.model_validate(result)
    return function_response({"success": True, "result": validated.model_dump()})


@router.post("/functions/v1/scheduled-notifications")
def invoke_scheduled_notifications(
    request: Request,
    db: Session = Depends(get_db),
    _actor: str = Depends(require_service_key),
) -> JSONResponse:
    logger.info("scheduled_notifications_invoked", extra={"request_id": getattr(request.state, "request_id", None)})
    try:
        result = run_scheduled_notifications(datetime.now(timezone.utc), db=db)
    except Exception as exc:
        logger.error("scheduled_notifications_invocation_failed", extra={"error": str(exc)[:500]})
        return function_response({"error": str(exc) or exc.__class__.__name__}, status_code=500)

    return function_response(
        {
            "success": True,
            "sentNotifications": result["sent_notifications"],
            "overdueMetrics": result["overdue_metrics"],
        }
    )


@router.post("/api/notifications/broadcast", response_model=BroadcastResponse)
def broadcast_notification(
    payload: BroadcastRequest,
    db: Session = Depends(get_db),
    _actor: str = Depends(require_service_key),
) -> BroadcastResponse:
    try:
        sent = send_broadcast(
            db,
            title=payload.title,
            message=payload.message,
            notification_type=payload.type,
            target_type=payload.target_type,
            department_id=payload.department_id,
            variables=payload.variables,
        )
    except ValueError as exc:
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message=str(exc)) from exc
    return BroadcastResponse(sent=sent)


@router.get("/api/notifications/reminder-config", response_model=ReminderConfigRead)
def get_reminder_config(
    db: Session = Depends(get_db),
    _actor: str = Depends(require_service_key),
) -> ReminderConfigRead:
    return ReminderConfigRead.model_validate(load_reminder_config(db).to_dict())
