from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

FUNCTION_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)


def function_response(payload: dict[str, Any], *, status_code: int = 200) -> JSONResponse:
    body = {**payload, "timestamp": datetime.now(timezone.utc).isoformat()}
    return JSONResponse(status_code=status_code, content=body, headers=dict(FUNCTION_CORS_HEADERS))


def function_error_response(exc: Exception, *, status_code: int = 500) -> JSONResponse:
    return function_response({"success": False, "error": str(exc) or exc.__class__.__name__}, status_code=status_code)
