from __future__ import annotations

import hmac

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.errors import ApiError
from app.settings import get_service_api_key

bearer_scheme = HTTPBearer(auto_error=False)


def _matches(candidate: str | None, expected: str) -> bool:
    if not candidate:
        return False
    return hmac.compare_digest(candidate.strip().encode("utf-8"), expected.encode("utf-8"))


def require_service_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Accept the configured service key from ``apikey`` or a bearer token.

    With no key configured every caller is accepted as ``anonymous``.
    """
    expected = get_service_api_key()
    if expected is None:
        request.state.actor = "anonymous"
        return "anonymous"

    bearer_value = credentials.credentials if credentials is not None else None
    if _matches(request.headers.get("apikey"), expected) or _matches(bearer_value, expected):
        request.state.actor = "service"
        request.state.actor_id = "service"
        return "service"

    raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing or invalid service key.")
