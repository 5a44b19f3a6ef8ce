"""Resolved-identity middleware.

Authentication happens upstream (API gateway / auth proxy), which forwards
the signed-in user's UUID in ``X-User-Id``.  This middleware validates the
header and sets ``request.state.auth`` for ``get_current_user``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.dependencies import AuthContext

logger = logging.getLogger("kalori.auth")

USER_ID_HEADER = "X-User-Id"

# Paths that do not require an identity
PUBLIC_PATHS: set[str] = {
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}


def _is_public(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc")


def _unauthorized(message: str) -> Response:
    return Response(
        content=f'{{"success":false,"error":"{message}"}}',
        status_code=401,
        media_type="application/json",
    )


class IdentityMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: Any, header: str = USER_ID_HEADER) -> None:
        super().__init__(app)
        self._header = header

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if _is_public(request.url.path) or request.method == "OPTIONS":
            return await call_next(request)

        raw = request.headers.get(self._header)
        if not raw:
            return _unauthorized("Not authenticated")

        try:
            user_id = uuid.UUID(raw.strip())
        except ValueError:
            logger.warning("Rejected malformed %s header", self._header)
            return _unauthorized("Invalid user identity")

        request.state.auth = AuthContext(user_id=user_id)
        return await call_next(request)
