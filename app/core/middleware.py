from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.context import set_session_key


class SessionContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        """
        Sets the session key into contextvars for the lifetime of the request.

        Priority:
        1. Header: X-Session-Key
        2. Query param: userAddress
        The chat pipeline refines it once the request body is parsed.
        """
        session_key = request.headers.get("X-Session-Key")
        if not session_key:
            session_key = request.query_params.get("userAddress")

        try:
            if session_key:
                set_session_key(session_key.lower())
            return await call_next(request)
        finally:
            set_session_key(None)
