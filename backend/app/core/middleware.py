from __future__ import annotations

import logging

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects oversized bodies (bulk imports) before they reach the routes."""

    def __init__(self, app, *, max_bytes: int) -> None:
        super().__init__(app)
        self._max_bytes = max(1, max_bytes)

    async def dispatch(self, request: Request, call_next) -> Response:
        raw_length = request.headers.get("content-length")
        if not raw_length:
            return await call_next(request)
        try:
            size = int(raw_length)
        except ValueError:
            size = 0
        if size <= self._max_bytes:
            return await call_next(request)

        logger.warning("Rejected %s %s with %d byte body", request.method, request.url.path, size)
        return JSONResponse(
            status_code=413,
            content={
                "message": f"Request body too large ({size} bytes). Maximum allowed is {self._max_bytes} bytes.",
                "details": {"max_bytes": self._max_bytes},
            },
        )
