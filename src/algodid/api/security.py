from __future__ import annotations

import hmac
from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from algodid.api.config import DEFAULT_MAX_REQUEST_BYTES
from algodid.api.errors import ApiError


def require_operator(request: Request) -> None:
    """Gate operator routes behind ALGODID_OPERATOR_TOKEN.

    Fail-closed: with no token configured the routes are disabled.
    Clients send `Authorization: Bearer <token>`.
    """
    cfg = getattr(request.app.state, "cfg", None)
    expected = getattr(cfg, "operator_token", None)
    if not expected:
        raise ApiError.forbidden("operator_disabled", "operator routes are disabled", {})

    raw = request.headers.get("authorization") or ""
    scheme, _, token = raw.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise ApiError.unauthorized("missing_token", "operator token required", {})
    if not hmac.compare_digest(token.strip().encode("utf-8"), expected.encode("utf-8")):
        raise ApiError.forbidden("bad_token", "operator token rejected", {})


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Fail-fast request size limiter.

    Enforces Content-Length when present and caps the buffered body of
    mutating requests. The ceiling comes from ALGODID_MAX_REQUEST_BYTES.
    """

    def __init__(
        self,
        app,
        *,
        max_bytes: Optional[int] = None,
        exempt_prefixes: Tuple[str, ...] = ("/docs", "/openapi.json", "/v1/health"),
    ):
        super().__init__(app)
        self._max_bytes = int(max_bytes) if max_bytes is not None else DEFAULT_MAX_REQUEST_BYTES
        self._exempt_prefixes = exempt_prefixes

    def _too_large(self) -> JSONResponse:
        return JSONResponse(
            status_code=413,
            content={
                "ok": False,
                "error": {"code": "document_too_large", "message": "Request body too large", "details": {}},
            },
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path or ""
        for ex in self._exempt_prefixes:
            if path.startswith(ex):
                return await call_next(request)

        cl = request.headers.get("content-length")
        if cl:
            try:
                if int(cl) > self._max_bytes:
                    return self._too_large()
            except ValueError:
                # Malformed header; fall back to the buffered body cap.
                pass

        if (request.method or "").upper() in {"POST", "PUT", "PATCH"}:
            body = await request.body()
            if len(body) > self._max_bytes:
                return self._too_large()

        return await call_next(request)
