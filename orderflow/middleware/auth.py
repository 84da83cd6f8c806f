"""
OrderFlow — Bearer JWT gate for the HTTP API

Every HTTP request outside the public set must carry a token signed with the
shared secret. Verified claims land on request.state.user; the role checks
themselves live in api/deps.py. The /ws gateway authenticates in-band and
never passes through here (BaseHTTPMiddleware only sees HTTP scopes).
"""
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware

from orderflow.core.security import decode_token
from orderflow.schemas.common import fail

PUBLIC_PATHS = frozenset({"/", "/health", "/docs", "/openapi.json"})


def _is_public(request: Request) -> bool:
    path = request.url.path
    return request.method == "OPTIONS" or path in PUBLIC_PATHS or path.startswith("/metrics")


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content=fail(message),
        headers={"WWW-Authenticate": "Bearer"},
    )


class JWTAuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if _is_public(request):
            return await call_next(request)

        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not token:
            return _unauthorized("Authentication required: send 'Authorization: Bearer <token>'.")

        try:
            request.state.user = decode_token(token.strip())
        except JWTError as exc:
            return _unauthorized(f"Invalid or expired token: {exc}")

        return await call_next(request)
