"""
Authentication middleware.

Callers are authenticated by the fronting proxy, which passes the principal
name in a request header. This middleware copies it to request.state.principal
and rejects requests that arrive without one.
"""

import logging
import typing

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from edge_deploy.core.config import settings

logger = logging.getLogger(__name__)

RequestResponseEndpoint = typing.Callable[[Request], typing.Awaitable[Response]]

PUBLIC_PATHS = ("/ping", "/docs", "/redoc", "/openapi.json")


def get_principal(request: Request) -> str:
    return request.state.principal


class AuthenticationMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, header: str | None = None):
        super().__init__(app)
        self.header = header or settings.PRINCIPAL_HEADER

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in PUBLIC_PATHS:
            return await call_next(request)

        principal = request.headers.get(self.header)
        if not principal:
            logger.info(f"Unauthenticated request to {request.method} {path}")
            return Response(status_code=401, headers={"WWW-Authenticate": "Basic"})

        request.state.principal = principal
        return await call_next(request)
