# tokendrop/api/transport.py
"""
HTTP plumbing that sits in front of the x402 middleware: request logging,
the optional canonical-host redirect and CORS.
"""
import logging
from typing import Callable, Iterable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import RedirectResponse

from tokendrop.x402.middleware import X_PAYMENT_RESPONSE_HEADER, get_client_ip

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = ["GET", "POST", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Content-Type", "X-PAYMENT", "X-Payer-Address"]


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        logger.info(f"{request.method} {request.url.path} - ip:{get_client_ip(request)}")
        return await call_next(request)


class CanonicalHostMiddleware(BaseHTTPMiddleware):
    """
    301-redirect requests for any other host to the canonical one.

    Exempt paths are never redirected; x402 scanners treat a redirect on the
    paid resource as a failure.

    Args:
        app: The ASGI app
        canonical_host: Lower-case host name to redirect to
        exempt_paths: Paths served on any host
    """

    def __init__(self, app, canonical_host: str, exempt_paths: Iterable[str] = ()):
        super().__init__(app)
        self.canonical_host = canonical_host.lower()
        self.exempt_paths = set(exempt_paths)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        host = request.headers.get("host", "").lower()
        if host == self.canonical_host:
            return await call_next(request)

        proto = request.headers.get("x-forwarded-proto") or request.url.scheme or "https"
        target = f"{proto}://{self.canonical_host}{request.url.path}"
        if request.url.query:
            target += f"?{request.url.query}"
        logger.info(f"Redirecting host {host!r} to {target}")
        return RedirectResponse(target, status_code=301)


def add_cors(app: FastAPI) -> None:
    """Allow any origin to call the API, including the x402 headers."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
        expose_headers=[X_PAYMENT_RESPONSE_HEADER],
    )
