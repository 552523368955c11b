"""
Request Context Middleware
==========================
Binds a request id into structlog context, resolves the client IP and logs
every request with its latency.
"""

import time
from typing import AbstractSet, Awaitable, Callable, Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..auth import RequestContext
from ..crypto import generate_uuid
from ..metrics import REQUEST_LATENCY

logger = structlog.get_logger(__name__)


def is_trusted_proxy(ip: Optional[str], trusted_proxies: AbstractSet[str]) -> bool:
    """Check if the peer is one of our own proxies."""
    return bool(ip) and ip in trusted_proxies


def client_ip(
    request: Request,
    trust_forwarded_for: bool = False,
    trusted_proxies: AbstractSet[str] = frozenset(),
) -> Optional[str]:
    """
    Source IP of the request.

    X-Forwarded-For is only read when the direct peer is a trusted proxy.
    Proxies append to the header, so the right-most entry that is not one
    of ours is the first address we did not add ourselves. Entries left of
    it are client supplied.
    """
    peer = request.client.host if request.client else None
    if not trust_forwarded_for or not is_trusted_proxy(peer, trusted_proxies):
        return peer

    hops = [hop.strip() for hop in request.headers.get("X-Forwarded-For", "").split(",")]
    for hop in reversed([hop for hop in hops if hop]):
        if hop not in trusted_proxies:
            return hop
    return peer


def get_request_context(request: Request) -> RequestContext:
    """Dependency returning the RequestContext set by the middleware."""
    context = getattr(request.state, "context", None)
    if context is None:
        context = RequestContext(
            source_ip=request.client.host if request.client else None,
            user_agent=request.headers.get("User-Agent"),
        )
    return context


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that attaches a RequestContext to every request.

    The request id comes from X-Request-ID when present and is echoed back
    in the response.
    """

    def __init__(
        self,
        app,
        trust_forwarded_for: bool = False,
        trusted_proxies: AbstractSet[str] = frozenset(),
    ):
        super().__init__(app)
        self.trust_forwarded_for = trust_forwarded_for
        self.trusted_proxies = frozenset(trusted_proxies)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_uuid()
        request.state.context = RequestContext(
            request_id=request_id,
            source_ip=client_ip(request, self.trust_forwarded_for, self.trusted_proxies),
            user_agent=request.headers.get("User-Agent"),
        )

        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)

            duration = time.perf_counter() - start
            REQUEST_LATENCY.labels(
                method=request.method,
                path=request.url.path,
                status=str(response.status_code),
            ).observe(duration)
            logger.info(
                "Request handled",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers["X-Request-ID"] = request_id
        return response
