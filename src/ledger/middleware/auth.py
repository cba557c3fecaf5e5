"""API key authentication middleware."""

import secrets
from collections.abc import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

API_KEY_HEADER = "X-API-Key"

# Browsers cannot set headers on an EventSource, so the stream takes a query key
API_KEY_QUERY_PATHS = frozenset({"/api/v1/events/stream"})

PUBLIC_PATH_PREFIXES = ("/api/v1/health/",)


def _presented_key(request: Request) -> str:
    key = request.headers.get(API_KEY_HEADER, "")
    if not key and request.url.path in API_KEY_QUERY_PATHS:
        key = request.query_params.get("api_key", "")
    return key


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Requires the configured key on every endpoint except health probes."""

    def __init__(self, app: Callable[..., Awaitable[Response]], api_key: str) -> None:
        """Initialize middleware.

        Args:
            app: ASGI application.
            api_key: Key clients must present.
        """
        super().__init__(app)  # type: ignore[arg-type]
        self._api_key = api_key

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Reject the request with 401 unless it carries the key."""
        # CORS preflights never carry credentials
        if request.method == "OPTIONS" or request.url.path.startswith(PUBLIC_PATH_PREFIXES):
            return await call_next(request)

        key = _presented_key(request)
        if not key:
            detail = f"Missing {API_KEY_HEADER} header"
        elif not secrets.compare_digest(key, self._api_key):
            detail = "Invalid API key"
        else:
            return await call_next(request)

        return JSONResponse(
            status_code=401,
            content={"error": detail, "recovery_suggestion": "Provide a valid API key"},
        )
