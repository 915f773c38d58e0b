"""FastAPI middleware for request logging and log-context binding."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from marketplace_reconciler.logging_config import bind_context, clear_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with a correlation id.

    The id is taken from an incoming X-Request-ID header (marketplace
    webhooks and upstream proxies send one) or generated, bound to every log
    line of the request, and echoed in the response.
    """

    def __init__(self, app: ASGIApp, include_request_details: bool = True):
        """Initialize middleware.

        Args:
            app: ASGI application
            include_request_details: If True, also log query string and client address
        """
        super().__init__(app)
        self.include_request_details = include_request_details

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        bind_context(request_id=request_id)

        details = {}
        if self.include_request_details:
            details = {
                "query_params": str(request.query_params) if request.query_params else None,
                "client_host": request.client.host if request.client else "unknown",
            }
        logger.info("request_started", method=request.method, path=request.url.path, **details)

        start_time = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise
        else:
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_context()


# Path segments under /subscriptions that are not subscription ids
_COLLECTION_ACTIONS = frozenset({"resolve", "resync", "webhook"})


class ContextMiddleware(BaseHTTPMiddleware):
    """Middleware for binding business context from requests.

    Binds to the logging context:
    - external_id: marketplace subscription id from /subscriptions/{id}/...
    - actor_email: caller from the X-User-Email header
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Extract business context from request.

        Args:
            request: Incoming HTTP request
            call_next: Next middleware/handler in chain

        Returns:
            HTTP response
        """
        parts = [part for part in request.url.path.split("/") if part]
        if "subscriptions" in parts:
            sub_index = parts.index("subscriptions")
            if len(parts) > sub_index + 1 and parts[sub_index + 1] not in _COLLECTION_ACTIONS:
                bind_context(external_id=parts[sub_index + 1])

        actor_email = request.headers.get("x-user-email")
        if actor_email:
            bind_context(actor_email=actor_email)

        return await call_next(request)
