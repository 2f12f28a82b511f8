import time
import uuid
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from .request_context import reset_request_id, set_principal_id, set_request_id

logger = logging.getLogger("assessment_core.middleware")


def get_client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None

# Candidate runtime responses carry attempt state and must never be cached.
_NO_STORE_PREFIXES = (
    "/api/v1/attempts/",
    "/api/v1/code/",
    "/api/v1/assessments/",
    "/api/v1/applications/",
)


class NoStoreMiddleware(BaseHTTPMiddleware):
    """Mark candidate runtime and invite responses as non-cacheable."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith(_NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status, and duration."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = set_request_id(request_id)
        set_principal_id(None)
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error method=%s path=%s", request.method, request.url.path)
            reset_request_id(token)
            raise

        duration_ms = (time.time() - start_time) * 1000

        if request.url.path != "/health":
            logger.info(
                "method=%s path=%s status=%d duration=%.1fms",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={"request_id": request_id},
            )

        response.headers["X-Process-Time-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = request_id
        reset_request_id(token)

        return response
