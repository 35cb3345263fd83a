"""
Request logging middleware.

Provides:
- A request ID per request, bound into structlog contextvars for correlation
  and echoed back as ``X-Request-ID``
- One ``request_completed`` line per request with timing and status
- A request log row for every request authenticated with an API key
"""

from __future__ import annotations

import time
import uuid

import structlog
from fastapi import FastAPI, Request

from shared.ip_utils import get_client_ip
from shared.logging import get_logger

log = get_logger("integrations.request")

REQUEST_ID_HEADER = "X-Request-ID"


def generate_request_id() -> str:
    """Generate a unique request ID for correlation."""
    return f"req_{uuid.uuid4().hex[:12]}"


def log_request_end(method: str, path: str, status_code: int, duration_ms: int) -> None:
    """Log the end of a request; level follows the status class."""
    if status_code >= 500:
        log_fn = log.error
    elif status_code >= 400:
        log_fn = log.warning
    else:
        log_fn = log.info

    log_fn(
        "request_completed",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
    )


async def record_api_key_request(
    request: Request, key_id: str, status_code: int, duration_ms: int
) -> None:
    """Append the finished request to the key's request log.

    Failures are logged and dropped: the response has already been produced.
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        return
    try:
        await services.api_keys.log_request(
            key_id,
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            response_time_ms=float(duration_ms),
            ip_address=get_client_ip(request) or None,
            user_agent=request.headers.get("User-Agent"),
        )
    except Exception as e:
        log.warning("api_request_log_failed", key_id=key_id, error=str(e))


def setup_logging_middleware(app: FastAPI) -> None:
    """Register the request logging middleware on *app*."""

    @app.middleware("http")
    async def request_logging(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            log.exception(
                "request_failed", method=request.method, path=request.url.path
            )
            raise
        finally:
            duration_ms = int((time.perf_counter() - started) * 1000)

        # Health probes are frequent and uninteresting
        if request.url.path != "/health":
            log_request_end(
                request.method, request.url.path, response.status_code, duration_ms
            )

        api_key_id = getattr(request.state, "api_key_id", None)
        if api_key_id is not None:
            await record_api_key_request(
                request, api_key_id, response.status_code, duration_ms
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
