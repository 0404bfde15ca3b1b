"""
Request logging for the storefront API.

Each request logs a start line and an outcome line carrying latency and the
cart size after the request. Checkout responses add a line saying whether
the order was persisted or placed as a guest, keyed by a hashed order number.
"""
import time
import hashlib
import logging
from typing import Callable, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

QUIET_PATHS = {"/health"}


def hash_identifier(identifier: str) -> str:
    """Hash identifier for logging (no PII)"""
    return hashlib.sha256(identifier.encode()).hexdigest()[:8]


def _cart_count(request: Request) -> Optional[int]:
    services = getattr(request.app.state, "services", None)
    if services is None:
        return None
    return services.cart_store.cart_count


def _log_checkout(request: Request, latency_ms: float) -> None:
    result = getattr(request.state, "checkout", None)
    if result is None:
        return
    outcome = "persisted" if result.persisted else "guest"
    logger.info(
        f"Checkout: {outcome}",
        extra={
            "checkout_outcome": outcome,
            "hashed_order_number": hash_identifier(result.order_number),
            "order_total": str(result.pricing.total),
            "latency_ms": latency_ms,
        }
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs requests with latency, cart size and checkout outcome"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        context = {
            "method": request.method,
            "path": request.url.path,
            "hashed_client": hash_identifier(request.client.host) if request.client else None,
        }
        quiet = request.url.path in QUIET_PATHS
        if not quiet:
            logger.info(f"Request: {request.method} {request.url.path}", extra=context)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Error: {request.method} {request.url.path}",
                extra={**context, "error": str(e), "error_type": type(e).__name__},
                exc_info=True
            )
            raise

        latency_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Response-Time-Ms"] = f"{latency_ms:.2f}"

        if not quiet or response.status_code >= 500:
            logger.log(
                logging.WARNING if response.status_code >= 500 else logging.INFO,
                f"Response: {request.method} {request.url.path} {response.status_code}",
                extra={
                    **context,
                    "status_code": response.status_code,
                    "latency_ms": latency_ms,
                    "cart_count": _cart_count(request),
                }
            )
        _log_checkout(request, latency_ms)
        return response
