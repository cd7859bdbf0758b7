from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter

from evshare.core.environment import get_rate_limit_default
from evshare.core.prometheus_metrics import REGISTRY

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[get_rate_limit_default()]  # Global default
)

# Metric for monitoring
rate_limit_exceeded_counter = Counter(
    'evshare_rate_limit_exceeded_total',
    'Total rate limit violations',
    ['endpoint'],
    registry=REGISTRY
)


def custom_rate_limit_exceeded(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    rate_limit_exceeded_counter.labels(endpoint=request.url.path).inc()

    return JSONResponse(
        status_code=429,
        content={
            "status_code": 429,
            "error": "RateLimitExceeded",
            "message": f"Rate limit exceeded: {exc.detail}. Please try again later.",
            "data": None,
        },
    )
