import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from evshare.services.exceptions import ConcurrentModificationError, UpgradeDomainError

logger = logging.getLogger(__name__)


async def domain_exception_handler(request: Request, exc: UpgradeDomainError):
    """Renders domain errors in the same envelope as successful responses."""
    if exc.status_code >= 500:
        logger.error(f"Unhandled domain failure on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def concurrency_exception_handler(request: Request, exc: ConcurrentModificationError):
    # Only reached once the retry budget is spent
    logger.warning(f"Concurrent modification on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status_code": exc.status_code,
            "error": exc.error_code,
            "kind": exc.kind,
            "message": "The resource was modified concurrently, please retry",
            "data": None,
        },
    )
