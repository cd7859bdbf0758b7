import time
import uuid
import logging
from functools import wraps
from typing import Optional

from evshare.core.prometheus_metrics import prometheus_collector

logger = logging.getLogger(__name__)

_USER_ARG_NAMES = ("user_id", "voter_id", "actor_id", "proposer_id")


def _extract_user_id(kwargs: dict) -> Optional[int]:
    for name in _USER_ARG_NAMES:
        if kwargs.get(name) is not None:
            return kwargs[name]
    return None


def track_performance(
    service_name: Optional[str] = None,
    include_metadata: bool = False
):
    """
    Decorator to automatically track method performance

    Usage:
    @track_performance(service_name="UpgradeProposalEngine")
    async def vote(self, proposal_id, voter_id, is_approve):
        # method implementation

    Domain errors are expected outcomes and are logged at INFO; anything
    else is logged at ERROR before being re-raised.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            correlation_id = str(uuid.uuid4())

            actual_service_name = service_name or (args[0].__class__.__name__ if args else "Unknown")
            method_name = func.__name__
            user_id = _extract_user_id(kwargs)

            start_time = time.perf_counter()
            success = False
            error_type = None
            metadata = {}

            try:
                result = await func(*args, **kwargs)
                success = True

                if include_metadata and hasattr(result, "status"):
                    metadata = {'result_status': str(result.status)}

                return result

            except Exception as e:
                error_type = e.__class__.__name__
                if getattr(e, "status_code", 500) < 500:
                    logger.info(f"{actual_service_name}.{method_name} rejected: {e}")
                else:
                    logger.error(f"Error in {actual_service_name}.{method_name}: {e}")
                raise

            finally:
                duration_seconds = time.perf_counter() - start_time

                prometheus_collector.record_service_call(
                    service_name=actual_service_name,
                    method_name=method_name,
                    duration_seconds=duration_seconds,
                    success=success,
                    user_id=user_id
                )

                logger.info(
                    f"Method executed: {actual_service_name}.{method_name}",
                    extra={
                        'correlation_id': correlation_id,
                        'service_name': actual_service_name,
                        'method_name': method_name,
                        'duration_ms': round(duration_seconds * 1000, 3),
                        'success': success,
                        'error_type': error_type,
                        'user_id': user_id,
                        **metadata
                    }
                )

        return wrapper
    return decorator
