from functools import wraps
import time

from bloodline.utils.logging_config import get_logger, log_performance_metric

logger = get_logger(__name__)

SLOW_CALL_SECONDS = 0.1


def performance_monitor(func):
    """Decorator to monitor coroutine performance"""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            execution_time = time.perf_counter() - start_time
            logger.error(
                f"{func.__qualname__} failed after {execution_time:.3f} seconds: {e}"
            )
            raise
        execution_time = time.perf_counter() - start_time
        if execution_time > SLOW_CALL_SECONDS:  # Log only if > 100ms
            log_performance_metric(func.__qualname__, execution_time)
        return result

    return wrapper
