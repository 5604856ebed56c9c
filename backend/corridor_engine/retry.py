"""
Async retry helper with bounded backoff.

Used for calls to external collaborators (traffic provider, credential
registry). Only the exception types listed in ``retry_on`` are retried;
anything else propagates immediately.

Usage:
    from corridor_engine.retry import retry_async

    cost = await retry_async(provider.cost, segment, delays=[0.1, 0.3])
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, Tuple, Type

logger = logging.getLogger(__name__)

# Default backoff delays in seconds
DEFAULT_DELAYS: Tuple[float, ...] = (0.2, 0.5, 1.0)


async def retry_async(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    delays: Optional[Sequence[float]] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "",
    **kwargs: Any,
) -> Any:
    """Await ``fn(*args, **kwargs)``, retrying on the listed exceptions.

    Args:
        fn: Coroutine function to call.
        delays: Backoff delays in seconds; ``len(delays)`` retries at most.
        retry_on: Exception types considered transient.
        label: Name used in log messages.

    Returns:
        The first successful result.

    Raises:
        The last exception once retries are exhausted. ``asyncio.CancelledError``
        is never retried.
    """
    if delays is None:
        delays = DEFAULT_DELAYS

    name = label or getattr(fn, "__qualname__", repr(fn))

    for attempt in range(1 + len(delays)):
        try:
            return await fn(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except retry_on as exc:
            if attempt >= len(delays):
                logger.warning("[RETRY] %s failed after %d attempts: %s", name, attempt + 1, exc)
                raise
            delay = delays[attempt]
            logger.info(
                "[RETRY] %s attempt %d/%d failed (%s), retrying in %.2fs",
                name, attempt + 1, 1 + len(delays), exc, delay,
            )
            await asyncio.sleep(delay)
