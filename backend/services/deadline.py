import asyncio
import logging
from typing import Awaitable, TypeVar

from services.errors import DeadlineExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_deadline(operation: Awaitable[T], deadline: float, *, label: str = "operation") -> T:
    """
    Race ``operation`` against a single wall-clock deadline.

    If the deadline fires first the running work is cancelled (which aborts
    any in-flight HTTP request inside it) and DeadlineExceeded is raised.
    Errors raised by the operation itself before the deadline propagate
    unchanged.
    """
    loop = asyncio.get_running_loop()
    started = loop.time()
    guard = asyncio.timeout(deadline)
    try:
        async with guard:
            return await operation
    except TimeoutError:
        if not guard.expired():
            raise
        elapsed = loop.time() - started
        logger.error("%s abandoned after %.2fs (deadline %.2fs)", label, elapsed, deadline)
        raise DeadlineExceeded(f"Generation did not finish within {deadline:g}s")
