import asyncio
import time

import pytest

from services.deadline import run_with_deadline
from services.errors import DeadlineExceeded, UpstreamError


@pytest.mark.asyncio
async def test_fast_operation_returns_value():
    async def fast():
        await asyncio.sleep(0)
        return "done"

    assert await run_with_deadline(fast(), 1.0) == "done"


@pytest.mark.asyncio
async def test_slow_operation_is_abandoned_and_cancelled():
    state = {"cancelled": False, "finished": False}

    async def slow():
        try:
            await asyncio.sleep(10)
            state["finished"] = True
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise

    started = time.monotonic()
    with pytest.raises(DeadlineExceeded) as exc_info:
        await run_with_deadline(slow(), 0.2)
    elapsed = time.monotonic() - started

    assert elapsed < 0.2 + 0.3
    assert state == {"cancelled": True, "finished": False}
    assert exc_info.value.status_code == 504


@pytest.mark.asyncio
async def test_operation_errors_propagate_unchanged():
    async def failing():
        raise UpstreamError("provider said no", provider_status=400)

    with pytest.raises(UpstreamError) as exc_info:
        await run_with_deadline(failing(), 1.0)
    assert exc_info.value.provider_status == 400


@pytest.mark.asyncio
async def test_inner_timeout_is_not_reported_as_deadline():
    async def inner_timeout():
        raise TimeoutError("inner step")

    with pytest.raises(TimeoutError) as exc_info:
        await run_with_deadline(inner_timeout(), 1.0)
    assert not isinstance(exc_info.value, DeadlineExceeded)
