"""
Unit tests for bounded collaborator calls (timeouts and read retries).
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from carenow.services.calls import CallPolicy, call_collaborator
from carenow.services.errors import NotFoundFailure, RetrievalFailure, ServerFailure, ValidationFailure

FAST = CallPolicy(timeout_seconds=0.05, attempts=3, backoff_seconds=0)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_returns_result_and_passes_arguments():
    fn = AsyncMock(return_value="ok")

    result = await call_collaborator("op", fn, "a", policy=FAST, limit=3)

    assert result == "ok"
    fn.assert_awaited_once_with("a", limit=3)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retry_recovers_from_transient_failure():
    fn = AsyncMock(side_effect=[ConnectionError("blip"), ConnectionError("blip"), "ok"])

    result = await call_collaborator("op", fn, policy=FAST, retry=True)

    assert result == "ok"
    assert fn.await_count == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retry_gives_up_after_attempts():
    fn = AsyncMock(side_effect=ConnectionError("down"))

    with pytest.raises(RetrievalFailure) as exc_info:
        await call_collaborator("query", fn, policy=FAST, retry=True, failure_cls=RetrievalFailure)

    assert fn.await_count == 3
    assert "query failed" in exc_info.value.message
    assert isinstance(exc_info.value.__cause__, ConnectionError)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_writes_are_not_retried():
    fn = AsyncMock(side_effect=ConnectionError("down"))

    with pytest.raises(ServerFailure):
        await call_collaborator("write", fn, policy=FAST)

    assert fn.await_count == 1


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("error", [ValidationFailure("bad"), NotFoundFailure("Booking", "b1")])
async def test_domain_errors_pass_through_without_retry(error):
    fn = AsyncMock(side_effect=error)

    with pytest.raises(type(error)):
        await call_collaborator("op", fn, policy=FAST, retry=True)

    assert fn.await_count == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_timeout_becomes_server_failure():
    async def slow():
        await asyncio.sleep(1)

    with pytest.raises(ServerFailure) as exc_info:
        await call_collaborator("slow_op", slow, policy=CallPolicy(timeout_seconds=0.01, attempts=1))

    assert "timed out" in exc_info.value.message
