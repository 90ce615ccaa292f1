import anyio
import pytest

from mcp_client.shared.correlation import CorrelationTable
from mcp_client.shared.exceptions import (
    ConnectionLost,
    RequestCancelled,
    RequestTimeout,
    SessionClosed,
    ToolNotFound,
)
from mcp_client.types import ErrorData, JSONRPCError, JSONRPCResponse

pytestmark = pytest.mark.anyio


async def test_resolve_delivers_result():
    table = CorrelationTable()
    call = table.register(1, "tools/list")

    assert 1 in table
    assert table.resolve(1, JSONRPCResponse(id=1, result={"tools": []})) is True
    assert call.done
    assert await call.wait() == {"tools": []}
    assert len(table) == 0


async def test_resolve_error_response_raises_classified_error():
    table = CorrelationTable()
    call = table.register("a", "tools/call")
    table.resolve("a", JSONRPCError(id="a", error=ErrorData(code=-32602, message="Unknown tool: x")))

    with pytest.raises(ToolNotFound) as exc_info:
        await call.wait()
    assert exc_info.value.request_id == "a"


async def test_second_resolution_is_ignored():
    table = CorrelationTable()
    call = table.register(1, "ping")

    assert table.resolve(1, JSONRPCResponse(id=1, result={})) is True
    assert table.resolve(1, JSONRPCResponse(id=1, result={"late": True})) is False
    assert table.cancel(1) is False
    assert table.drain_all("closed") == 0
    assert await call.wait() == {}


async def test_unknown_id_is_ignored():
    table = CorrelationTable()
    assert table.resolve(404, JSONRPCResponse(id=404, result={})) is False
    assert table.cancel(404) is False


async def test_duplicate_registration_is_rejected():
    table = CorrelationTable()
    table.register(1, "ping")
    with pytest.raises(ValueError):
        table.register(1, "ping")


async def test_cancel():
    table = CorrelationTable()
    call = table.register(5, "tools/call")

    assert table.cancel(5) is True
    with pytest.raises(RequestCancelled) as exc_info:
        await call.wait()
    assert exc_info.value.method == "tools/call"


async def test_wait_times_out_and_removes_entry():
    table = CorrelationTable()
    call = table.register(1, "tools/call", timeout=0.05)

    with pytest.raises(RequestTimeout):
        await call.wait()

    assert 1 not in table
    assert table.resolve(1, JSONRPCResponse(id=1, result={})) is False


async def test_wait_timeout_overrides_registration_deadline():
    table = CorrelationTable()
    call = table.register(1, "ping")

    with pytest.raises(RequestTimeout):
        await call.wait(timeout=0.05)
    assert len(table) == 0


async def test_cancelled_waiter_removes_entry():
    table = CorrelationTable()
    call = table.register(1, "ping")

    with anyio.move_on_after(0.05):
        await call.wait()

    assert len(table) == 0


async def test_drain_all():
    table = CorrelationTable()
    calls = [table.register(request_id, "tools/call") for request_id in range(3)]

    assert table.pending_ids() == [0, 1, 2]
    assert table.drain_all("Connection lost", ConnectionLost) == 3
    assert len(table) == 0

    errors = []
    for call in calls:
        with pytest.raises(ConnectionLost) as exc_info:
            await call.wait()
        errors.append(exc_info.value)
    assert not any(isinstance(error, SessionClosed) for error in errors)
    assert len({id(error) for error in errors}) == 3


async def test_drain_defaults_to_session_closed():
    table = CorrelationTable()
    call = table.register(1, "ping")
    table.drain_all("Session closed")

    with pytest.raises(SessionClosed):
        await call.wait()


async def test_exactly_once_under_concurrent_resolution():
    """Responses, cancels and a drain race; every call ends with one outcome."""
    table = CorrelationTable()
    calls = [table.register(request_id, "ping") for request_id in range(100)]
    wins: list[int] = []

    async def respond() -> None:
        for request_id in range(100):
            if table.resolve(request_id, JSONRPCResponse(id=request_id, result={})):
                wins.append(request_id)
            await anyio.sleep(0)

    async def cancel() -> None:
        for request_id in reversed(range(100)):
            if table.cancel(request_id):
                wins.append(request_id)
            await anyio.sleep(0)

    async def drain() -> None:
        await anyio.sleep(0)
        wins.extend([-1] * table.drain_all("closed"))

    async with anyio.create_task_group() as tg:
        tg.start_soon(respond)
        tg.start_soon(cancel)
        tg.start_soon(drain)

    assert len(wins) == 100
    assert len(table) == 0
    assert all(call.done for call in calls)


async def test_concurrent_waiters():
    table = CorrelationTable()
    results: dict[int, object] = {}

    async def wait_for(request_id: int) -> None:
        call = table.register(request_id, "ping")
        results[request_id] = await call.wait()

    async with anyio.create_task_group() as tg:
        for request_id in range(10):
            tg.start_soon(wait_for, request_id)
        with anyio.fail_after(1):
            while len(table) < 10:
                await anyio.sleep(0.01)
        for request_id in reversed(range(10)):
            table.resolve(request_id, JSONRPCResponse(id=request_id, result={"n": request_id}))

    assert results == {request_id: {"n": request_id} for request_id in range(10)}
