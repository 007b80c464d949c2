import asyncio

import pytest

from vault_agent.correlation import CorrelationTable
from vault_agent.exceptions import ConnectionClosedError, OperationTimeoutError


@pytest.mark.asyncio
async def test_resolve_settles_once_and_removes_entry():
    table = CorrelationTable()
    future = table.insert("op-1", "vault_read", timeout=5)

    assert "op-1" in table
    assert table.resolve("op-1", {"content": "hi"}) is True
    assert await future == {"content": "hi"}
    assert len(table) == 0

    # A second response for the same id is ignored.
    assert table.resolve("op-1", {"content": "again"}) is False
    assert table.reject("op-1", RuntimeError("late")) is False
    assert future.result() == {"content": "hi"}


@pytest.mark.asyncio
async def test_unknown_id_is_a_noop():
    table = CorrelationTable()
    table.insert("known", "vault_list", timeout=5)

    assert table.resolve("unknown", []) is False
    assert table.ids() == ["known"]


@pytest.mark.asyncio
async def test_duplicate_live_id_rejected():
    table = CorrelationTable()
    table.insert("dup", "vault_read", timeout=5)
    with pytest.raises(ValueError):
        table.insert("dup", "vault_read", timeout=5)


@pytest.mark.asyncio
async def test_expiry_rejects_with_timeout_tagged_with_method():
    table = CorrelationTable()
    loop = asyncio.get_running_loop()
    started = loop.time()
    future = table.insert("slow", "vault_grep", timeout=0.1)

    await asyncio.sleep(0.05)
    assert not future.done()

    with pytest.raises(OperationTimeoutError) as exc_info:
        await future
    elapsed = loop.time() - started

    assert exc_info.value.method == "vault_grep"
    assert exc_info.value.code == "TIMEOUT"
    assert "vault_grep" in str(exc_info.value)
    assert elapsed >= 0.1 - 0.005
    assert len(table) == 0


@pytest.mark.asyncio
async def test_resolved_entry_never_times_out():
    table = CorrelationTable()
    future = table.insert("fast", "vault_read", timeout=0.05)
    table.resolve("fast", "ok")

    await asyncio.sleep(0.1)

    assert future.result() == "ok"
    assert table.expire("fast") is False


@pytest.mark.asyncio
async def test_reject_all_counts_and_empties():
    table = CorrelationTable()
    futures = [table.insert(f"op-{i}", "vault_list", timeout=5) for i in range(3)]
    table.resolve("op-0", [])

    rejected = table.reject_all(lambda entry: ConnectionClosedError(entry.method))

    assert rejected == 2
    assert len(table) == 0
    assert futures[0].result() == []
    for future in futures[1:]:
        with pytest.raises(ConnectionClosedError):
            future.result()


@pytest.mark.asyncio
async def test_reject_after_waiter_cancelled_is_harmless():
    table = CorrelationTable()
    future = table.insert("gone", "vault_read", timeout=5)
    waiter = asyncio.create_task(asyncio.wait_for(future, timeout=5))
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    assert table.reject("gone", ConnectionClosedError("vault_read")) is True
    assert len(table) == 0


class FailingLog:
    def warning(self, *args, **kwargs):
        raise ValueError("log sink closed")

    def debug(self, *args, **kwargs):
        pass


@pytest.mark.asyncio
async def test_expiry_settles_future_even_if_logging_fails(monkeypatch):
    table = CorrelationTable()
    future = table.insert("op-1", "vault_search", timeout=60)
    monkeypatch.setattr("vault_agent.correlation.log", FailingLog())

    with pytest.raises(ValueError):
        table.expire("op-1")

    assert future.done()
    assert isinstance(future.exception(), OperationTimeoutError)
    assert len(table) == 0
