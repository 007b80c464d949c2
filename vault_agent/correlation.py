"""Correlation table for outstanding outbound operations."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

from vault_agent.exceptions import OperationTimeoutError
from vault_agent.logging import get_logger

log = get_logger(__name__)


def _mark_retrieved(future: asyncio.Future[Any]) -> None:
    # Nobody may be awaiting a rejected future (run already cancelled, session gone).
    if not future.cancelled():
        future.exception()


@dataclass
class PendingOperation:
    """One outstanding request awaiting its response."""

    id: str
    method: str
    timeout: float
    future: asyncio.Future[Any]
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)


class CorrelationTable:
    """Maps operation ids to pending futures with deadlines.

    An entry is removed exactly once, by whichever of resolve, reject or expiry
    comes first. Later calls for the same id are no-ops.
    """

    def __init__(self) -> None:
        self._pending: dict[str, PendingOperation] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, op_id: object) -> bool:
        return op_id in self._pending

    def ids(self) -> list[str]:
        return list(self._pending)

    def insert(self, op_id: str, method: str, timeout: float) -> asyncio.Future[Any]:
        """Register a new operation and arm its deadline.

        Raises:
            ValueError: if ``op_id`` is already live
        """
        if op_id in self._pending:
            raise ValueError(f"Operation id already pending: {op_id}")

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        future.add_done_callback(_mark_retrieved)
        entry = PendingOperation(id=op_id, method=method, timeout=timeout, future=future)
        entry.timer = loop.call_later(timeout, self.expire, op_id)
        self._pending[op_id] = entry
        return future

    def _pop(self, op_id: str) -> PendingOperation | None:
        entry = self._pending.pop(op_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry

    def resolve(self, op_id: str, result: Any) -> bool:
        entry = self._pop(op_id)
        if entry is None:
            log.warning("Response for unknown operation", operation_id=op_id)
            return False
        if not entry.future.done():
            entry.future.set_result(result)
        log.debug("Operation resolved", operation_id=op_id, method=entry.method)
        return True

    def reject(self, op_id: str, error: BaseException) -> bool:
        entry = self._pop(op_id)
        if entry is None:
            log.warning("Rejection for unknown operation", operation_id=op_id)
            return False
        if not entry.future.done():
            entry.future.set_exception(error)
        log.debug("Operation rejected", operation_id=op_id, method=entry.method, error=str(error))
        return True

    def expire(self, op_id: str) -> bool:
        """Reject an operation whose deadline has passed."""
        entry = self._pending.get(op_id)
        if entry is None:
            return False
        rejected = self.reject(op_id, OperationTimeoutError(entry.method, entry.timeout))
        log.warning("Operation timed out", operation_id=op_id, method=entry.method, timeout=entry.timeout)
        return rejected

    def reject_all(self, error_factory: Callable[[PendingOperation], BaseException]) -> int:
        """Reject every outstanding operation; returns how many were rejected."""
        count = 0
        for op_id in list(self._pending):
            entry = self._pending[op_id]
            if self.reject(op_id, error_factory(entry)):
                count += 1
        return count
