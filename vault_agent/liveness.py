"""Liveness monitor for sessions and agent runs.

Records are stamped with a monotonic clock. A periodic sweep finds records
idle past their window and hands them to their ``on_stale`` callback exactly
once. Callbacks must not block; they cancel tokens or schedule work.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable

from vault_agent.logging import get_logger

log = get_logger(__name__)


@dataclass(eq=False)
class ActivityRecord:
    """Last-activity timestamp for one session or run."""

    key: str
    kind: str
    window: float
    on_stale: Callable[["ActivityRecord"], None]
    last_activity: float = field(default_factory=time.monotonic)
    stale: bool = False

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def idle_for(self, now: float | None = None) -> float:
        return (time.monotonic() if now is None else now) - self.last_activity

    def expired(self, now: float | None = None) -> bool:
        return self.idle_for(now) > self.window


class LivenessMonitor:
    """Periodically sweeps activity records and reports stale ones."""

    def __init__(self, interval: float = 5.0):
        self.interval = interval
        self._records: dict[int, ActivityRecord] = {}
        self._task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._records)

    def track(
        self,
        key: str,
        kind: str,
        window: float,
        on_stale: Callable[[ActivityRecord], None],
    ) -> ActivityRecord:
        record = ActivityRecord(key=key, kind=kind, window=window, on_stale=on_stale)
        self._records[id(record)] = record
        return record

    def untrack(self, record: ActivityRecord | None) -> None:
        if record is not None:
            self._records.pop(id(record), None)

    def sweep(self, now: float | None = None) -> list[ActivityRecord]:
        """Expire every record idle past its window.

        Returns:
            The records that went stale during this sweep
        """
        now = time.monotonic() if now is None else now
        expired = [record for record in self._records.values() if record.expired(now)]
        for record in expired:
            self._records.pop(id(record), None)
            record.stale = True
            log.warning(
                "Activity window exceeded",
                kind=record.kind,
                key=record.key,
                idle=round(record.idle_for(now), 1),
                window=record.window,
            )
            try:
                record.on_stale(record)
            except Exception as e:
                log.error("Stale handler failed", kind=record.kind, key=record.key, error=str(e))
        return expired

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.sweep()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            log.debug("Liveness monitor started", interval=self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
