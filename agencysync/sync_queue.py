"""FIFO serialisation of sync jobs per spreadsheet.

Passes that write to the same spreadsheet mutate the same rows, so they share
one queue and run strictly one after another, even when different agents of
one client submit them. Jobs for different spreadsheets run concurrently on
the event loop. Status is still reported per user.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Hashable, Optional

from agencysync import sync_events

logger = logging.getLogger(__name__)

DIRECTION_INBOUND = "inbound"
DIRECTION_OUTBOUND = "outbound"

STATUS_SYNCING = "syncing"
STATUS_QUEUED = "queued"
STATUS_IDLE = "idle"

TaskFn = Callable[[], Awaitable[Any]]
StatusPayload = Dict[str, object]


@dataclass(eq=False)
class _Job:
    user_id: Hashable
    direction: str
    task_fn: TaskFn
    future: "asyncio.Future[Any]"


def _mark_retrieved(future: "asyncio.Future[Any]") -> None:
    # Callers may fire and forget; the failure is already logged by the worker.
    if not future.cancelled():
        future.exception()


class SyncQueue:
    """Run the jobs sharing a queue key one at a time in submission order."""

    def __init__(self) -> None:
        self._pending: Dict[Hashable, Deque[_Job]] = {}
        self._workers: Dict[Hashable, "asyncio.Task[None]"] = {}
        self._running: Dict[Hashable, _Job] = {}

    def enqueue(
        self, user_id: Hashable, direction: str, task_fn: TaskFn, *, key: Optional[Hashable] = None
    ) -> "asyncio.Future[Any]":
        """Queue ``task_fn`` and return a future for its result without waiting.

        ``key`` names the spreadsheet the job touches and defaults to
        ``user_id``. Must be called from a running event loop.
        """

        key = user_id if key is None else key
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[Any]" = loop.create_future()
        future.add_done_callback(_mark_retrieved)
        self._pending.setdefault(key, deque()).append(_Job(user_id, direction, task_fn, future))
        logger.debug(
            "Queued %s sync for user %s on %s (%d waiting)", direction, user_id, key, len(self._pending[key])
        )
        if key not in self._workers:
            self._workers[key] = loop.create_task(self._drain(key))
        return future

    async def _drain(self, key: Hashable) -> None:
        pending = self._pending[key]
        try:
            while pending:
                job = pending.popleft()
                self._running[key] = job
                try:
                    result = await job.task_fn()
                except asyncio.CancelledError:
                    job.future.cancel()
                    raise
                except Exception as exc:
                    logger.exception("%s sync for user %s failed", job.direction.capitalize(), job.user_id)
                    sync_events.record(
                        sync_events.EVENT_JOB_FAILED,
                        job.user_id if isinstance(job.user_id, int) else None,
                        {"direction": job.direction, "error": str(exc)},
                    )
                    if not job.future.done():
                        job.future.set_exception(exc)
                else:
                    if not job.future.done():
                        job.future.set_result(result)
                finally:
                    self._running.pop(key, None)
        finally:
            for job in pending:
                job.future.cancel()
            pending.clear()
            self._pending.pop(key, None)
            self._workers.pop(key, None)

    def get_status(self, user_id: Hashable) -> StatusPayload:
        running = next((job for job in self._running.values() if job.user_id == user_id), None)
        queue_length = sum(
            1 for pending in self._pending.values() for job in pending if job.user_id == user_id
        )
        if running is not None:
            status = STATUS_SYNCING
        elif queue_length:
            status = STATUS_QUEUED
        else:
            status = STATUS_IDLE
        return {
            "is_processing": running is not None,
            "queue_length": queue_length,
            "status": status,
            "direction": running.direction if running is not None else None,
        }

    def is_idle(self, user_id: Optional[Hashable] = None) -> bool:
        if user_id is None:
            return not self._workers
        return self.get_status(user_id)["status"] == STATUS_IDLE

    async def wait_idle(self) -> None:
        """Wait until every queue, including jobs queued meanwhile, has drained."""

        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)


__all__ = [
    "DIRECTION_INBOUND",
    "DIRECTION_OUTBOUND",
    "STATUS_IDLE",
    "STATUS_QUEUED",
    "STATUS_SYNCING",
    "SyncQueue",
]
