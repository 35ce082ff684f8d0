"""Audit emitter: fire-and-forget recording of evaluation outcomes.

Entries go onto a bounded in-memory queue drained by a single background
writer. Writes are retried with backoff; while the audit store keeps
failing, new entries push the oldest ones out (counted in ``dropped``)
instead of slowing down evaluations.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import hmac
import logging
from collections import deque
from typing import TYPE_CHECKING

from aegis_guardrails.engine.retry import backoff_delay, with_retry

if TYPE_CHECKING:
    from aegis_guardrails.engine.store import AuditStore
    from aegis_guardrails.models.core import AuditLogEntry

logger = logging.getLogger(__name__)


def hash_input(text: str, salt: str) -> str:
    """Salted one-way digest of an input; the plaintext is never stored."""
    return hmac.new(salt.encode(), text.encode(), hashlib.sha256).hexdigest()


class AuditEmitter:
    """Bounded queue + background writer in front of an audit store."""

    def __init__(
        self,
        store: AuditStore,
        *,
        max_queue: int = 10_000,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 5.0,
    ) -> None:
        if max_queue < 1:
            raise ValueError("max_queue must be at least 1")
        self._store = store
        self._max_queue = max_queue
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._queue: deque[AuditLogEntry] = deque()
        self._wakeup = asyncio.Event()
        # Set while nothing is queued or being written.
        self._drained = asyncio.Event()
        self._drained.set()
        self._worker: asyncio.Task[None] | None = None
        self._in_flight = 0
        self.written = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        """Entries queued or currently being written."""
        return len(self._queue) + self._in_flight

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def record(self, entry: AuditLogEntry) -> None:
        """Queue an entry without waiting. Drops the oldest when full."""
        if len(self._queue) >= self._max_queue:
            self._queue.popleft()
            self._drop()
        self._queue.append(entry)
        self._drained.clear()
        self._wakeup.set()

    def start(self) -> None:
        """Start the background writer on the running loop."""
        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="audit-writer")
            logger.info("Audit emitter started (queue limit %d)", self._max_queue)

    async def flush(self, timeout: float = 5.0) -> bool:
        """Wait until the queue is empty with no write in flight. False on timeout."""
        if not self.pending:
            return True
        try:
            await asyncio.wait_for(self._drained.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def stop(self, timeout: float = 5.0) -> None:
        """Flush what can be flushed within ``timeout``, then stop the writer."""
        if self._worker is None:
            return
        if not await self.flush(timeout):
            logger.warning("Audit emitter stopped with %d entries unwritten", self.pending)
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None
        logger.info(
            "Audit emitter stopped: written=%d dropped=%d", self.written, self.dropped
        )

    async def _run(self) -> None:
        failures = 0
        while True:
            if not self._queue:
                self._drained.set()
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            entry = self._queue.popleft()
            self._in_flight = 1
            try:
                await with_retry(
                    self._store.append,
                    entry,
                    max_attempts=self._max_attempts,
                    base_delay=self._base_delay,
                    max_delay=self._max_delay,
                )
            except Exception as exc:
                self._in_flight = 0
                failures += 1
                logger.warning("Audit write for %s failed: %s", entry.id, exc)
                self._requeue(entry)
                await asyncio.sleep(
                    backoff_delay(failures, self._base_delay, self._max_delay)
                )
            else:
                self._in_flight = 0
                failures = 0
                self.written += 1

    def _requeue(self, entry: AuditLogEntry) -> None:
        # The failed entry is the oldest one; it goes first if there is room.
        if len(self._queue) >= self._max_queue:
            self._drop()
        else:
            self._queue.appendleft(entry)

    def _drop(self) -> None:
        self.dropped += 1
        logger.warning("Audit queue full; dropped oldest entry (total dropped %d)", self.dropped)
