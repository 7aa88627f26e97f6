"""Serialized outbound command queue.

The radio link takes one GATT write at a time, so every command goes through
a single drain loop. New items enter at the head and the loop takes from the
tail. An item is skipped when a newer item for the same device is still
queued, which leaves only the latest command per device on the wire.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable

from plejdble.core.log_config import VERBOSE
from plejdble.core.model import WriteQueueItem

MAX_RETRY_COUNT = 5

LOGGER = logging.getLogger(__name__)

Writer = Callable[[bytes], Awaitable[bool]]


class WriteQueue:
    def __init__(
        self,
        writer: Writer,
        *,
        wait_time: float,
        describe: Callable[[int], str | None] = lambda _: None,
        max_retry_count: int = MAX_RETRY_COUNT,
    ) -> None:
        self._writer = writer
        self._wait_time = wait_time
        self._describe = describe
        self._max_retry_count = max_retry_count
        self._items: deque[WriteQueueItem] = deque()
        self._in_flight: WriteQueueItem | None = None
        self._task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._items)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def push(self, item: WriteQueueItem) -> None:
        self._items.appendleft(item)

    def start(self) -> None:
        LOGGER.info("startWriteQueue()")
        self.stop()
        self._task = asyncio.ensure_future(self._loop())

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait_empty(self, poll: float = 0.05) -> None:
        while self._items or self._in_flight is not None:
            await asyncio.sleep(poll)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._wait_time)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Error in write queue loop, values probably not written to Plejd")

    def _requeue(self, item: WriteQueueItem) -> bool:
        """Count a failed attempt; return False once the item has run out of retries."""
        item.retry_count += 1
        LOGGER.debug("Will retry command, count failed so far %d", item.retry_count)
        if item.retry_count <= self._max_retry_count:
            self._items.append(item)
            return True
        LOGGER.error(
            "Write queue: Exceeded max retry count (%d) for %s (%d). Command %s failed.",
            self._max_retry_count,
            self._describe(item.device_id),
            item.device_id,
            item.label,
        )
        return False

    async def run_once(self) -> None:
        """Drain the queue until it is empty or a retried write asks for a pause."""
        while self._items:
            item = self._items.pop()
            name = self._describe(item.device_id)
            LOGGER.debug(
                "Write queue: Processing %s (%d). Command %s. Total queue length: %d",
                name,
                item.device_id,
                item.label,
                len(self._items),
            )

            if any(other.device_id == item.device_id for other in self._items):
                LOGGER.log(
                    VERBOSE,
                    "Skipping %s (%d) %s due to more recent command in queue.",
                    name,
                    item.device_id,
                    item.label,
                )
                continue

            self._in_flight = item
            try:
                success = await self._writer(item.payload)
            except asyncio.CancelledError:
                if item.should_retry:
                    self._requeue(item)
                raise
            finally:
                self._in_flight = None

            if success or not item.should_retry:
                continue
            if not self._requeue(item):
                break
            if item.retry_count > 1:
                # first retry goes out immediately, later ones wait a full interval
                break
