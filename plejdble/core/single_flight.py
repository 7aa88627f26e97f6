"""Coalesce concurrent requests for the same operation into one task."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Holds at most one in-flight task; later callers get the same task back.

    Callers that may themselves be cancelled while waiting should await the
    task through ``asyncio.shield`` so the shared operation keeps running.
    """

    def __init__(self) -> None:
        self._task: asyncio.Task[T] | None = None

    @property
    def in_flight(self) -> asyncio.Task[T] | None:
        return self._task

    def run(self, factory: Callable[[], Coroutine[Any, Any, T]]) -> tuple[asyncio.Task[T], bool]:
        """Return ``(task, started)``; ``started`` is False when joining an existing task."""
        if self._task is not None:
            return self._task, False
        task = asyncio.ensure_future(factory())
        self._task = task
        task.add_done_callback(self._clear)
        return task, True

    def _clear(self, task: asyncio.Task[T]) -> None:
        if self._task is task:
            self._task = None

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
