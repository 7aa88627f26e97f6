"""Brightness ramps for dimmable devices.

Plejd dims smoothly on its own for short changes. For longer ones the gateway
sends a sequence of intermediate levels. Each tick recomputes the level from
the wall-clock time since the ramp started, so late ticks do not make the
ramp run long. The last tick always sends the exact target.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from plejdble.core.log_config import VERBOSE
from plejdble.core.model import TransitionTimer

MAX_TRANSITION_STEPS_PER_SECOND = 5
MIN_TRANSITION_SECONDS = 1

LOGGER = logging.getLogger(__name__)

BrightnessSetter = Callable[[int, int | None, bool], None]


def plan_transition(initial: int, target: int, duration: float) -> tuple[float, float]:
    """Return ``(steps, interval_seconds)`` for a ramp between two different levels."""
    steps = min(abs(target - initial), MAX_TRANSITION_STEPS_PER_SECOND * duration)
    return steps, duration / steps


class TransitionEngine:
    def __init__(
        self,
        set_brightness: BrightnessSetter,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._set_brightness = set_brightness
        self._clock = clock
        self._sleep = sleep
        self._timers: dict[int, TransitionTimer] = {}

    def active(self, device_id: int) -> bool:
        return device_id in self._timers

    def cancel(self, device_id: int) -> None:
        timer = self._timers.pop(device_id, None)
        if timer is not None and timer.task is not None:
            timer.task.cancel()

    def cancel_all(self) -> None:
        for device_id in list(self._timers):
            self.cancel(device_id)

    def transition_to(
        self,
        device_id: int,
        target: int | None,
        duration: float | None,
        *,
        initial: int | None,
        dimmable: bool,
    ) -> None:
        self.cancel(device_id)

        if (
            duration is not None
            and duration > MIN_TRANSITION_SECONDS
            and dimmable
            and initial is not None
            and target is not None
            and target != initial
        ):
            self._start_ramp(device_id, initial, target, duration)
            return

        if duration and dimmable:
            LOGGER.debug(
                "Could not transition light change. Either initial value is unknown or change "
                "is too small. Requested from %s to %s",
                initial,
                target,
            )
        self._set_brightness(device_id, target, True)

    def _start_ramp(self, device_id: int, initial: int, target: int, duration: float) -> None:
        steps, interval = plan_transition(initial, target, duration)
        LOGGER.debug("transitioning from %d to %d in %s seconds.", initial, target, duration)
        LOGGER.log(
            VERBOSE,
            "delta brightness %d, steps %s, interval %.1f ms",
            target - initial,
            steps,
            interval * 1000,
        )
        timer = TransitionTimer(
            device_id=device_id,
            started_at=self._clock(),
            initial=initial,
            target=target,
            duration=duration,
        )
        timer.task = asyncio.ensure_future(self._ramp(timer, interval))
        self._timers[device_id] = timer

    async def _ramp(self, timer: TransitionTimer, interval: float) -> None:
        delta = timer.target - timer.initial
        ticks = 0
        while True:
            await self._sleep(interval)
            ticks += 1
            elapsed = self._clock() - timer.started_at
            if elapsed > timer.duration or elapsed < 0:
                elapsed = timer.duration

            if elapsed == timer.duration:
                if self._timers.get(timer.device_id) is timer:
                    del self._timers[timer.device_id]
                LOGGER.debug(
                    "Queueing finalize (%d) transition from %d to %d. Done steps %d.",
                    timer.device_id,
                    timer.initial,
                    timer.target,
                    ticks,
                )
                self._set_brightness(timer.device_id, timer.target, True)
                return

            brightness = int(timer.initial + delta * elapsed / timer.duration)
            LOGGER.log(VERBOSE, "Queueing dim transition for (%d) to %d.", timer.device_id, brightness)
            self._set_brightness(timer.device_id, brightness, False)
