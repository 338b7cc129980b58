"""
Polling Engine
==============

Drives periodic reads for one driver.

Tick sequence:
    1. Read the configured request (through the driver, so the read is
       serialized with all other I/O on that connection)
    2. On failure apply the FailurePolicy (SKIP / RETRY / STOP)
    3. On success update last-known values and hand the response to the callback
    4. Sleep for the remainder of the interval (+/- jitter)

A tick never overlaps the previous one: the next read starts only after the
previous read (and its retries) finished.

Stopping:
    stop() returns only when no further read will be started. An in-flight
    read is never cancelled; if it outlives the grace period the engine
    detaches from it and records a diagnostics warning. A read still queued
    for the connection when stop was requested never reaches the wire
    (the driver checks stop_requested() after taking its I/O lock).

A failed attempt is any exception from the read, not only ProtocolError.

Last-known values age through a QualityTracker:
    GOOD -> UNCERTAIN after 3 missed polls -> STALE after 10
"""

import asyncio
import inspect
import logging
import time
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

import numpy as np

from scada_protocols.config import POLLING_CONFIG
from scada_protocols.core.contracts import FailureAction, PollingConfig, ReadRequest, ReadResponse
from scada_protocols.core.data import InputPoint, PointId, utc_now
from scada_protocols.core.diagnostics import DiagnosticsAggregator
from scada_protocols.core.errors import AlreadyPollingError
from scada_protocols.core.quality import QualityTracker

logger = logging.getLogger(__name__)

ReadFunc = Callable[[ReadRequest], Awaitable[ReadResponse]]
ResponseCallback = Callable[[ReadResponse], object]

# Stop flag of the polling run that owns the current task
_current_stop: ContextVar[Optional[asyncio.Event]] = ContextVar("polling_stop", default=None)


class PollingStopped(Exception):
    """Raised by a read that was still waiting for the connection when polling stopped."""


def stop_requested() -> bool:
    """
    True inside a polling task whose engine has been told to stop.

    Drivers check this once they own the connection, right before any I/O,
    and raise PollingStopped instead of touching the wire.
    """
    stop_event = _current_stop.get()
    return stop_event is not None and stop_event.is_set()


@dataclass
class PollingStats:
    """Counters for the current engine (kept across restarts)."""
    ticks: int = 0
    successes: int = 0
    failures: int = 0              # Failed read attempts, retries included
    retries: int = 0
    consecutive_failures: int = 0
    last_tick_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        return {
            "ticks": self.ticks,
            "successes": self.successes,
            "failures": self.failures,
            "retries": self.retries,
            "consecutive_failures": self.consecutive_failures,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
        }


class PollingEngine:
    """
    Periodic reader for a single driver.

    Args:
        read: Coroutine function performing one read (normally driver.read)
        name: Label used in log messages and the task name
        diagnostics: Driver aggregator that receives engine warnings
        grace_period_s: Default time stop() waits for an in-flight read
        quality_tracker: Ages last-known values on missed polls
    """

    def __init__(self, read: ReadFunc, name: str = "poller",
                 diagnostics: Optional[DiagnosticsAggregator] = None,
                 grace_period_s: float = POLLING_CONFIG["stop_grace_period_s"],
                 quality_tracker: Optional[QualityTracker] = None):
        self._read = read
        self.name = name
        self.diagnostics = diagnostics
        self.grace_period_s = grace_period_s
        self.quality = quality_tracker or QualityTracker()

        self.config: Optional[PollingConfig] = None
        self.stats = PollingStats()
        self.last_response: Optional[ReadResponse] = None
        self._last_values: Dict[PointId, InputPoint] = {}

        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return (self._task is not None and not self._task.done()
                and not self._stop_event.is_set())

    def start(self, config: PollingConfig, on_response: Optional[ResponseCallback] = None):
        """
        Start polling with the given config.

        Args:
            config: Immutable polling schedule
            on_response: Optional sync or async callback for each successful response

        Raises:
            AlreadyPollingError: If this engine is already polling
        """
        if self.is_running:
            raise AlreadyPollingError(f"{self.name}: polling already running")

        self.config = config
        self.stats.consecutive_failures = 0
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._task = asyncio.create_task(
            self._run(config, on_response, stop_event), name=f"{self.name}-polling"
        )
        self._task.add_done_callback(self._on_task_done)
        logger.info(f"{self.name}: polling started (interval={config.interval_s}s, "
                    f"request={config.request.selection.value}, "
                    f"on_failure={config.on_failure.action.value})")

    async def stop(self, grace_period_s: Optional[float] = None):
        """
        Stop polling. Idempotent.

        No read is started after this returns. Waits up to the grace period
        for an in-flight read, then detaches from it.
        """
        task = self._task
        if task is None:
            return
        self._stop_event.set()
        if task.done():
            self._task = None
            return

        # Stopped from inside the polling callback: the loop exits on its own
        if task is asyncio.current_task():
            return

        grace = self.grace_period_s if grace_period_s is None else grace_period_s
        done, _ = await asyncio.wait({task}, timeout=grace)
        if not done:
            message = (f"{self.name}: in-flight read still running after {grace}s; "
                       f"polling task detached")
            logger.warning(message)
            if self.diagnostics is not None:
                self.diagnostics.record_warning(message)
        else:
            logger.info(f"{self.name}: polling stopped")
        self._task = None

    def snapshot(self) -> Dict[PointId, InputPoint]:
        """Last known value of every polled point, with aged quality."""
        return {
            point_id: point.with_quality(self.quality.quality(point_id))
            for point_id, point in self._last_values.items()
        }

    # ==================== LOOP ====================

    async def _run(self, config: PollingConfig, on_response: Optional[ResponseCallback],
                   stop_event: asyncio.Event):
        # Local to this task's context, so reads made here can see the stop
        _current_stop.set(stop_event)
        while not stop_event.is_set():
            tick_start = time.monotonic()
            keep_going = await self._tick(config, on_response, stop_event)
            if not keep_going:
                stop_event.set()
                break

            # Maintain polling interval
            elapsed = time.monotonic() - tick_start
            wait_time = max(0.0, config.interval_s - elapsed + self._jitter(config))
            if await self._sleep(wait_time, stop_event):
                break

    async def _tick(self, config: PollingConfig, on_response: Optional[ResponseCallback],
                    stop_event: asyncio.Event) -> bool:
        """
        Run one tick.

        Returns:
            False if the failure policy says to stop polling
        """
        policy = config.on_failure
        self.stats.ticks += 1
        self.stats.last_tick_at = utc_now()

        for attempt in range(policy.attempts):
            if stop_event.is_set():
                return True
            try:
                response = await self._read(config.request)
            except PollingStopped:
                logger.debug(f"{self.name}: queued read abandoned after stop")
                return True
            except Exception as e:
                self.stats.failures += 1
                self.stats.consecutive_failures += 1
                logger.warning(f"{self.name}: poll failed "
                               f"(attempt {attempt + 1}/{policy.attempts}): {e}")
                if attempt + 1 < policy.attempts:
                    self.stats.retries += 1
                    if await self._sleep(policy.retry_delay_s, stop_event):
                        return True
                    continue

                self.quality.mark_all_missed()
                if policy.action is FailureAction.STOP:
                    logger.error(f"{self.name}: stopping polling after failure: {e}")
                    return False
                return True

            if stop_event.is_set():
                # Stopped and detached while this read was in flight
                return True
            self._accept(config.request, response)
            await self._deliver(on_response, response)
            return True
        return True

    def _accept(self, request: ReadRequest, response: ReadResponse):
        self.stats.successes += 1
        self.stats.consecutive_failures = 0
        self.stats.last_success_at = response.fetched_at
        self.last_response = response

        seen = set()
        for point in response.points():
            self.quality.update(point.id, point.quality)
            self._last_values[point.id] = point
            seen.add(point.id)

        # Selected points the device did not return this time
        for point_id, point in self._last_values.items():
            if point_id not in seen and request.matches(point):
                self.quality.mark_missed(point_id)

    async def _deliver(self, on_response: Optional[ResponseCallback], response: ReadResponse):
        if on_response is None:
            return
        try:
            result = on_response(response)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception(f"{self.name}: response callback raised: {e}")

    @staticmethod
    def _jitter(config: PollingConfig) -> float:
        if not config.jitter_s:
            return 0.0
        return float(np.random.uniform(-config.jitter_s, config.jitter_s))

    @staticmethod
    async def _sleep(delay_s: float, stop_event: asyncio.Event) -> bool:
        """
        Sleep unless stopped.

        Returns:
            True if stop was requested during the sleep
        """
        if delay_s <= 0:
            return stop_event.is_set()
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay_s)
        except asyncio.TimeoutError:
            return False
        return True

    def _on_task_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"{self.name}: polling task crashed: {error!r}")
            if self.diagnostics is not None:
                self.diagnostics.record_warning(f"polling task crashed: {error!r}")
