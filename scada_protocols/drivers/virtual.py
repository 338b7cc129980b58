"""
Virtual Channel Driver
======================

In-memory device for simulation, commissioning and tests. Supports both
polling (reads return the current process image) and event-driven delivery
(injected values are published as DataEvents while connected).

Points are declared up front:
    channel.add_telemetry(1, 230.5)
    channel.add_signal(10, True)
    channel.add_control(100, feedback=10)        # writes echo into signal 10
    channel.add_adjustment(200, low=0, high=100)

Writes to undeclared points or out-of-range setpoints are rejected. With
ATOMIC batch mode nothing is applied unless the whole batch is valid.

Link failures can be simulated with ``set_online(False)``: every following
I/O raises ConnectionResetError, which the base class reports as a
TransportError and faults the connection.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Union

from scada_protocols.core.contracts import BatchMode, ReadRequest, ReadResponse, WriteOutcome
from scada_protocols.core.data import (
    AdjustmentCommand, ControlCommand, PointId, SignalPoint, TelemetryPoint, utc_now,
)
from scada_protocols.core.interfaces import CommunicationMode
from scada_protocols.core.quality import Quality
from scada_protocols.drivers.base import DriverConfig, EventDrivenClient

logger = logging.getLogger(__name__)


@dataclass
class OutputPoint:
    """A writable point of the virtual device."""
    id: PointId
    value: Optional[Union[bool, int, float]] = None
    low: Optional[float] = None
    high: Optional[float] = None
    feedback: Optional[PointId] = None  # Input point mirroring the last write
    writes: int = 0


class VirtualChannel(EventDrivenClient):
    """
    Hybrid in-memory driver.

    Args:
        config: Driver settings
        batch_mode: ATOMIC or PER_ITEM write semantics
        latency_s: Simulated round-trip time added to every I/O call
    """

    name = "virtual"
    supported_modes = (CommunicationMode.HYBRID,)

    def __init__(self, config: Optional[DriverConfig] = None,
                 batch_mode: BatchMode = BatchMode.PER_ITEM,
                 latency_s: float = 0.0):
        super().__init__(config)
        self.batch_mode = batch_mode
        self.latency_s = latency_s
        self.online = True

        self.telemetry: Dict[PointId, TelemetryPoint] = {}
        self.signals: Dict[PointId, SignalPoint] = {}
        self.controls: Dict[PointId, OutputPoint] = {}
        self.adjustments: Dict[PointId, OutputPoint] = {}

    # ==================== DEVICE MODEL ====================

    def add_telemetry(self, id: PointId, value: float, quality: Quality = Quality.GOOD):
        self.telemetry[id] = TelemetryPoint(id=id, value=float(value), quality=quality)

    def add_signal(self, id: PointId, value: Union[bool, int], quality: Quality = Quality.GOOD):
        self.signals[id] = SignalPoint(id=id, value=value, quality=quality)

    def add_control(self, id: PointId, feedback: Optional[PointId] = None):
        self.controls[id] = OutputPoint(id=id, feedback=feedback)

    def add_adjustment(self, id: PointId, low: Optional[float] = None,
                       high: Optional[float] = None, feedback: Optional[PointId] = None):
        self.adjustments[id] = OutputPoint(id=id, low=low, high=high, feedback=feedback)

    def set_online(self, online: bool):
        """Simulate the link going down (False) or coming back (True)."""
        self.online = online
        logger.info(f"{self.label}: link {'up' if online else 'down'}")

    async def inject_telemetry(self, id: PointId, value: float,
                               quality: Quality = Quality.GOOD):
        """Device-side change of a telemetry value."""
        point = TelemetryPoint(id=id, value=float(value), quality=quality)
        self.telemetry[id] = point
        return await self._push(point)

    async def inject_signal(self, id: PointId, value: Union[bool, int],
                            quality: Quality = Quality.GOOD):
        """Device-side change of a signal value."""
        point = SignalPoint(id=id, value=value, quality=quality)
        self.signals[id] = point
        return await self._push(point)

    async def _push(self, point):
        # A device only pushes over an established link
        if not self.online or not self._state.is_connected():
            return None
        return await self._publish_point(point)

    # ==================== WIRE HOOKS ====================

    async def _io(self):
        if self.latency_s:
            await asyncio.sleep(self.latency_s)
        if not self.online:
            raise ConnectionResetError("virtual link is down")

    async def _open(self):
        await self._io()
        # Spontaneous transmission of the full image on connect (general interrogation),
        # published once the connection is up
        for point in list(self.telemetry.values()) + list(self.signals.values()):
            self._record_point(point)

    async def _close(self):
        if self.latency_s:
            await asyncio.sleep(self.latency_s)

    async def _read_points(self, request: ReadRequest) -> ReadResponse:
        await self._io()
        now = utc_now()
        telemetry = [replace(p, timestamp=now) for p in self.telemetry.values()] \
            if request.wants_telemetry else []
        signals = [replace(p, timestamp=now) for p in self.signals.values()] \
            if request.wants_signals else []

        failed = 0
        if request.point_ids:
            known = set(self.telemetry) | set(self.signals)
            failed = len(request.point_ids - known)
        return ReadResponse.build(request, telemetry, signals, fetched_at=now, failed_count=failed)

    async def _write_controls(self, commands: Sequence[ControlCommand]) -> List[WriteOutcome]:
        await self._io()
        outcomes = [self._check_control(c) for c in commands]
        for command, outcome in self._to_apply(commands, outcomes):
            output = self.controls[command.id]
            output.value = command.command
            output.writes += 1
            if output.feedback is not None:
                self._feedback(output.feedback, command.command)
        return outcomes

    async def _write_adjustments(self, commands: Sequence[AdjustmentCommand]) -> List[WriteOutcome]:
        await self._io()
        outcomes = [self._check_adjustment(c) for c in commands]
        for command, outcome in self._to_apply(commands, outcomes):
            output = self.adjustments[command.id]
            output.value = command.value
            output.writes += 1
            if output.feedback is not None:
                self._feedback(output.feedback, command.value)
        return outcomes

    def _feedback(self, point_id: PointId, value):
        """Mirror a written value into the input point that reports it."""
        if point_id in self.telemetry:
            point = TelemetryPoint(id=point_id, value=float(value))
            self.telemetry[point_id] = point
        else:
            point = SignalPoint(id=point_id, value=value if isinstance(value, (bool, int)) else int(value))
            self.signals[point_id] = point
        self._record_point(point)

    def _to_apply(self, commands, outcomes):
        if self.batch_mode is BatchMode.ATOMIC and not all(o.accepted for o in outcomes):
            return []
        return [(c, o) for c, o in zip(commands, outcomes) if o.accepted]

    def _check_control(self, command: ControlCommand) -> WriteOutcome:
        if command.id not in self.controls:
            return WriteOutcome.rejected(command.id, "unknown control point")
        return WriteOutcome.ok(command.id)

    def _check_adjustment(self, command: AdjustmentCommand) -> WriteOutcome:
        output = self.adjustments.get(command.id)
        if output is None:
            return WriteOutcome.rejected(command.id, "unknown adjustment point")
        if output.low is not None and command.value < output.low:
            return WriteOutcome.rejected(command.id, f"below minimum {output.low}")
        if output.high is not None and command.value > output.high:
            return WriteOutcome.rejected(command.id, f"above maximum {output.high}")
        return WriteOutcome.ok(command.id)
