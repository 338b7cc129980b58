"""
Scripted driver for tests.

ScriptedClient is a polling driver whose device is a plain dict. It counts
every transport operation so tests can assert that no I/O happened, and lets
tests queue failures for the next connect, read or write.
"""

import asyncio
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Union

from scada_protocols.core.contracts import BatchMode, ReadRequest, ReadResponse, WriteOutcome
from scada_protocols.core.data import PointId, SignalPoint, TelemetryPoint
from scada_protocols.core.interfaces import CommunicationMode
from scada_protocols.core.quality import Quality
from scada_protocols.drivers.base import BaseProtocolClient, DriverConfig


class ScriptedClient(BaseProtocolClient):
    """
    Polling driver with scripted behaviour.

    Args:
        telemetry: Telemetry values by point id
        signals: Signal values by point id
        rejected_ids: Command ids the device refuses
        batch_mode: Declared write semantics
        read_delay_s: Time each read takes
        write_delay_s: Time each write takes
        connect_delay_s: Time each connect handshake takes
        config: Driver settings
    """

    name = "scripted"
    supported_modes = (CommunicationMode.POLLING,)

    def __init__(self,
                 telemetry: Optional[Dict[PointId, float]] = None,
                 signals: Optional[Dict[PointId, Union[bool, int]]] = None,
                 rejected_ids: Iterable[PointId] = (),
                 batch_mode: BatchMode = BatchMode.PER_ITEM,
                 read_delay_s: float = 0.0,
                 write_delay_s: float = 0.0,
                 connect_delay_s: float = 0.0,
                 config: Optional[DriverConfig] = None):
        super().__init__(config)
        self.telemetry = dict(telemetry or {})
        self.signals = dict(signals or {})
        self.rejected_ids = set(rejected_ids)
        self.batch_mode = batch_mode
        self.read_delay_s = read_delay_s
        self.write_delay_s = write_delay_s
        self.connect_delay_s = connect_delay_s

        self.open_calls = 0
        self.close_calls = 0
        self.read_calls = 0
        self.write_calls = 0
        self.written: List = []

        self._connect_failures: Deque[BaseException] = deque()
        self._read_failures: Deque[BaseException] = deque()
        self._write_failures: Deque[BaseException] = deque()

    @property
    def io_calls(self) -> int:
        return self.open_calls + self.close_calls + self.read_calls + self.write_calls

    def fail_next_connect(self, error: BaseException, times: int = 1):
        self._connect_failures.extend([error] * times)

    def fail_next_read(self, error: BaseException, times: int = 1):
        self._read_failures.extend([error] * times)

    def fail_next_write(self, error: BaseException, times: int = 1):
        self._write_failures.extend([error] * times)

    async def _open(self):
        self.open_calls += 1
        if self.connect_delay_s:
            await asyncio.sleep(self.connect_delay_s)
        if self._connect_failures:
            raise self._connect_failures.popleft()

    async def _close(self):
        self.close_calls += 1

    async def _read_points(self, request: ReadRequest) -> ReadResponse:
        self.read_calls += 1
        if self.read_delay_s:
            await asyncio.sleep(self.read_delay_s)
        if self._read_failures:
            raise self._read_failures.popleft()

        # Every point, unfiltered; read() applies the request selection
        return ReadResponse(
            telemetry=tuple(TelemetryPoint(id=k, value=v, quality=Quality.GOOD)
                            for k, v in self.telemetry.items()),
            signals=tuple(SignalPoint(id=k, value=v, quality=Quality.GOOD)
                          for k, v in self.signals.items()),
        )

    async def _write_controls(self, commands: Sequence) -> List[WriteOutcome]:
        return await self._apply(commands)

    async def _write_adjustments(self, commands: Sequence) -> List[WriteOutcome]:
        return await self._apply(commands)

    async def _apply(self, commands: Sequence) -> List[WriteOutcome]:
        self.write_calls += 1
        if self.write_delay_s:
            await asyncio.sleep(self.write_delay_s)
        if self._write_failures:
            raise self._write_failures.popleft()

        outcomes = []
        for command in commands:
            if command.id in self.rejected_ids:
                outcomes.append(WriteOutcome.rejected(command.id, "refused by device"))
            else:
                outcomes.append(WriteOutcome.ok(command.id))
                self.written.append(command)
        return outcomes
