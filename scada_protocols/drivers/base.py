"""
Driver Base Classes
===================

Shared enforcement of the ProtocolClient contracts so concrete drivers only
implement wire-level hooks:

    _open()                      open transport + protocol handshake
    _close()                     release transport
    _read_points(request)        -> ReadResponse
    _write_controls(commands)    -> sequence of WriteOutcome, one per command
    _write_adjustments(commands) -> sequence of WriteOutcome, one per command

The base class takes care of:
    - Connection state machine (connect/disconnect no-op and error cases)
    - NotConnectedError before any I/O when not CONNECTED
    - One asyncio.Lock per connection serializing all I/O (polling included)
    - Response timeouts and mapping of transport errors to the error taxonomy
    - Faulting the connection on transport failures
    - Diagnostics for every read and write attempt
    - Request-shape filtering of read responses and batch-mode handling of writes

Error mapping for hook exceptions:
    asyncio.TimeoutError          -> ProtocolTimeoutError   (faults connection)
    OSError / EOFError            -> TransportError         (faults connection)
    NotImplementedError           -> UnsupportedError
    any other Exception           -> ProtocolViolationError (stays CONNECTED)

Events a hook gathers (pushed data, write feedback) are published only after
the hook returned and the I/O lock was released, never under the response
timeout. A failed hook's events are discarded.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Deque, Dict, Optional, Sequence

from scada_protocols.config import DRIVER_CONFIG, EVENT_BUS_CONFIG, POLLING_CONFIG
from scada_protocols.core.contracts import (
    BatchMode, DataEvent, PollingConfig, ReadRequest, ReadResponse,
    WriteOutcome, WriteResult,
)
from scada_protocols.core.data import (
    AdjustmentCommand, ControlCommand, InputPoint, PointId, SignalPoint, TelemetryPoint,
)
from scada_protocols.core.diagnostics import Diagnostics, DiagnosticsAggregator
from scada_protocols.core.errors import (
    AlreadyConnectingError, NotConnectedError, ProtocolError, ProtocolTimeoutError,
    ProtocolViolationError, TransportError, UnsupportedError,
)
from scada_protocols.core.interfaces import (
    CommunicationMode, EventDrivenProtocol, EventHandlerLike, ProtocolClient,
    ResponseCallback,
)
from scada_protocols.core.state import ConnectionState, ConnectionStateMachine
from scada_protocols.engine.events import EventBus, OverflowPolicy, Subscription
from scada_protocols.engine.polling import PollingEngine, PollingStopped, stop_requested

logger = logging.getLogger(__name__)


@dataclass
class DriverConfig:
    """
    Per-driver settings.

    Attributes:
        name: Instance label for logs and diagnostics (defaults to driver name)
        connect_timeout_s: Limit for _open()
        response_timeout_s: Limit for each read/write hook call
        disconnect_timeout_s: Limit for _close()
        stop_grace_period_s: How long stop_polling() waits for an in-flight read
        event_queue_size: Default subscriber queue bound (event-driven drivers)
        extra: Protocol-specific settings, copied into diagnostics
    """
    name: Optional[str] = None
    connect_timeout_s: float = DRIVER_CONFIG["connect_timeout_s"]
    response_timeout_s: float = DRIVER_CONFIG["response_timeout_s"]
    disconnect_timeout_s: float = DRIVER_CONFIG["disconnect_timeout_s"]
    stop_grace_period_s: float = POLLING_CONFIG["stop_grace_period_s"]
    event_queue_size: int = EVENT_BUS_CONFIG["subscriber_queue_size"]
    extra: Dict = field(default_factory=dict)


class BaseProtocolClient(ProtocolClient):
    """
    ProtocolClient with all contract enforcement in place.

    Subclasses set ``name``, ``supported_modes`` and ``batch_mode`` and
    implement the underscore hooks.
    """

    name = "base"
    supported_modes = (CommunicationMode.POLLING,)
    batch_mode = BatchMode.PER_ITEM

    def __init__(self, config: Optional[DriverConfig] = None):
        self.config = config or DriverConfig()
        self.label = self.config.name or self.name

        self._state = ConnectionStateMachine(self.label)
        self._io_lock = asyncio.Lock()
        self._diagnostics = DiagnosticsAggregator(self.name)
        for key, value in self.config.extra.items():
            self._diagnostics.set_extra(key, value)
        self._poller: Optional[PollingEngine] = None

    def __repr__(self):
        return f"<{type(self).__name__} {self.label} {self.connection_state().name}>"

    # ==================== WIRE HOOKS ====================

    async def _open(self):
        raise NotImplementedError

    async def _close(self):
        raise NotImplementedError

    async def _read_points(self, request: ReadRequest) -> ReadResponse:
        raise NotImplementedError

    async def _write_controls(self, commands: Sequence[ControlCommand]) -> Sequence[WriteOutcome]:
        raise UnsupportedError(f"{self.name} does not support control commands")

    async def _write_adjustments(self, commands: Sequence[AdjustmentCommand]) -> Sequence[WriteOutcome]:
        raise UnsupportedError(f"{self.name} does not support adjustment commands")

    # ==================== PROTOCOL ====================

    def connection_state(self) -> ConnectionState:
        return self._state.state

    def diagnostics(self) -> Diagnostics:
        return self._diagnostics.snapshot(self.connection_state())

    @property
    def polling_engine(self) -> Optional[PollingEngine]:
        return self._poller

    async def connect(self):
        """
        Open the connection.

        No-op when already CONNECTED. Allowed from DISCONNECTED and FAULTED.

        Raises:
            AlreadyConnectingError: If a connect is in progress
            TransportError / ProtocolTimeoutError: If the transport fails (state FAULTED)
        """
        if self._check_connect_state():
            return

        async with self._io_lock:
            if self._check_connect_state():
                return

            self._state.transition(ConnectionState.CONNECTING)
            try:
                await self._call_hook(self._open(), self.config.connect_timeout_s, "connect")
            except ProtocolError as e:
                self._state.fault(str(e))
                self._diagnostics.record_error(e)
                await self._release("connect failure")
                self._on_error(e)
                self._discard_events()
                raise
            except asyncio.CancelledError:
                self._state.fault("connect cancelled")
                self._discard_events()
                await asyncio.shield(self._release("connect cancelled"))
                raise

            self._state.transition(ConnectionState.CONNECTED)
            logger.info(f"{self.label}: connected")

        await self._flush_events()

    def _check_connect_state(self) -> bool:
        """True if already connected."""
        state = self.connection_state()
        if state is ConnectionState.CONNECTED:
            return True
        if state is ConnectionState.CONNECTING:
            raise AlreadyConnectingError(f"{self.label}: connect already in progress")
        return False

    async def disconnect(self):
        """
        Close the connection.

        No-op when DISCONNECTED. From FAULTED the transport is released and the
        state stays FAULTED (only a new connect leaves FAULTED).

        Raises:
            AlreadyConnectingError: If a connect is in progress
        """
        if self._check_disconnect_state():
            return

        async with self._io_lock:
            if self._check_disconnect_state():
                return

            if self.connection_state() is ConnectionState.FAULTED:
                await self._release("disconnect")
                return

            self._state.transition(ConnectionState.DISCONNECTING)
            try:
                await self._call_hook(self._close(), self.config.disconnect_timeout_s, "disconnect")
            except ProtocolError as e:
                logger.warning(f"{self.label}: error while closing: {e}")
                self._diagnostics.record_error(e)
            finally:
                self._state.transition(ConnectionState.DISCONNECTED)
            logger.info(f"{self.label}: disconnected")

    def _check_disconnect_state(self) -> bool:
        """True if there is nothing to disconnect."""
        state = self.connection_state()
        if state is ConnectionState.DISCONNECTED:
            return True
        if state is ConnectionState.CONNECTING:
            raise AlreadyConnectingError(f"{self.label}: cannot disconnect while connecting")
        return False

    async def _release(self, reason: str):
        """Best-effort transport release after a fault."""
        try:
            await self._call_hook(self._close(), self.config.disconnect_timeout_s, reason)
        except ProtocolError as e:
            logger.warning(f"{self.label}: releasing transport after {reason} failed: {e}")
            self._diagnostics.record_error(e)

    async def read(self, request: ReadRequest) -> ReadResponse:
        """
        Read input points.

        Raises:
            NotConnectedError: If not CONNECTED (no I/O attempted)
            ProtocolTimeoutError / TransportError: Transport failure (state FAULTED)
            ProtocolViolationError: Malformed device data (state unchanged)
            PollingStopped: Polling stopped while this read waited for the connection
        """
        self._require_connected("read")

        async with self._io_lock:
            self._require_connected("read")
            if stop_requested():
                raise PollingStopped(f"{self.label}: polling stopped before read")
            started = time.perf_counter()
            try:
                raw = await self._call_hook(
                    self._read_points(request), self.config.response_timeout_s, "read"
                )
            except ProtocolError as e:
                self._diagnostics.record_read(time.perf_counter() - started, e)
                self._handle_failure(e)
                raise

            response = ReadResponse.build(
                request, raw.telemetry, raw.signals,
                fetched_at=raw.fetched_at, failed_count=raw.failed_count,
            )
            self._diagnostics.record_read(time.perf_counter() - started)
            logger.debug(f"{self.label}: read {len(response.telemetry)} telemetry, "
                         f"{len(response.signals)} signals")
            return response

    async def write_control(self, commands: Sequence[ControlCommand]) -> WriteResult:
        """Send digital output commands. See _write for semantics."""
        return await self._write(list(commands), self._write_controls, "write_control")

    async def write_adjustment(self, commands: Sequence[AdjustmentCommand]) -> WriteResult:
        """Send analog setpoints. See _write for semantics."""
        return await self._write(list(commands), self._write_adjustments, "write_adjustment")

    async def _write(self, commands, hook, operation: str) -> WriteResult:
        """
        Run a write hook with batch semantics.

        - Empty batch: empty successful result, no I/O
        - One outcome per command, in submission order
        - ATOMIC drivers: one rejection rejects the whole batch
        - Rejections are returned, never raised

        Raises:
            NotConnectedError: If not CONNECTED (no I/O attempted)
            ProtocolTimeoutError / TransportError: Transport failure (state FAULTED)
            ProtocolViolationError: Device answer could not be matched to the batch
        """
        self._require_connected(operation)
        if not commands:
            return WriteResult((), self.batch_mode)

        async with self._io_lock:
            self._require_connected(operation)
            started = time.perf_counter()
            try:
                outcomes = await self._call_hook(
                    hook(commands), self.config.response_timeout_s, operation
                )
                outcomes = self._check_outcomes(commands, outcomes)
            except ProtocolError as e:
                self._diagnostics.record_write(time.perf_counter() - started, error=e)
                self._handle_failure(e)
                self._discard_events()
                raise

            result = WriteResult(outcomes, self.batch_mode)
            self._diagnostics.record_write(time.perf_counter() - started,
                                           rejected=len(result.rejected))
            if result.ok:
                logger.info(f"{self.label}: {operation} accepted {len(result)} command(s)")
            else:
                logger.warning(f"{self.label}: {operation} rejected "
                               f"{len(result.rejected)}/{len(result)} command(s)")

        await self._flush_events()
        return result

    def _check_outcomes(self, commands, outcomes) -> tuple:
        outcomes = tuple(outcomes)
        if len(outcomes) != len(commands):
            raise ProtocolViolationError(
                f"{self.label}: {len(outcomes)} outcomes for {len(commands)} commands"
            )
        for command, outcome in zip(commands, outcomes):
            if outcome.id != command.id:
                raise ProtocolViolationError(
                    f"{self.label}: outcome for {outcome.id!r} where {command.id!r} was sent"
                )

        if self.batch_mode is BatchMode.ATOMIC:
            first = next((o for o in outcomes if not o.accepted), None)
            if first is not None:
                reason = f"batch rejected: {first.id}: {first.reason}"
                outcomes = tuple(
                    o if not o.accepted else WriteOutcome.rejected(o.id, reason)
                    for o in outcomes
                )
        return outcomes

    # ==================== POLLING ====================

    async def start_polling(self, config: PollingConfig,
                            on_response: Optional[ResponseCallback] = None):
        """
        Start the driver's polling engine.

        Raises:
            UnsupportedError: If the driver does not support polling
            AlreadyPollingError: If polling is already running
        """
        if not self.supports_polling:
            raise UnsupportedError(f"{self.name} does not support polling")
        if self._poller is None:
            self._poller = PollingEngine(
                self.read,
                name=self.label,
                diagnostics=self._diagnostics,
                grace_period_s=self.config.stop_grace_period_s,
            )
        self._poller.start(config, on_response)

    async def stop_polling(self):
        """Stop the polling engine. Idempotent."""
        if self._poller is not None:
            await self._poller.stop()

    # ==================== INTERNALS ====================

    def _require_connected(self, operation: str):
        state = self.connection_state()
        if state is not ConnectionState.CONNECTED:
            raise NotConnectedError(f"{self.label}: {operation} while {state.name}")

    async def _call_hook(self, coro: Awaitable, timeout_s: float, operation: str):
        """Await a hook with a timeout, translating every failure to ProtocolError."""
        try:
            return await asyncio.wait_for(coro, timeout=timeout_s)
        except ProtocolError:
            raise
        except asyncio.TimeoutError as e:
            raise ProtocolTimeoutError(
                f"{self.label}: {operation} timed out after {timeout_s}s", timeout_s=timeout_s
            ) from e
        except (OSError, EOFError) as e:
            # EOFError covers asyncio.IncompleteReadError (peer closed mid-frame)
            raise TransportError(f"{self.label}: {operation} failed: {e!r}") from e
        except NotImplementedError as e:
            raise UnsupportedError(f"{self.label}: {operation} not implemented") from e
        except Exception as e:
            raise ProtocolViolationError(f"{self.label}: {operation} got bad data: {e!r}") from e

    def _handle_failure(self, error: ProtocolError):
        if isinstance(error, TransportError):
            self._state.fault(str(error))
        self._on_error(error)

    def _on_error(self, error: ProtocolError):
        """Hook for subclasses that report errors to consumers."""

    async def _flush_events(self):
        """Publish events gathered by the last hook call (event-driven drivers)."""

    def _discard_events(self):
        """Drop events gathered by a hook call that failed."""


class EventDrivenClient(BaseProtocolClient, EventDrivenProtocol):
    """
    BaseProtocolClient that also pushes spontaneous changes through an EventBus.

    Subclasses call ``_publish_point()`` for every value the device pushes,
    or ``_record_point()`` from inside a wire hook.
    The driver keeps the last value of each point (process image) and
    classifies events against it: ADDED, CHANGED or QUALITY_CHANGED.
    Unchanged repeats are not published.
    """

    name = "event_driven"
    supported_modes = (CommunicationMode.EVENT_DRIVEN,)

    def __init__(self, config: Optional[DriverConfig] = None):
        super().__init__(config)
        self._bus = EventBus(self.label, queue_size=self.config.event_queue_size)
        self._process_image: Dict[PointId, InputPoint] = {}
        self._outbox: Deque[DataEvent] = deque()
        self._state.add_listener(self._on_transition)

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    def subscribe(self, maxsize: Optional[int] = None,
                  overflow: Optional[OverflowPolicy] = None) -> Subscription:
        return self._bus.subscribe(maxsize, overflow)

    def set_event_handler(self, handler: Optional[EventHandlerLike]):
        self._bus.set_event_handler(handler)

    def diagnostics(self) -> Diagnostics:
        self._diagnostics.set_extra("events_published", self._bus.published_total)
        self._diagnostics.set_extra("subscribers", self._bus.subscriber_count)
        return super().diagnostics()

    async def _read_points(self, request: ReadRequest) -> ReadResponse:
        """Answer reads from the process image built by pushed data."""
        telemetry = [p for p in self._process_image.values() if isinstance(p, TelemetryPoint)]
        signals = [p for p in self._process_image.values() if isinstance(p, SignalPoint)]
        return ReadResponse.build(request, telemetry, signals)

    def _record_point(self, point: InputPoint) -> Optional[DataEvent]:
        """
        Update the process image and queue the resulting event.

        Safe to call from inside a wire hook: nothing is published until
        _flush_events() runs.

        Returns:
            The queued event, or None if nothing changed
        """
        event = DataEvent.classify(self._process_image.get(point.id), point)
        self._process_image[point.id] = point
        if event is not None:
            self._outbox.append(event)
        return event

    async def _publish_point(self, point: InputPoint) -> Optional[DataEvent]:
        """
        Record a pushed value and publish everything queued so far.

        Returns:
            The event for this value, or None if nothing changed
        """
        event = self._record_point(point)
        await self._flush_events()
        return event

    async def _flush_events(self):
        # Shared FIFO: events leave in the order they were recorded
        while self._outbox:
            await self._bus.publish(self._outbox.popleft())

    def _discard_events(self):
        if self._outbox:
            logger.debug(f"{self.label}: discarding {len(self._outbox)} event(s) from failed call")
            self._outbox.clear()

    def _on_transition(self, old_state: ConnectionState, new_state: ConnectionState):
        self._bus.notify_connection_changed(new_state)

    def _on_error(self, error: ProtocolError):
        self._bus.notify_error(error)
