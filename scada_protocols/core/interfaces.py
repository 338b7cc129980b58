"""
Protocol Capability Interfaces
==============================

Three layered capabilities a driver can offer:

    Protocol             connection_state(), read(), diagnostics()
    ProtocolClient       + connect/disconnect, write_control/write_adjustment,
                           start_polling/stop_polling
    EventDrivenProtocol  + subscribe(), set_event_handler()

Application code depends only on these interfaces and never on a concrete
driver class. A driver declares how it talks to its device through
``supported_modes``; polling and event delivery are not mutually exclusive
(HYBRID drivers offer both).
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple, Union

from scada_protocols.core.contracts import (
    BatchMode, DataEvent, PollingConfig, ReadRequest, ReadResponse, WriteResult,
)
from scada_protocols.core.data import AdjustmentCommand, ControlCommand
from scada_protocols.core.diagnostics import Diagnostics
from scada_protocols.core.errors import ProtocolError, UnsupportedError
from scada_protocols.core.state import ConnectionState

logger = logging.getLogger(__name__)


class CommunicationMode(str, Enum):
    """How a driver acquires data from its device."""
    POLLING = "polling"            # Actively request data at intervals (Modbus)
    EVENT_DRIVEN = "event_driven"  # Device pushes changes (IEC 104 spontaneous)
    HYBRID = "hybrid"              # Both (DNP3, OPC UA)

    @property
    def supports_polling(self) -> bool:
        return self in (CommunicationMode.POLLING, CommunicationMode.HYBRID)

    @property
    def supports_events(self) -> bool:
        return self in (CommunicationMode.EVENT_DRIVEN, CommunicationMode.HYBRID)


class Protocol(ABC):
    """Read-only view of a device connection."""

    name: str = "protocol"
    version: str = "1.0"
    supported_modes: Tuple[CommunicationMode, ...] = (CommunicationMode.POLLING,)

    @property
    def supports_polling(self) -> bool:
        return any(mode.supports_polling for mode in self.supported_modes)

    @property
    def supports_events(self) -> bool:
        return any(mode.supports_events for mode in self.supported_modes)

    @abstractmethod
    def connection_state(self) -> ConnectionState:
        ...

    @abstractmethod
    async def read(self, request: ReadRequest) -> ReadResponse:
        ...

    @abstractmethod
    def diagnostics(self) -> Diagnostics:
        ...


ResponseCallback = Callable[[ReadResponse], object]


class ProtocolClient(Protocol):
    """Active connection with write and polling support."""

    batch_mode: BatchMode = BatchMode.PER_ITEM

    @abstractmethod
    async def connect(self):
        ...

    @abstractmethod
    async def disconnect(self):
        ...

    @abstractmethod
    async def write_control(self, commands: Sequence[ControlCommand]) -> WriteResult:
        ...

    @abstractmethod
    async def write_adjustment(self, commands: Sequence[AdjustmentCommand]) -> WriteResult:
        ...

    @abstractmethod
    async def start_polling(self, config: PollingConfig,
                            on_response: Optional[ResponseCallback] = None):
        ...

    @abstractmethod
    async def stop_polling(self):
        ...

    async def poll_once(self) -> ReadResponse:
        """Run one acquisition cycle outside the polling engine."""
        return await self.read(ReadRequest.everything())

    async def try_reconnect(self):
        """Disconnect (best effort) and connect again."""
        try:
            await self.disconnect()
        except ProtocolError as e:
            logger.debug(f"{self.name}: disconnect before reconnect failed: {e}")
        await self.connect()


class DataEventHandler(ABC):
    """
    Privileged synchronous consumer of a driver's events.

    Called inline on the driver's delivery path, so every method must return
    quickly. Slow handlers are logged but not interrupted.
    """

    @abstractmethod
    def on_data_event(self, event: DataEvent):
        ...

    def on_connection_changed(self, state: ConnectionState):
        pass

    def on_error(self, error: ProtocolError):
        pass


class FunctionEventHandler(DataEventHandler):
    """Adapts a plain function to DataEventHandler (data events only)."""

    def __init__(self, func: Callable[[DataEvent], object]):
        self.func = func

    def on_data_event(self, event: DataEvent):
        self.func(event)

    def __repr__(self):
        return f"FunctionEventHandler({getattr(self.func, '__name__', self.func)!r})"


EventHandlerLike = Union[DataEventHandler, Callable[[DataEvent], object]]


def as_event_handler(handler: Optional[EventHandlerLike]) -> Optional[DataEventHandler]:
    """Normalize a handler object or function. None clears the handler."""
    if handler is None or isinstance(handler, DataEventHandler):
        return handler
    if callable(handler):
        return FunctionEventHandler(handler)
    raise TypeError(f"Event handler must be a DataEventHandler or callable, got {type(handler).__name__}")


class EventDrivenProtocol(Protocol):
    """Device connection that pushes spontaneous data changes."""

    supported_modes = (CommunicationMode.EVENT_DRIVEN,)

    @abstractmethod
    def subscribe(self, maxsize: Optional[int] = None, overflow=None):
        """
        Open an independent event stream.

        Returns:
            Subscription receiving every event published from now on
        """

    @abstractmethod
    def set_event_handler(self, handler: Optional[EventHandlerLike]):
        ...


def require_event_driven(driver: Protocol) -> EventDrivenProtocol:
    """
    Return the driver as an EventDrivenProtocol.

    Raises:
        UnsupportedError: If the driver has no event capability
    """
    if isinstance(driver, EventDrivenProtocol) and driver.supports_events:
        return driver
    raise UnsupportedError(f"{driver.name} does not support event-driven communication")
