"""
SCADA Protocol Abstraction Layer
================================

One data model and one set of lifecycle contracts for talking to field
devices, whatever the wire protocol (Modbus, IEC 60870-5-104, DNP3, OPC UA).

Data model (four remotes):
    T  TelemetryPoint      analog input
    S  SignalPoint         digital input
    C  ControlCommand      digital output
    A  AdjustmentCommand   analog output

Execution models:
    - Direct calls: connect(), read(), write_control(), write_adjustment()
    - Polling: start_polling(PollingConfig) runs periodic reads
    - Event-driven: subscribe() / set_event_handler() receive pushed changes

Usage:
    from scada_protocols import ReadRequest, PollingConfig, VirtualChannel

    driver = VirtualChannel()
    await driver.connect()
    await driver.start_polling(PollingConfig(interval_s=1.0), on_response=print)
"""

from scada_protocols.core import (
    ErrorKind, ProtocolError, NotConnectedError, AlreadyConnectingError, AlreadyPollingError,
    TransportError, ProtocolTimeoutError, ProtocolViolationError, PartialWriteError,
    UnsupportedError, IllegalTransitionError,
    Quality, QualityTracker, PointId, DataType, TelemetryPoint, SignalPoint, InputPoint,
    ControlCommand, AdjustmentCommand, ConnectionState, ConnectionStateMachine,
    Selection, ReadRequest, ReadResponse, BatchMode, WriteOutcome, WriteResult,
    FailureAction, FailurePolicy, PollingConfig, DataEventKind, DataEvent,
    Diagnostics, DiagnosticsAggregator, ErrorRecord,
    CommunicationMode, Protocol, ProtocolClient, EventDrivenProtocol,
    DataEventHandler, FunctionEventHandler, require_event_driven,
)
from scada_protocols.core import __all__ as _core_all
from scada_protocols.engine import EventBus, Subscription, OverflowPolicy, PollingEngine, PollingStats
from scada_protocols.drivers import BaseProtocolClient, EventDrivenClient, DriverConfig, VirtualChannel
from scada_protocols.log import setup_logging

__version__ = "0.1.0"

__all__ = _core_all + [
    'EventBus',
    'Subscription',
    'OverflowPolicy',
    'PollingEngine',
    'PollingStats',
    'BaseProtocolClient',
    'EventDrivenClient',
    'DriverConfig',
    'VirtualChannel',
    'setup_logging',
]
