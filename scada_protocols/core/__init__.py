"""
Protocol Layer Core
===================

Protocol-independent building blocks shared by every driver:
    - Four-remote data model (telemetry, signal, control, adjustment)
    - Data quality flags and missed-poll degradation
    - Connection state machine
    - Read/write/poll request and response contracts
    - Capability interfaces (Protocol, ProtocolClient, EventDrivenProtocol)
    - Diagnostics aggregation
    - Error taxonomy
"""

from scada_protocols.core.errors import (
    ErrorKind,
    ProtocolError,
    NotConnectedError,
    AlreadyConnectingError,
    AlreadyPollingError,
    TransportError,
    ProtocolTimeoutError,
    ProtocolViolationError,
    PartialWriteError,
    UnsupportedError,
    IllegalTransitionError,
)
from scada_protocols.core.quality import Quality, QualityTracker
from scada_protocols.core.data import (
    PointId,
    DataType,
    TelemetryPoint,
    SignalPoint,
    InputPoint,
    ControlCommand,
    AdjustmentCommand,
)
from scada_protocols.core.state import ConnectionState, ConnectionStateMachine
from scada_protocols.core.contracts import (
    Selection,
    ReadRequest,
    ReadResponse,
    BatchMode,
    WriteOutcome,
    WriteResult,
    FailureAction,
    FailurePolicy,
    PollingConfig,
    DataEventKind,
    DataEvent,
)
from scada_protocols.core.diagnostics import Diagnostics, DiagnosticsAggregator, ErrorRecord
from scada_protocols.core.interfaces import (
    CommunicationMode,
    Protocol,
    ProtocolClient,
    EventDrivenProtocol,
    DataEventHandler,
    FunctionEventHandler,
    require_event_driven,
)

__all__ = [
    'ErrorKind',
    'ProtocolError',
    'NotConnectedError',
    'AlreadyConnectingError',
    'AlreadyPollingError',
    'TransportError',
    'ProtocolTimeoutError',
    'ProtocolViolationError',
    'PartialWriteError',
    'UnsupportedError',
    'IllegalTransitionError',
    'Quality',
    'QualityTracker',
    'PointId',
    'DataType',
    'TelemetryPoint',
    'SignalPoint',
    'InputPoint',
    'ControlCommand',
    'AdjustmentCommand',
    'ConnectionState',
    'ConnectionStateMachine',
    'Selection',
    'ReadRequest',
    'ReadResponse',
    'BatchMode',
    'WriteOutcome',
    'WriteResult',
    'FailureAction',
    'FailurePolicy',
    'PollingConfig',
    'DataEventKind',
    'DataEvent',
    'Diagnostics',
    'DiagnosticsAggregator',
    'ErrorRecord',
    'CommunicationMode',
    'Protocol',
    'ProtocolClient',
    'EventDrivenProtocol',
    'DataEventHandler',
    'FunctionEventHandler',
    'require_event_driven',
]
