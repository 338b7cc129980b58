"""
Diagnostics Aggregator
======================

Per-driver health counters. The driver records every read and write attempt;
any thread may take a snapshot at any time.

Counters are never reset during a driver's lifetime. Latency statistics come
from a rolling window of the most recent operations.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import numpy as np

from scada_protocols.config import DIAGNOSTICS_CONFIG
from scada_protocols.core.data import utc_now
from scada_protocols.core.errors import ErrorKind, ProtocolError
from scada_protocols.core.state import ConnectionState


@dataclass(frozen=True)
class ErrorRecord:
    """Most recent failure seen by a driver."""
    kind: ErrorKind
    detail: str
    at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_exception(cls, error: ProtocolError) -> "ErrorRecord":
        return cls(kind=error.kind, detail=str(error))


@dataclass(frozen=True)
class Diagnostics:
    """Point-in-time view of a driver's health."""
    protocol: str
    connection_state: ConnectionState
    reads_total: int = 0
    read_failures: int = 0
    writes_total: int = 0
    write_failures: int = 0
    rejected_commands: int = 0
    avg_latency_s: float = 0.0
    p95_latency_s: float = 0.0
    max_latency_s: float = 0.0
    last_error: Optional[ErrorRecord] = None
    warnings_total: int = 0
    last_warning: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def read_success_rate(self) -> float:
        if self.reads_total == 0:
            return 1.0
        return 1.0 - self.read_failures / self.reads_total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocol": self.protocol,
            "connection_state": self.connection_state.value,
            "reads_total": self.reads_total,
            "read_failures": self.read_failures,
            "writes_total": self.writes_total,
            "write_failures": self.write_failures,
            "rejected_commands": self.rejected_commands,
            "avg_latency_s": self.avg_latency_s,
            "p95_latency_s": self.p95_latency_s,
            "max_latency_s": self.max_latency_s,
            "last_error": ({
                "kind": self.last_error.kind.value,
                "detail": self.last_error.detail,
                "at": self.last_error.at.isoformat(),
            } if self.last_error else None),
            "warnings_total": self.warnings_total,
            "last_warning": self.last_warning,
            "extra": dict(self.extra),
        }


class DiagnosticsAggregator:
    """
    Thread-safe counters updated by one driver.

    Args:
        protocol: Protocol name reported in snapshots
        window: Number of latency samples kept for statistics
    """

    def __init__(self, protocol: str, window: int = DIAGNOSTICS_CONFIG["latency_window"]):
        self.protocol = protocol
        self._lock = threading.Lock()
        self._latencies = deque(maxlen=window)

        self.reads_total = 0
        self.read_failures = 0
        self.writes_total = 0
        self.write_failures = 0
        self.rejected_commands = 0
        self.warnings_total = 0
        self.last_error: Optional[ErrorRecord] = None
        self.last_warning: Optional[str] = None
        self.extra: Dict[str, Any] = {}

    def record_read(self, latency_s: float, error: Optional[ProtocolError] = None):
        """Record one read attempt (failed if error is given)."""
        with self._lock:
            self.reads_total += 1
            self._latencies.append(latency_s)
            if error is not None:
                self.read_failures += 1
                self.last_error = ErrorRecord.from_exception(error)

    def record_write(self, latency_s: float, rejected: int = 0,
                     error: Optional[ProtocolError] = None):
        """
        Record one write call.

        A call that raised counts as a write failure. A call that returned
        with rejected commands only adds to rejected_commands.
        """
        with self._lock:
            self.writes_total += 1
            self._latencies.append(latency_s)
            self.rejected_commands += rejected
            if error is not None:
                self.write_failures += 1
                self.last_error = ErrorRecord.from_exception(error)

    def record_error(self, error: ProtocolError):
        """Record a failure outside read/write (connect, push decoding)."""
        with self._lock:
            self.last_error = ErrorRecord.from_exception(error)

    def record_warning(self, message: str):
        with self._lock:
            self.warnings_total += 1
            self.last_warning = message

    def set_extra(self, key: str, value: Any):
        with self._lock:
            self.extra[key] = value

    def snapshot(self, connection_state: ConnectionState) -> Diagnostics:
        """
        Build an immutable snapshot.

        Args:
            connection_state: Current state of the owning driver

        Returns:
            Diagnostics with latency statistics over the rolling window
        """
        with self._lock:
            samples = np.fromiter(self._latencies, dtype=float, count=len(self._latencies))
            if samples.size:
                avg = float(np.mean(samples))
                p95 = float(np.percentile(samples, DIAGNOSTICS_CONFIG["latency_percentile"]))
                peak = float(np.max(samples))
            else:
                avg = p95 = peak = 0.0

            return Diagnostics(
                protocol=self.protocol,
                connection_state=connection_state,
                reads_total=self.reads_total,
                read_failures=self.read_failures,
                writes_total=self.writes_total,
                write_failures=self.write_failures,
                rejected_commands=self.rejected_commands,
                avg_latency_s=avg,
                p95_latency_s=p95,
                max_latency_s=peak,
                last_error=self.last_error,
                warnings_total=self.warnings_total,
                last_warning=self.last_warning,
                extra=dict(self.extra),
            )
