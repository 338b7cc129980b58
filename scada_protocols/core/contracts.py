"""
Request/Response Contracts
==========================

The vocabulary every driver speaks, whatever its wire protocol:

    ReadRequest   -> ReadResponse    input data (T/S)
    ControlCommand[]    -> WriteResult   digital outputs (C)
    AdjustmentCommand[] -> WriteResult   analog outputs (A)
    PollingConfig                      periodic read schedule
    DataEvent                          spontaneous change pushed by a device

Shape guarantees:
    - A ReadResponse only contains the remote types its request selected.
    - A WriteResult has exactly one outcome per submitted command, in input order.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Iterator, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from scada_protocols.config import POLLING_CONFIG
from scada_protocols.core.data import (
    InputPoint, PointId, SignalPoint, TelemetryPoint, utc_now,
)
from scada_protocols.core.errors import PartialWriteError


# ==================== READ ====================

class Selection(str, Enum):
    """Which input points a read covers."""
    TELEMETRY = "telemetry"     # All telemetry points
    SIGNALS = "signals"         # All signal points
    POINTS = "points"           # Specific point-id set (any type)
    EVERYTHING = "everything"   # All telemetry and signal points


class ReadRequest(BaseModel):
    """Selection descriptor for a read. Build with the classmethods."""
    model_config = ConfigDict(frozen=True)

    selection: Selection = Selection.EVERYTHING
    point_ids: Optional[FrozenSet[PointId]] = None

    @model_validator(mode="after")
    def _check_ids(self):
        if self.selection is Selection.POINTS:
            if not self.point_ids:
                raise ValueError("a point selection needs at least one point id")
        elif self.point_ids is not None:
            raise ValueError(f"{self.selection.value} selection takes no point ids")
        return self

    @classmethod
    def telemetry(cls) -> "ReadRequest":
        return cls(selection=Selection.TELEMETRY)

    @classmethod
    def signals(cls) -> "ReadRequest":
        return cls(selection=Selection.SIGNALS)

    @classmethod
    def points(cls, ids: Iterable[PointId]) -> "ReadRequest":
        return cls(selection=Selection.POINTS, point_ids=frozenset(ids))

    @classmethod
    def everything(cls) -> "ReadRequest":
        return cls(selection=Selection.EVERYTHING)

    @property
    def wants_telemetry(self) -> bool:
        return self.selection in (Selection.TELEMETRY, Selection.POINTS, Selection.EVERYTHING)

    @property
    def wants_signals(self) -> bool:
        return self.selection in (Selection.SIGNALS, Selection.POINTS, Selection.EVERYTHING)

    def matches(self, point: InputPoint) -> bool:
        """True if the point falls inside this selection."""
        if self.selection is Selection.POINTS:
            return point.id in self.point_ids
        if isinstance(point, TelemetryPoint):
            return self.wants_telemetry
        return self.wants_signals


@dataclass(frozen=True)
class ReadResponse:
    """Immutable snapshot returned by one read."""
    telemetry: Tuple[TelemetryPoint, ...] = ()
    signals: Tuple[SignalPoint, ...] = ()
    fetched_at: datetime = field(default_factory=utc_now)
    failed_count: int = 0  # Selected points the driver could not read

    @classmethod
    def build(cls,
              request: ReadRequest,
              telemetry: Iterable[TelemetryPoint] = (),
              signals: Iterable[SignalPoint] = (),
              fetched_at: Optional[datetime] = None,
              failed_count: int = 0) -> "ReadResponse":
        """
        Build a response, dropping anything the request did not select.

        Args:
            request: The request being answered
            telemetry: Telemetry points produced by the driver
            signals: Signal points produced by the driver
            fetched_at: Acquisition time (defaults to now)
            failed_count: Selected points that could not be read

        Returns:
            ReadResponse containing only requested remote types
        """
        return cls(
            telemetry=tuple(p for p in telemetry if request.matches(p)),
            signals=tuple(p for p in signals if request.matches(p)),
            fetched_at=fetched_at or utc_now(),
            failed_count=failed_count,
        )

    def __len__(self) -> int:
        return len(self.telemetry) + len(self.signals)

    def points(self) -> Iterator[InputPoint]:
        yield from self.telemetry
        yield from self.signals

    def by_id(self) -> Dict[PointId, InputPoint]:
        return {p.id: p for p in self.points()}

    @property
    def is_complete(self) -> bool:
        return self.failed_count == 0


# ==================== WRITE ====================

class BatchMode(str, Enum):
    """How a driver applies a batch of commands. Declared per driver."""
    ATOMIC = "atomic"       # All-or-nothing, submission order preserved on the wire
    PER_ITEM = "per_item"   # Each command accepted or rejected independently


@dataclass(frozen=True)
class WriteOutcome:
    """Outcome of one submitted command."""
    id: PointId
    accepted: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls, id: PointId) -> "WriteOutcome":
        return cls(id=id, accepted=True)

    @classmethod
    def rejected(cls, id: PointId, reason: str) -> "WriteOutcome":
        return cls(id=id, accepted=False, reason=reason)


@dataclass(frozen=True)
class WriteResult:
    """Per-command outcomes of one write call, in submission order."""
    outcomes: Tuple[WriteOutcome, ...] = ()
    batch_mode: BatchMode = BatchMode.PER_ITEM

    def __len__(self) -> int:
        return len(self.outcomes)

    def __iter__(self) -> Iterator[WriteOutcome]:
        return iter(self.outcomes)

    def __getitem__(self, index: int) -> WriteOutcome:
        return self.outcomes[index]

    @property
    def ok(self) -> bool:
        """True when every command was accepted (including an empty batch)."""
        return all(o.accepted for o in self.outcomes)

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.accepted)

    @property
    def rejected(self) -> Tuple[WriteOutcome, ...]:
        return tuple(o for o in self.outcomes if not o.accepted)

    def raise_for_rejections(self):
        """Raise PartialWriteError if any command was rejected."""
        rejected = self.rejected
        if rejected:
            ids = ", ".join(str(o.id) for o in rejected)
            raise PartialWriteError(
                f"{len(rejected)} of {len(self.outcomes)} commands rejected: {ids}",
                rejected=rejected,
            )


# ==================== POLLING ====================

class FailureAction(str, Enum):
    SKIP = "skip"     # Skip this tick, keep polling
    RETRY = "retry"   # Retry N times within the tick, then skip
    STOP = "stop"     # Stop polling


class FailurePolicy(BaseModel):
    """What the polling engine does when a read fails."""
    model_config = ConfigDict(frozen=True)

    action: FailureAction = FailureAction.SKIP
    max_retries: int = Field(default=0, ge=0)
    retry_delay_s: float = Field(default=POLLING_CONFIG["default_retry_delay_s"], ge=0.0)

    @classmethod
    def skip(cls) -> "FailurePolicy":
        return cls(action=FailureAction.SKIP)

    @classmethod
    def retry(cls, max_retries: int = POLLING_CONFIG["default_max_retries"],
              retry_delay_s: float = POLLING_CONFIG["default_retry_delay_s"]) -> "FailurePolicy":
        return cls(action=FailureAction.RETRY, max_retries=max_retries,
                   retry_delay_s=retry_delay_s)

    @classmethod
    def stop(cls) -> "FailurePolicy":
        return cls(action=FailureAction.STOP)

    @property
    def attempts(self) -> int:
        """Total read attempts per tick."""
        if self.action is FailureAction.RETRY:
            return 1 + self.max_retries
        return 1


class PollingConfig(BaseModel):
    """Periodic read schedule. Immutable; change it with stop + restart."""
    model_config = ConfigDict(frozen=True)

    interval_s: float = Field(default=POLLING_CONFIG["default_interval_s"], gt=0.0)
    request: ReadRequest = Field(default_factory=ReadRequest.everything)
    jitter_s: Optional[float] = Field(default=None, ge=0.0)
    on_failure: FailurePolicy = Field(default_factory=FailurePolicy.skip)

    @model_validator(mode="after")
    def _check_jitter(self):
        if self.jitter_s is not None and self.jitter_s >= self.interval_s:
            raise ValueError("jitter_s must be smaller than interval_s")
        return self


# ==================== EVENTS ====================

class DataEventKind(str, Enum):
    ADDED = "added"                      # First value seen for this point
    CHANGED = "changed"                  # Value changed
    QUALITY_CHANGED = "quality_changed"  # Same value, different quality


@dataclass(frozen=True)
class DataEvent:
    """A spontaneous data change pushed by an event-driven driver."""
    point: InputPoint
    kind: DataEventKind
    emitted_at: datetime = field(default_factory=utc_now)

    @classmethod
    def classify(cls, previous: Optional[InputPoint],
                 current: InputPoint) -> Optional["DataEvent"]:
        """
        Derive the event for a point update.

        Returns:
            DataEvent, or None if nothing observable changed
        """
        if previous is None:
            return cls(point=current, kind=DataEventKind.ADDED)
        if not _same_value(previous.value, current.value):
            return cls(point=current, kind=DataEventKind.CHANGED)
        if previous.quality != current.quality:
            return cls(point=current, kind=DataEventKind.QUALITY_CHANGED)
        return None


def _same_value(a, b) -> bool:
    """Equality where NaN equals NaN (a repeated NaN reading is not a change)."""
    if isinstance(a, float) and isinstance(b, float) and math.isnan(a) and math.isnan(b):
        return True
    return a == b
