"""
Four-Remote Data Model
======================

SCADA convention partitioning device data into four remote types:

    T  Telemetry   analog input    (voltage, pressure, power)
    S  Signal      digital input   (breaker position, alarm contact)
    C  Control     digital output  (open/close breaker, start pump)
    A  Adjustment  analog output   (power setpoint, tap target)

Input points (T/S) are measurements: they carry a quality and a timestamp and
are created fresh on every read or pushed event. Output commands (C/A) are
requests: they have no quality or timestamp.

All types here are immutable. Nothing in the protocol layer mutates a point
after handing it to a caller.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scada_protocols.core.quality import Quality

# Opaque point key, unique within one device's address space
PointId = Union[int, str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DataType(str, Enum):
    """The four remote types."""
    TELEMETRY = "telemetry"
    SIGNAL = "signal"
    CONTROL = "control"
    ADJUSTMENT = "adjustment"

    @property
    def code(self) -> str:
        """Short code: T, S, C or A."""
        return _CODES[self]

    @property
    def is_input(self) -> bool:
        return self in (DataType.TELEMETRY, DataType.SIGNAL)

    @property
    def is_output(self) -> bool:
        return self in (DataType.CONTROL, DataType.ADJUSTMENT)

    @property
    def is_analog(self) -> bool:
        return self in (DataType.TELEMETRY, DataType.ADJUSTMENT)

    @property
    def is_digital(self) -> bool:
        return self in (DataType.SIGNAL, DataType.CONTROL)


_CODES = {
    DataType.TELEMETRY: "T",
    DataType.SIGNAL: "S",
    DataType.CONTROL: "C",
    DataType.ADJUSTMENT: "A",
}


@dataclass(frozen=True)
class TelemetryPoint:
    """Analog input measurement."""
    id: PointId
    value: float
    quality: Quality = Quality.GOOD
    timestamp: datetime = field(default_factory=utc_now)
    source_timestamp: Optional[datetime] = None  # Device time, if reported

    data_type = DataType.TELEMETRY

    def with_quality(self, quality: Quality) -> "TelemetryPoint":
        return replace(self, quality=quality)

    def to_dict(self):
        return _point_dict(self)


@dataclass(frozen=True)
class SignalPoint:
    """Digital input status. Value is a bool or an integer enum state."""
    id: PointId
    value: Union[bool, int]
    quality: Quality = Quality.GOOD
    timestamp: datetime = field(default_factory=utc_now)
    source_timestamp: Optional[datetime] = None

    data_type = DataType.SIGNAL

    def with_quality(self, quality: Quality) -> "SignalPoint":
        return replace(self, quality=quality)

    def to_dict(self):
        return _point_dict(self)


InputPoint = Union[TelemetryPoint, SignalPoint]


def _point_dict(point: InputPoint) -> dict:
    return {
        "id": point.id,
        "type": point.data_type.code,
        "value": point.value,
        "quality": point.quality.value,
        "timestamp": point.timestamp.isoformat(),
        "source_timestamp": (point.source_timestamp.isoformat()
                             if point.source_timestamp else None),
    }


class ControlCommand(BaseModel):
    """Digital output command (C)."""
    model_config = ConfigDict(frozen=True)

    id: PointId
    command: Union[bool, int]
    pulse_ms: Optional[int] = Field(default=None, gt=0)  # None = latching

    data_type: ClassVar[DataType] = DataType.CONTROL

    @classmethod
    def latching(cls, id: PointId, command: Union[bool, int]) -> "ControlCommand":
        return cls(id=id, command=command)

    @classmethod
    def pulse(cls, id: PointId, command: Union[bool, int], duration_ms: int) -> "ControlCommand":
        return cls(id=id, command=command, pulse_ms=duration_ms)

    @property
    def is_pulse(self) -> bool:
        return self.pulse_ms is not None


class AdjustmentCommand(BaseModel):
    """Analog output setpoint request (A)."""
    model_config = ConfigDict(frozen=True)

    id: PointId
    value: float

    data_type: ClassVar[DataType] = DataType.ADJUSTMENT

    @field_validator("value")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("setpoint must be a finite number")
        return value
