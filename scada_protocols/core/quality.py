"""
Data Quality
============

Every input point (telemetry or signal) carries a quality flag telling the
consumer whether the value can be trusted.

Quality codes:
    GOOD           Value is valid and current
    UNCERTAIN      Value may be inaccurate (sensor drift, substituted, aging)
    BAD            Device or sensor reported a fault
    STALE          Last known value, not refreshed for several polls
    NOT_CONNECTED  No communication with the device

Values with BAD, STALE or NOT_CONNECTED quality must not be treated as fresh.

Quality degrades on missed polls (QualityTracker):
    GOOD -> UNCERTAIN after 3 consecutive misses -> STALE after 10 misses
"""

from enum import Enum
from typing import Dict, Hashable

from scada_protocols.config import DATA_QUALITY


class Quality(str, Enum):
    """Quality flag attached to every input point."""
    GOOD = "good"
    UNCERTAIN = "uncertain"
    BAD = "bad"
    STALE = "stale"
    NOT_CONNECTED = "not_connected"

    @property
    def is_good(self) -> bool:
        return self is Quality.GOOD

    @property
    def is_fresh(self) -> bool:
        """False for values consumers must not treat as current."""
        return self in (Quality.GOOD, Quality.UNCERTAIN)

    @property
    def is_connection_problem(self) -> bool:
        return self in (Quality.NOT_CONNECTED, Quality.STALE)

    def to_opc_status(self) -> int:
        """Map to the closest OPC UA status code."""
        return _OPC_STATUS[self]

    @classmethod
    def from_opc_status(cls, status: int) -> "Quality":
        """Classify an OPC UA status code by its severity bits."""
        if status == _OPC_STATUS[cls.NOT_CONNECTED]:
            return cls.NOT_CONNECTED
        severity = status & 0xC0000000
        if severity == 0x00000000:
            return cls.GOOD
        if severity == 0x40000000:
            return cls.UNCERTAIN
        return cls.BAD


_OPC_STATUS = {
    Quality.GOOD: 0x00000000,           # Good
    Quality.UNCERTAIN: 0x40000000,      # Uncertain
    Quality.BAD: 0x80000000,            # Bad
    Quality.STALE: 0x408F0000,          # UncertainLastUsableValue
    Quality.NOT_CONNECTED: 0x808A0000,  # BadNotConnected
}


class QualityTracker:
    """
    Tracks missed polls per point and degrades last-known quality.

    A point's quality is whatever the device last reported until it starts
    missing polls; after that it decays according to DATA_QUALITY thresholds.
    """

    def __init__(self,
                 uncertain_after: int = DATA_QUALITY["uncertain_after_missed_polls"],
                 stale_after: int = DATA_QUALITY["stale_after_missed_polls"]):
        if not 0 < uncertain_after <= stale_after:
            raise ValueError("Thresholds must satisfy 0 < uncertain_after <= stale_after")
        self.uncertain_after = uncertain_after
        self.stale_after = stale_after

        # Reported quality and missed poll counter for each point
        self.reported: Dict[Hashable, Quality] = {}
        self.missed_polls: Dict[Hashable, int] = {}

    def update(self, point_id: Hashable, quality: Quality):
        """Record a fresh value's quality and reset its missed poll counter."""
        self.reported[point_id] = quality
        self.missed_polls[point_id] = 0

    def mark_missed(self, point_id: Hashable):
        """Record one missed poll for a known point."""
        if point_id in self.reported:
            self.missed_polls[point_id] = self.missed_polls.get(point_id, 0) + 1

    def mark_all_missed(self):
        """Record one missed poll for every known point (whole read failed)."""
        for point_id in list(self.reported.keys()):
            self.mark_missed(point_id)

    def quality(self, point_id: Hashable) -> Quality:
        """
        Get effective quality for a point.

        Returns:
            NOT_CONNECTED if never seen, otherwise the reported quality
            degraded by the number of consecutive missed polls
        """
        if point_id not in self.reported:
            return Quality.NOT_CONNECTED

        reported = self.reported[point_id]
        missed = self.missed_polls.get(point_id, 0)

        if missed >= self.stale_after:
            return Quality.STALE
        if missed >= self.uncertain_after and reported is Quality.GOOD:
            return Quality.UNCERTAIN
        return reported

    def summary(self) -> Dict[str, int]:
        """Count of tracked points at each effective quality level."""
        summary = {q.value: 0 for q in Quality}
        for point_id in self.reported:
            summary[self.quality(point_id).value] += 1
        return summary

    def reset(self):
        self.reported.clear()
        self.missed_polls.clear()
