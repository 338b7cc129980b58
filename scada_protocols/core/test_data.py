"""
Test Suite for the Data Model and Quality
=========================================

Tests validate:
    - Four-remote types and their immutability
    - Command validation
    - Quality flags, OPC status mapping and missed-poll degradation
"""

import dataclasses
import math
import unittest

from pydantic import ValidationError

from scada_protocols.core.data import (
    AdjustmentCommand, ControlCommand, DataType, SignalPoint, TelemetryPoint,
)
from scada_protocols.core.quality import Quality, QualityTracker


class TestDataTypes(unittest.TestCase):

    def test_codes(self):
        self.assertEqual([t.code for t in DataType], ["T", "S", "C", "A"])

    def test_classification(self):
        self.assertTrue(DataType.TELEMETRY.is_input and DataType.TELEMETRY.is_analog)
        self.assertTrue(DataType.SIGNAL.is_input and DataType.SIGNAL.is_digital)
        self.assertTrue(DataType.CONTROL.is_output and DataType.CONTROL.is_digital)
        self.assertTrue(DataType.ADJUSTMENT.is_output and DataType.ADJUSTMENT.is_analog)
        self.assertFalse(DataType.CONTROL.is_input)


class TestInputPoints(unittest.TestCase):

    def test_points_are_immutable(self):
        point = TelemetryPoint(id=1, value=230.5)
        with self.assertRaises(dataclasses.FrozenInstanceError):
            point.value = 0.0

    def test_default_quality_and_timestamp(self):
        point = SignalPoint(id="CB-01", value=True)
        self.assertEqual(point.quality, Quality.GOOD)
        self.assertIsNotNone(point.timestamp.tzinfo)
        self.assertIsNone(point.source_timestamp)
        self.assertEqual(point.data_type, DataType.SIGNAL)

    def test_with_quality_returns_copy(self):
        point = TelemetryPoint(id=1, value=49.98)
        degraded = point.with_quality(Quality.STALE)

        self.assertEqual(point.quality, Quality.GOOD)
        self.assertEqual(degraded.quality, Quality.STALE)
        self.assertEqual(degraded.value, 49.98)
        self.assertEqual(degraded.timestamp, point.timestamp)

    def test_to_dict(self):
        data = TelemetryPoint(id=7, value=11.2, quality=Quality.UNCERTAIN).to_dict()
        self.assertEqual(data["type"], "T")
        self.assertEqual(data["quality"], "uncertain")
        self.assertEqual(data["value"], 11.2)


class TestCommands(unittest.TestCase):

    def test_latching_control(self):
        cmd = ControlCommand.latching(1, True)
        self.assertIsNone(cmd.pulse_ms)
        self.assertFalse(cmd.is_pulse)
        self.assertEqual(cmd.data_type, DataType.CONTROL)

    def test_pulse_control(self):
        cmd = ControlCommand.pulse(1, True, 500)
        self.assertEqual(cmd.pulse_ms, 500)
        self.assertTrue(cmd.is_pulse)

    def test_pulse_must_be_positive(self):
        with self.assertRaises(ValidationError):
            ControlCommand.pulse(1, True, 0)

    def test_commands_are_frozen(self):
        cmd = AdjustmentCommand(id="P-SET", value=42.0)
        with self.assertRaises(ValidationError):
            cmd.value = 10.0

    def test_setpoint_must_be_finite(self):
        for bad in (math.nan, math.inf, -math.inf):
            with self.assertRaises(ValidationError):
                AdjustmentCommand(id=1, value=bad)


class TestQuality(unittest.TestCase):

    def test_freshness(self):
        self.assertTrue(Quality.GOOD.is_fresh)
        self.assertTrue(Quality.UNCERTAIN.is_fresh)
        for quality in (Quality.BAD, Quality.STALE, Quality.NOT_CONNECTED):
            self.assertFalse(quality.is_fresh)

    def test_connection_problem(self):
        self.assertTrue(Quality.NOT_CONNECTED.is_connection_problem)
        self.assertTrue(Quality.STALE.is_connection_problem)
        self.assertFalse(Quality.BAD.is_connection_problem)

    def test_opc_status_mapping(self):
        for quality in (Quality.GOOD, Quality.UNCERTAIN, Quality.BAD, Quality.NOT_CONNECTED):
            self.assertEqual(Quality.from_opc_status(quality.to_opc_status()), quality)

        # Last usable value is an "uncertain" status code
        self.assertEqual(Quality.from_opc_status(Quality.STALE.to_opc_status()), Quality.UNCERTAIN)
        self.assertEqual(Quality.from_opc_status(0x80340000), Quality.BAD)


class TestQualityTracker(unittest.TestCase):
    """Quality degrades: GOOD -> UNCERTAIN (3 misses) -> STALE (10 misses)"""

    def setUp(self):
        self.tracker = QualityTracker()

    def test_unknown_point(self):
        self.assertEqual(self.tracker.quality(99), Quality.NOT_CONNECTED)

    def test_degradation(self):
        self.tracker.update(1, Quality.GOOD)

        for _ in range(2):
            self.tracker.mark_missed(1)
        self.assertEqual(self.tracker.quality(1), Quality.GOOD)

        self.tracker.mark_missed(1)
        self.assertEqual(self.tracker.quality(1), Quality.UNCERTAIN)

        for _ in range(7):
            self.tracker.mark_all_missed()
        self.assertEqual(self.tracker.quality(1), Quality.STALE)

    def test_update_resets_missed_polls(self):
        self.tracker.update(1, Quality.GOOD)
        for _ in range(5):
            self.tracker.mark_missed(1)
        self.tracker.update(1, Quality.GOOD)
        self.assertEqual(self.tracker.quality(1), Quality.GOOD)

    def test_bad_stays_bad_until_stale(self):
        self.tracker.update(1, Quality.BAD)
        for _ in range(3):
            self.tracker.mark_missed(1)
        self.assertEqual(self.tracker.quality(1), Quality.BAD)

    def test_summary(self):
        self.tracker.update(1, Quality.GOOD)
        self.tracker.update(2, Quality.BAD)
        summary = self.tracker.summary()
        self.assertEqual(summary["good"], 1)
        self.assertEqual(summary["bad"], 1)
        self.assertEqual(summary["stale"], 0)

    def test_invalid_thresholds(self):
        with self.assertRaises(ValueError):
            QualityTracker(uncertain_after=5, stale_after=2)


if __name__ == '__main__':
    unittest.main(verbosity=2)
