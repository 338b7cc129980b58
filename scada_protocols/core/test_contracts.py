"""
Test Suite for Request/Response Contracts
=========================================

Tests validate:
    - ReadRequest selections and ReadResponse shape filtering
    - WriteResult per-command outcomes
    - PollingConfig / FailurePolicy validation
    - DataEvent classification
"""

import math
import unittest

from pydantic import ValidationError

from scada_protocols.core.contracts import (
    BatchMode, DataEvent, DataEventKind, FailureAction, FailurePolicy, PollingConfig,
    ReadRequest, ReadResponse, Selection, WriteOutcome, WriteResult,
)
from scada_protocols.core.data import SignalPoint, TelemetryPoint
from scada_protocols.core.errors import ErrorKind, PartialWriteError
from scada_protocols.core.quality import Quality


TELEMETRY = [TelemetryPoint(id=1, value=230.5), TelemetryPoint(id=2, value=49.9)]
SIGNALS = [SignalPoint(id=10, value=True), SignalPoint(id=11, value=2)]


class TestReadRequest(unittest.TestCase):

    def test_selections(self):
        self.assertTrue(ReadRequest.telemetry().wants_telemetry)
        self.assertFalse(ReadRequest.telemetry().wants_signals)
        self.assertFalse(ReadRequest.signals().wants_telemetry)
        self.assertEqual(ReadRequest.everything().selection, Selection.EVERYTHING)
        self.assertEqual(ReadRequest.points([1, 10]).point_ids, frozenset({1, 10}))

    def test_empty_point_selection_rejected(self):
        with self.assertRaises(ValidationError):
            ReadRequest.points([])

    def test_ids_only_with_point_selection(self):
        with self.assertRaises(ValidationError):
            ReadRequest(selection=Selection.TELEMETRY, point_ids=frozenset({1}))

    def test_requests_are_hashable_values(self):
        self.assertEqual(ReadRequest.points([2, 1]), ReadRequest.points([1, 2]))
        self.assertEqual(len({ReadRequest.telemetry(), ReadRequest.telemetry()}), 1)


class TestReadResponse(unittest.TestCase):

    def test_telemetry_request_has_no_signals(self):
        response = ReadResponse.build(ReadRequest.telemetry(), TELEMETRY, SIGNALS)
        self.assertEqual(len(response.telemetry), 2)
        self.assertEqual(response.signals, ())

    def test_signal_request_has_no_telemetry(self):
        response = ReadResponse.build(ReadRequest.signals(), TELEMETRY, SIGNALS)
        self.assertEqual(response.telemetry, ())
        self.assertEqual(len(response.signals), 2)

    def test_point_selection_spans_types(self):
        response = ReadResponse.build(ReadRequest.points([2, 11]), TELEMETRY, SIGNALS)
        self.assertEqual(sorted(response.by_id()), [2, 11])
        self.assertEqual(len(response), 2)

    def test_everything(self):
        response = ReadResponse.build(ReadRequest.everything(), TELEMETRY, SIGNALS,
                                      failed_count=1)
        self.assertEqual([p.id for p in response.points()], [1, 2, 10, 11])
        self.assertFalse(response.is_complete)


class TestWriteResult(unittest.TestCase):

    def setUp(self):
        self.result = WriteResult((
            WriteOutcome.ok(1),
            WriteOutcome.rejected(2, "interlock active"),
            WriteOutcome.ok(3),
        ), BatchMode.PER_ITEM)

    def test_counts(self):
        self.assertEqual(len(self.result), 3)
        self.assertFalse(self.result.ok)
        self.assertEqual(self.result.success_count, 2)
        self.assertEqual([o.id for o in self.result.rejected], [2])
        self.assertEqual(self.result[1].reason, "interlock active")

    def test_raise_for_rejections(self):
        with self.assertRaises(PartialWriteError) as ctx:
            self.result.raise_for_rejections()
        self.assertEqual(ctx.exception.kind, ErrorKind.PARTIAL_WRITE_FAILURE)
        self.assertEqual([o.id for o in ctx.exception.rejected], [2])

    def test_empty_result_is_ok(self):
        result = WriteResult()
        self.assertTrue(result.ok)
        self.assertEqual(len(result), 0)
        result.raise_for_rejections()


class TestPollingConfig(unittest.TestCase):

    def test_defaults(self):
        config = PollingConfig()
        self.assertEqual(config.interval_s, 1.0)
        self.assertEqual(config.request, ReadRequest.everything())
        self.assertIsNone(config.jitter_s)
        self.assertEqual(config.on_failure.action, FailureAction.SKIP)

    def test_interval_must_be_positive(self):
        with self.assertRaises(ValidationError):
            PollingConfig(interval_s=0)

    def test_jitter_below_interval(self):
        PollingConfig(interval_s=1.0, jitter_s=0.2)
        with self.assertRaises(ValidationError):
            PollingConfig(interval_s=1.0, jitter_s=1.0)

    def test_config_is_immutable(self):
        config = PollingConfig(interval_s=2.0)
        with self.assertRaises(ValidationError):
            config.interval_s = 5.0

    def test_failure_policies(self):
        self.assertEqual(FailurePolicy.skip().attempts, 1)
        self.assertEqual(FailurePolicy.stop().attempts, 1)

        retry = FailurePolicy.retry(2, retry_delay_s=0.5)
        self.assertEqual(retry.attempts, 3)
        self.assertEqual(retry.retry_delay_s, 0.5)

        with self.assertRaises(ValidationError):
            FailurePolicy.retry(-1)


class TestDataEvent(unittest.TestCase):

    def test_classify(self):
        first = TelemetryPoint(id=1, value=10.0)
        changed = TelemetryPoint(id=1, value=11.0)
        degraded = changed.with_quality(Quality.BAD)

        self.assertEqual(DataEvent.classify(None, first).kind, DataEventKind.ADDED)
        self.assertEqual(DataEvent.classify(first, changed).kind, DataEventKind.CHANGED)
        self.assertEqual(DataEvent.classify(changed, degraded).kind,
                         DataEventKind.QUALITY_CHANGED)
        self.assertIsNone(DataEvent.classify(changed, TelemetryPoint(id=1, value=11.0)))

    def test_classify_nan_reading(self):
        missing = TelemetryPoint(id=1, value=math.nan)

        self.assertIsNone(DataEvent.classify(missing, TelemetryPoint(id=1, value=math.nan)))
        self.assertEqual(DataEvent.classify(missing, TelemetryPoint(id=1, value=1.0)).kind,
                         DataEventKind.CHANGED)
        self.assertEqual(DataEvent.classify(TelemetryPoint(id=1, value=1.0), missing).kind,
                         DataEventKind.CHANGED)
        self.assertEqual(DataEvent.classify(missing, missing.with_quality(Quality.BAD)).kind,
                         DataEventKind.QUALITY_CHANGED)


if __name__ == '__main__':
    unittest.main(verbosity=2)
