"""
Test Suite for the Polling Engine
=================================

Tests validate:
    - Start/stop lifecycle and AlreadyPollingError
    - No reads after stop returns
    - SKIP / RETRY / STOP failure policies
    - Any read exception counts as a failed attempt
    - Grace period detach with diagnostics warning
    - A read queued behind other I/O never runs after stop
    - Last-known value aging
"""

import asyncio
import unittest

from scada_protocols.core.contracts import (
    FailurePolicy, PollingConfig, ReadRequest, ReadResponse,
)
from scada_protocols.core.data import ControlCommand, TelemetryPoint
from scada_protocols.core.errors import AlreadyPollingError, ProtocolViolationError, UnsupportedError
from scada_protocols.core.quality import Quality, QualityTracker
from scada_protocols.drivers.base import DriverConfig, EventDrivenClient
from scada_protocols.engine.polling import PollingEngine
from scada_protocols.testing import ScriptedClient


async def wait_until(condition, timeout: float = 2.0):
    """Poll a condition until it holds or the timeout expires."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class TestPollingLifecycle(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.client = ScriptedClient(telemetry={1: 230.0, 2: 50.0}, signals={10: True})
        await self.client.connect()

    async def asyncTearDown(self):
        await self.client.stop_polling()

    async def test_start_twice_raises(self):
        config = PollingConfig(interval_s=0.05)
        await self.client.start_polling(config)
        with self.assertRaises(AlreadyPollingError):
            await self.client.start_polling(config)

        await self.client.stop_polling()
        await self.client.start_polling(config)
        self.assertTrue(self.client.polling_engine.is_running)

    async def test_no_reads_after_stop(self):
        await self.client.start_polling(PollingConfig(interval_s=0.01))
        await wait_until(lambda: self.client.read_calls >= 3)

        await self.client.stop_polling()
        reads = self.client.read_calls
        await asyncio.sleep(0.05)

        self.assertEqual(self.client.read_calls, reads)
        self.assertFalse(self.client.polling_engine.is_running)

    async def test_stop_is_idempotent(self):
        await self.client.stop_polling()
        await self.client.start_polling(PollingConfig(interval_s=0.01))
        await self.client.stop_polling()
        await self.client.stop_polling()

    async def test_callback_gets_requested_shape(self):
        responses = []
        await self.client.start_polling(
            PollingConfig(interval_s=0.01, request=ReadRequest.telemetry()),
            on_response=responses.append,
        )
        await wait_until(lambda: len(responses) >= 2)
        await self.client.stop_polling()

        for response in responses:
            self.assertEqual(len(response.telemetry), 2)
            self.assertEqual(response.signals, ())

    async def test_async_callback(self):
        received = asyncio.Event()

        async def on_response(response):
            received.set()

        await self.client.start_polling(PollingConfig(interval_s=0.01), on_response)
        await asyncio.wait_for(received.wait(), timeout=1.0)

    async def test_polling_reads_are_counted_in_diagnostics(self):
        await self.client.start_polling(PollingConfig(interval_s=0.01))
        await wait_until(lambda: self.client.read_calls >= 3)
        await self.client.stop_polling()

        diag = self.client.diagnostics()
        self.assertEqual(diag.reads_total, self.client.read_calls)

    async def test_event_only_driver_cannot_poll(self):
        driver = EventDrivenClient()
        with self.assertRaises(UnsupportedError):
            await driver.start_polling(PollingConfig())


class TestFailurePolicies(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.client = ScriptedClient(telemetry={1: 230.0})
        await self.client.connect()

    async def asyncTearDown(self):
        await self.client.stop_polling()

    async def test_skip_keeps_polling(self):
        self.client.fail_next_read(ValueError("bad frame"), times=2)
        await self.client.start_polling(PollingConfig(interval_s=0.01))
        await wait_until(lambda: self.client.polling_engine.stats.successes >= 2)

        stats = self.client.polling_engine.stats
        self.assertEqual(stats.failures, 2)
        self.assertEqual(stats.retries, 0)
        self.assertEqual(stats.consecutive_failures, 0)
        self.assertEqual(self.client.diagnostics().read_failures, 2)

    async def test_retry_within_tick(self):
        self.client.fail_next_read(ValueError("bad frame"), times=2)
        responses = []
        config = PollingConfig(interval_s=10.0, on_failure=FailurePolicy.retry(2))
        await self.client.start_polling(config, responses.append)
        await wait_until(lambda: responses)

        stats = self.client.polling_engine.stats
        self.assertEqual(stats.ticks, 1)
        self.assertEqual(stats.retries, 2)
        self.assertEqual(self.client.read_calls, 3)

    async def test_retries_exhausted_skips_tick(self):
        self.client.fail_next_read(ValueError("bad frame"), times=5)
        config = PollingConfig(interval_s=0.01, on_failure=FailurePolicy.retry(1))
        await self.client.start_polling(config)
        await wait_until(lambda: self.client.polling_engine.stats.successes >= 1)

        stats = self.client.polling_engine.stats
        self.assertGreaterEqual(stats.ticks, 3)
        self.assertEqual(stats.failures, 5)

    async def test_unexpected_read_error_keeps_polling(self):
        self.client.fail_next_read(KeyError("register 40001"))
        await self.client.start_polling(PollingConfig(interval_s=0.01))
        engine = self.client.polling_engine
        await wait_until(lambda: engine.stats.successes >= 1)

        self.assertTrue(engine.is_running)
        self.assertEqual(engine.stats.failures, 1)
        self.assertEqual(self.client.diagnostics().read_failures, 1)

    async def test_stop_policy_ends_polling(self):
        self.client.fail_next_read(ValueError("bad frame"))
        await self.client.start_polling(
            PollingConfig(interval_s=0.01, on_failure=FailurePolicy.stop())
        )
        engine = self.client.polling_engine
        await wait_until(lambda: not engine.is_running)
        await asyncio.sleep(0.03)

        self.assertEqual(self.client.read_calls, 1)
        self.assertEqual(engine.stats.successes, 0)

        # Restart is allowed after the engine stopped itself
        await self.client.start_polling(PollingConfig(interval_s=0.01))
        self.assertTrue(engine.is_running)


class TestGracePeriod(unittest.IsolatedAsyncioTestCase):

    async def test_stop_detaches_slow_read(self):
        client = ScriptedClient(
            telemetry={1: 1.0},
            read_delay_s=0.3,
            config=DriverConfig(stop_grace_period_s=0.05),
        )
        await client.connect()
        responses = []
        await client.start_polling(PollingConfig(interval_s=0.01), responses.append)
        await wait_until(lambda: client.read_calls == 1)

        with self.assertLogs("scada_protocols.engine.polling", "WARNING"):
            await client.stop_polling()

        diag = client.diagnostics()
        self.assertEqual(diag.warnings_total, 1)
        self.assertIn("detached", diag.last_warning)

        # The in-flight read completes but nothing new starts and nothing is delivered
        await asyncio.sleep(0.4)
        self.assertEqual(client.read_calls, 1)
        self.assertEqual(responses, [])


    async def test_read_queued_behind_write_never_runs(self):
        client = ScriptedClient(
            telemetry={1: 1.0},
            write_delay_s=0.3,
            config=DriverConfig(stop_grace_period_s=0.05),
        )
        await client.connect()
        await client.start_polling(PollingConfig(interval_s=0.02))
        await wait_until(lambda: client.read_calls >= 1)

        write = asyncio.create_task(client.write_control([ControlCommand.latching(100, True)]))
        await wait_until(lambda: client.write_calls == 1)
        # Next tick is now waiting for the connection held by the write
        await asyncio.sleep(0.05)

        await client.stop_polling()
        reads = client.read_calls
        await write
        await asyncio.sleep(0.05)

        self.assertEqual(client.read_calls, reads)
        self.assertEqual(client.diagnostics().reads_total, reads)
        self.assertEqual(client.polling_engine.stats.failures, 0)


class TestPollingEngine(unittest.IsolatedAsyncioTestCase):
    """Engine driven by a plain read function"""

    async def test_snapshot_ages_missing_values(self):
        calls = {"n": 0}

        async def read(request):
            calls["n"] += 1
            if calls["n"] == 1:
                return ReadResponse.build(request, [TelemetryPoint(id=1, value=5.0)])
            raise ProtocolViolationError("garbled")

        engine = PollingEngine(read, quality_tracker=QualityTracker(uncertain_after=1, stale_after=3))
        engine.start(PollingConfig(interval_s=0.01))

        await wait_until(lambda: engine.stats.failures >= 1)
        self.assertIn(engine.snapshot()[1].quality, (Quality.UNCERTAIN, Quality.STALE))

        await wait_until(lambda: engine.stats.failures >= 3)
        await engine.stop()
        self.assertEqual(engine.snapshot()[1].quality, Quality.STALE)
        self.assertEqual(engine.snapshot()[1].value, 5.0)
        self.assertEqual(engine.last_response.telemetry[0].quality, Quality.GOOD)

    async def test_any_read_exception_is_a_failed_attempt(self):
        calls = {"n": 0}

        async def read(request):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("decoder bug")
            return ReadResponse.build(request)

        engine = PollingEngine(read)
        engine.start(PollingConfig(interval_s=0.01))
        await wait_until(lambda: engine.stats.successes >= 1)
        self.assertTrue(engine.is_running)
        await engine.stop()

        self.assertEqual(engine.stats.failures, 1)

    async def test_jitter_bounds(self):
        config = PollingConfig(interval_s=1.0, jitter_s=0.1)
        samples = [PollingEngine._jitter(config) for _ in range(200)]
        self.assertTrue(all(-0.1 <= s <= 0.1 for s in samples))
        self.assertEqual(PollingEngine._jitter(PollingConfig(interval_s=1.0)), 0.0)

    async def test_stop_from_callback(self):
        engine = None
        reads = []

        async def read(request):
            reads.append(request)
            return ReadResponse.build(request)

        async def on_response(response):
            await engine.stop()

        engine = PollingEngine(read)
        engine.start(PollingConfig(interval_s=0.01), on_response)
        await wait_until(lambda: not engine.is_running)
        await asyncio.sleep(0.03)
        self.assertEqual(len(reads), 1)

    async def test_stats_to_dict(self):
        async def read(request):
            return ReadResponse.build(request)

        engine = PollingEngine(read)
        engine.start(PollingConfig(interval_s=0.01))
        await wait_until(lambda: engine.stats.successes >= 1)
        await engine.stop()

        stats = engine.stats.to_dict()
        self.assertGreaterEqual(stats["ticks"], 1)
        self.assertIsNotNone(stats["last_success_at"])


if __name__ == '__main__':
    unittest.main(verbosity=2)
