from __future__ import annotations

import unittest
from unittest.mock import Mock

from price_drop_monitor.errors import CircuitOpenError, InferenceError, InferenceUnavailableError, MonitorConflictError
from price_drop_monitor.resilience import (
    NO_RETRY,
    READ_BREAKER,
    WRITE_BREAKER,
    BreakerConfig,
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    RetryPolicy,
    retry_call,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _boom() -> None:
    raise RuntimeError("down")


class TestCircuitBreaker(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.breaker = CircuitBreaker(
            "db",
            BreakerConfig(failure_threshold=3, success_threshold=2, reset_timeout_seconds=30.0),
            clock=self.clock,
        )

    def _fail(self, n: int) -> None:
        for _ in range(n):
            with self.assertRaises(RuntimeError):
                self.breaker.call(_boom)

    def test_opens_after_threshold_consecutive_failures(self) -> None:
        self._fail(2)
        self.assertEqual(self.breaker.state, CircuitState.CLOSED)
        self._fail(1)
        self.assertEqual(self.breaker.state, CircuitState.OPEN)

    def test_success_resets_failure_count_while_closed(self) -> None:
        self._fail(2)
        self.assertEqual(self.breaker.call(lambda: 7), 7)
        self._fail(2)
        self.assertEqual(self.breaker.state, CircuitState.CLOSED)

    def test_open_rejects_without_invoking(self) -> None:
        self._fail(3)
        fn = Mock(return_value=1)

        with self.assertRaises(CircuitOpenError) as cm:
            self.breaker.call(fn)

        fn.assert_not_called()
        self.assertIn("CircuitBreaker db is OPEN", str(cm.exception))
        self.assertAlmostEqual(cm.exception.retry_in_seconds, 30.0)

    def test_half_open_after_timeout_then_closes_on_successes(self) -> None:
        self._fail(3)
        self.clock.now += 30.0

        self.assertEqual(self.breaker.call(lambda: "a"), "a")
        self.assertEqual(self.breaker.state, CircuitState.HALF_OPEN)
        self.assertEqual(self.breaker.call(lambda: "b"), "b")
        self.assertEqual(self.breaker.state, CircuitState.CLOSED)
        self.assertEqual(self.breaker.status().failures, 0)

    def test_failure_in_half_open_reopens(self) -> None:
        self._fail(3)
        self.clock.now += 31.0
        self._fail(1)

        status = self.breaker.status()
        self.assertEqual(status.state, CircuitState.OPEN)
        self.assertEqual(status.next_retry_at, self.clock.now + 30.0)

    def test_close_forces_closed(self) -> None:
        self._fail(3)
        self.breaker.close()
        self.assertEqual(self.breaker.state, CircuitState.CLOSED)
        self.assertEqual(self.breaker.call(lambda: 1), 1)


class TestCircuitBreakerRegistry(unittest.TestCase):
    def test_get_returns_same_breaker_per_name(self) -> None:
        reg = CircuitBreakerRegistry()
        a = reg.get("store.read", READ_BREAKER)
        self.assertIs(reg.get("store.read"), a)
        self.assertIsNot(reg.get("store.write", WRITE_BREAKER), a)
        self.assertEqual(sorted(reg.statuses()), ["store.read", "store.write"])

    def test_reset_all_closes_every_breaker(self) -> None:
        reg = CircuitBreakerRegistry()
        b = reg.get("x", BreakerConfig(failure_threshold=1))
        with self.assertRaises(RuntimeError):
            b.call(_boom)
        self.assertEqual(b.state, CircuitState.OPEN)

        reg.reset_all()

        self.assertEqual(reg.statuses()["x"].state, CircuitState.CLOSED)

    def test_presets(self) -> None:
        self.assertEqual((READ_BREAKER.failure_threshold, READ_BREAKER.reset_timeout_seconds), (5, 30.0))
        self.assertEqual((WRITE_BREAKER.failure_threshold, WRITE_BREAKER.reset_timeout_seconds), (4, 45.0))


class TestRetryCall(unittest.TestCase):
    def test_retries_until_success_with_growing_delays(self) -> None:
        fn = Mock(side_effect=[RuntimeError("a"), RuntimeError("b"), "ok"])
        sleeps: list[float] = []

        out = retry_call(
            fn,
            label="load",
            policy=RetryPolicy(max_retries=3, initial_delay_seconds=0.1, max_delay_seconds=5.0, multiplier=2.0),
            sleep=sleeps.append,
        )

        self.assertEqual(out, "ok")
        self.assertEqual(fn.call_count, 3)
        self.assertEqual(len(sleeps), 2)
        self.assertLess(sleeps[0], sleeps[1])

    def test_gives_up_after_max_retries_and_reraises(self) -> None:
        fn = Mock(side_effect=RuntimeError("still down"))

        with self.assertRaises(RuntimeError):
            retry_call(fn, label="load", policy=RetryPolicy(max_retries=2), sleep=lambda _s: None)

        self.assertEqual(fn.call_count, 3)

    def test_delay_is_capped(self) -> None:
        fn = Mock(side_effect=[RuntimeError()] * 4 + ["ok"])
        sleeps: list[float] = []

        retry_call(
            fn,
            label="cap",
            policy=RetryPolicy(max_retries=4, initial_delay_seconds=1.0, max_delay_seconds=2.5, multiplier=10.0),
            sleep=sleeps.append,
        )

        self.assertTrue(all(s <= 2.5 for s in sleeps))

    def test_logical_errors_are_not_retried(self) -> None:
        fn = Mock(side_effect=MonitorConflictError("u1", "https://x.test/p"))

        with self.assertRaises(MonitorConflictError):
            retry_call(fn, label="add", sleep=lambda _s: None)

        self.assertEqual(fn.call_count, 1)

    def test_logs_each_retry_with_label(self) -> None:
        fn = Mock(side_effect=[RuntimeError("flaky"), "ok"])

        with self.assertLogs("price_drop_monitor.resilience", level="WARNING") as logs:
            retry_call(fn, label="list_active_monitors", sleep=lambda _s: None)

        self.assertTrue(any("label=list_active_monitors" in line for line in logs.output))

    def test_no_retry_policy_runs_once(self) -> None:
        fn = Mock(side_effect=RuntimeError("response lost"))
        sleep = Mock()

        with self.assertRaises(RuntimeError):
            retry_call(fn, label="increment_failures", policy=NO_RETRY, sleep=sleep)

        self.assertEqual(fn.call_count, 1)
        sleep.assert_not_called()

    def test_retry_on_limits_retried_types(self) -> None:
        fn = Mock(side_effect=InferenceError("rejected"))

        with self.assertRaises(InferenceError):
            retry_call(fn, label="gemini", retry_on=(InferenceUnavailableError,), sleep=lambda _s: None)

        self.assertEqual(fn.call_count, 1)

    def test_retry_after_hint_sets_delay(self) -> None:
        fn = Mock(side_effect=[InferenceUnavailableError("429", retry_after_seconds=1.5), "ok"])
        sleeps: list[float] = []

        out = retry_call(fn, label="gemini", policy=RetryPolicy(max_retries=1, max_delay_seconds=5.0), sleep=sleeps.append)

        self.assertEqual(out, "ok")
        self.assertEqual(sleeps, [1.5])


class TestOpenError(unittest.TestCase):
    def test_reports_remaining_wait(self) -> None:
        clock = _Clock()
        breaker = CircuitBreaker("retailer:www.nike.com", BreakerConfig(failure_threshold=1, reset_timeout_seconds=60.0), clock=clock)
        breaker.record_failure()
        clock.now += 15.0

        err = breaker.open_error()

        self.assertIsInstance(err, CircuitOpenError)
        self.assertEqual(err.retry_in_seconds, 45.0)
        self.assertIn("retailer:www.nike.com is OPEN", str(err))


if __name__ == "__main__":
    unittest.main()
