"""Tests for the bounded retry helper."""

import pytest

from shared.backoff import WaitTimeoutError, backoff, poll_until


class FakeClock:
    """Monotonic clock advanced only by the fake sleep"""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def counting_check(succeed_on: int):
    calls = {"n": 0}

    def check() -> bool:
        calls["n"] += 1
        return calls["n"] >= succeed_on

    return check, calls


class TestPollUntil:
    def test_immediate_success_never_sleeps(self) -> None:
        """A check that passes at once returns without sleeping."""
        clock = FakeClock()
        check, calls = counting_check(1)

        poll_until(check, "never", timeout=10, interval=1, sleep=clock.sleep, clock=clock)

        assert calls["n"] == 1
        assert clock.sleeps == []

    def test_fixed_interval_between_attempts(self) -> None:
        """Sleeps are all the same length; there is no growth."""
        clock = FakeClock()
        check, calls = counting_check(4)

        poll_until(check, "never", timeout=10, interval=0.5, sleep=clock.sleep, clock=clock)

        assert calls["n"] == 4
        assert clock.sleeps == [0.5, 0.5, 0.5]

    def test_timeout_raises_with_message(self) -> None:
        """The wall-clock bound ends the wait with the given message."""
        clock = FakeClock()
        check, calls = counting_check(1000)

        with pytest.raises(WaitTimeoutError, match="Failed to find /dev/longhorn/vol1"):
            poll_until(check, "Failed to find /dev/longhorn/vol1", timeout=3, interval=1,
                       sleep=clock.sleep, clock=clock)

        assert clock.now <= 3
        assert calls["n"] == 4

    def test_max_attempts_bound(self) -> None:
        """The attempt bound caps the number of checks."""
        clock = FakeClock()
        check, calls = counting_check(1000)

        with pytest.raises(WaitTimeoutError):
            poll_until(check, "services", max_attempts=5, interval=2, sleep=clock.sleep, clock=clock)

        assert calls["n"] == 5
        assert len(clock.sleeps) == 4

    def test_success_on_last_attempt(self) -> None:
        """Passing on the final allowed attempt is still success."""
        clock = FakeClock()
        check, calls = counting_check(5)

        poll_until(check, "services", max_attempts=5, interval=2, sleep=clock.sleep, clock=clock)

        assert calls["n"] == 5

    def test_requires_a_bound(self) -> None:
        """Unbounded polling is refused."""
        with pytest.raises(ValueError):
            poll_until(lambda: True, "unbounded")

    def test_check_exception_propagates(self) -> None:
        """Errors from the check are not retried."""
        clock = FakeClock()

        def broken() -> bool:
            raise RuntimeError("backend down")

        with pytest.raises(RuntimeError, match="backend down"):
            poll_until(broken, "never", timeout=10, sleep=clock.sleep, clock=clock)
        assert clock.sleeps == []

    def test_timeout_error_is_builtin_timeout(self) -> None:
        """Callers can catch WaitTimeoutError as TimeoutError."""
        assert issubclass(WaitTimeoutError, TimeoutError)


class TestBackoff:
    def test_real_sleep_short_timeout(self) -> None:
        """backoff() gives up after its timeout using real time."""
        with pytest.raises(WaitTimeoutError, match="still waiting"):
            backoff(0.05, "still waiting", lambda: False, interval=0.01)

    def test_passes_through_success(self) -> None:
        """backoff() returns once the check passes."""
        check, calls = counting_check(3)
        backoff(5, "never", check, interval=0, sleep=lambda _: None)
        assert calls["n"] == 3
