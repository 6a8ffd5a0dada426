from __future__ import annotations

from triagegate.breaker import CircuitBreaker
from triagegate.models import CircuitBreakerState


def _open_breaker(clock, max_failures: int = 3) -> CircuitBreaker:
    breaker = CircuitBreaker(max_failures=max_failures, cooldown_ms=60000, clock=clock)
    for _ in range(max_failures):
        breaker.record_failure()
    return breaker


class TestTransitions:
    def test_starts_closed(self, clock):
        breaker = CircuitBreaker(clock=clock)
        assert breaker.is_open is False
        assert breaker.allow_request() is True

    def test_opens_after_max_consecutive_failures(self, clock):
        breaker = CircuitBreaker(max_failures=3, clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.is_open is False
        breaker.record_failure()
        assert breaker.is_open is True
        assert breaker.state.consecutive_failures == 3

    def test_success_resets_failure_count(self, clock):
        breaker = CircuitBreaker(max_failures=3, clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.is_open is False
        assert breaker.state.consecutive_failures == 1

    def test_refuses_inside_cooldown_without_counting(self, clock):
        breaker = _open_breaker(clock)
        clock.advance(59999)
        assert breaker.allow_request() is False
        assert breaker.is_refusing() is True
        assert breaker.state.consecutive_failures == 3

    def test_trial_after_cooldown_success_closes(self, clock):
        breaker = _open_breaker(clock)
        clock.advance(60000)
        assert breaker.is_refusing() is False
        assert breaker.allow_request() is True
        breaker.record_success()
        assert breaker.is_open is False
        assert breaker.state == CircuitBreakerState()

    def test_trial_after_cooldown_failure_stays_open_and_restarts_cooldown(self, clock):
        breaker = _open_breaker(clock)
        clock.advance(60000)
        assert breaker.allow_request() is True
        breaker.record_failure()
        assert breaker.is_open is True
        assert breaker.state.last_failure_timestamp == clock.now
        clock.advance(1000)
        assert breaker.allow_request() is False

    def test_single_trial_in_flight(self, clock):
        breaker = _open_breaker(clock)
        clock.advance(60000)
        assert breaker.allow_request() is True
        assert breaker.allow_request() is False

    def test_refusing_while_trial_in_flight(self, clock):
        breaker = _open_breaker(clock)
        clock.advance(60000)
        assert breaker.is_refusing() is False
        breaker.allow_request()
        assert breaker.is_refusing() is True
        breaker.record_success()
        assert breaker.is_refusing() is False


class TestStatePersistence:
    def test_state_is_a_copy(self, clock):
        breaker = CircuitBreaker(clock=clock)
        state = breaker.state
        state.is_open = True
        assert breaker.is_open is False

    def test_restore(self, clock):
        breaker = CircuitBreaker(clock=clock)
        breaker.restore(CircuitBreakerState(is_open=True, consecutive_failures=3, last_failure_timestamp=clock.now))
        assert breaker.is_refusing() is True

    def test_reset(self, clock):
        breaker = _open_breaker(clock)
        breaker.reset()
        assert breaker.is_open is False
        assert breaker.allow_request() is True
