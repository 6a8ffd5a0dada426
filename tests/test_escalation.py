from __future__ import annotations

import pytest

from triagegate.breaker import CircuitBreaker
from triagegate.config import EngineConfig
from triagegate.constants import EscalationReason, RefusalReason
from triagegate.escalation import EscalationController, RollingCheckWindow
from triagegate.models import Category, CheckOutcome, WindowStats

CONSTRAINT = "Type 'X' does not satisfy the constraint 'Y'"


def _outcome(escalated: bool, errors: int = 1, ts: int = 0) -> CheckOutcome:
    return CheckOutcome(timestamp=ts, had_errors=errors > 0, error_count=errors, was_escalated=escalated)


class TestRollingCheckWindow:
    def test_three_of_twenty_is_fifteen_percent(self):
        window = RollingCheckWindow(outcomes=[_outcome(i < 3) for i in range(20)])
        assert window.escalation_rate() == pytest.approx(0.15)
        assert window.stats().samples == 20
        assert window.stats().escalated == 3

    def test_evicts_oldest(self):
        window = RollingCheckWindow(size=3)
        window.append(_outcome(True, ts=1))
        for ts in (2, 3, 4):
            window.append(_outcome(False, ts=ts))
        assert len(window) == 3
        assert [o.timestamp for o in window.outcomes()] == [2, 3, 4]
        assert window.escalation_rate() == 0.0

    def test_empty_window(self):
        window = RollingCheckWindow()
        assert window.escalation_rate() == 0.0
        assert window.mean_error_count() == 0.0


class TestDecisionOrder:
    def test_aggressive_escalates_constraint_error(self, clock):
        controller = EscalationController(EngineConfig(escalation_sensitivity="aggressive"), clock=clock)
        assert controller.should_escalate(Category.NEEDS_REASONING, 55, message=CONSTRAINT) is True

    def test_conservative_holds_constraint_error(self, clock):
        controller = EscalationController(EngineConfig(), clock=clock)
        assert controller.should_escalate(Category.NEEDS_REASONING, 55, message=CONSTRAINT) is False

    def test_auto_fixable_never_escalates(self, clock):
        controller = EscalationController(EngineConfig(escalation_sensitivity="aggressive"), clock=clock)
        decision = controller.explain_decision(Category.AUTO_FIXABLE, 100)
        assert decision.escalate is False
        assert decision.reason == RefusalReason.AUTO_FIXABLE

    def test_threshold_is_strict(self, clock):
        controller = EscalationController(EngineConfig(min_complexity_score=55), clock=clock)
        assert controller.should_escalate(Category.NEEDS_REASONING, 55) is False
        assert controller.should_escalate(Category.NEEDS_REASONING, 56) is True

    def test_explicit_min_complexity_overrides_sensitivity(self):
        controller = EscalationController(EngineConfig(escalation_sensitivity="aggressive", min_complexity_score=90))
        assert controller.threshold == 90

    def test_rate_ceiling_refuses(self, clock):
        controller = EscalationController(EngineConfig(), clock=clock)
        stats = WindowStats(samples=25, escalated=5, rate=0.2)
        decision = controller.explain_decision(Category.NEEDS_REASONING, 95, stats)
        assert decision.escalate is False
        assert decision.reason == RefusalReason.RATE_CEILING

    def test_rate_ceiling_needs_enough_samples(self, clock):
        controller = EscalationController(EngineConfig(), clock=clock)
        stats = WindowStats(samples=19, escalated=5, rate=0.26)
        assert controller.should_escalate(Category.NEEDS_REASONING, 95, stats) is True

    def test_never_pattern_beats_always_pattern_and_score(self, clock):
        config = EngineConfig(always_escalate_patterns=["Generic"], never_escalate_patterns=["Generic"])
        controller = EscalationController(config, clock=clock)
        decision = controller.explain_decision(Category.NEEDS_REASONING, 100, message="Generic constraint failure")
        assert decision.escalate is False
        assert decision.reason == RefusalReason.NEVER_PATTERN

    def test_always_pattern_bypasses_complexity(self, clock):
        controller = EscalationController(EngineConfig(always_escalate_patterns=[r"TS2589"]), clock=clock)
        decision = controller.explain_decision(Category.AUTO_FIXABLE, 10, message="error TS2589: too deep")
        assert decision.escalate is True
        assert decision.reason == EscalationReason.ALWAYS_PATTERN

    def test_always_pattern_still_respects_rate_ceiling(self, clock):
        controller = EscalationController(EngineConfig(always_escalate_patterns=[r"TS2589"]), clock=clock)
        stats = WindowStats(samples=40, escalated=10, rate=0.25)
        assert controller.should_escalate(Category.NEEDS_REASONING, 100, stats, message="TS2589") is False

    def test_disabled(self, clock):
        controller = EscalationController(EngineConfig(enabled=False), clock=clock)
        assert controller.explain_decision(Category.NEEDS_REASONING, 100).reason == RefusalReason.DISABLED

    def test_open_breaker_refuses(self, clock):
        breaker = CircuitBreaker(max_failures=1, cooldown_ms=60000, clock=clock)
        breaker.record_failure()
        controller = EscalationController(EngineConfig(), breaker=breaker, clock=clock)
        assert controller.explain_decision(Category.NEEDS_REASONING, 100).reason == RefusalReason.CIRCUIT_OPEN

        clock.advance(60000)
        assert controller.should_escalate(Category.NEEDS_REASONING, 100) is True

    def test_breaker_trial_in_flight_refuses(self, clock):
        breaker = CircuitBreaker(max_failures=1, cooldown_ms=60000, clock=clock)
        breaker.record_failure()
        clock.advance(60000)
        assert breaker.allow_request() is True
        controller = EscalationController(EngineConfig(), breaker=breaker, clock=clock)
        assert controller.explain_decision(Category.NEEDS_REASONING, 100).reason == RefusalReason.CIRCUIT_OPEN

    def test_budget_exhausted_refuses(self, clock):
        controller = EscalationController(EngineConfig(), budget_exhausted=lambda: True, clock=clock)
        assert controller.explain_decision(Category.NEEDS_REASONING, 100).reason == RefusalReason.BUDGET_EXHAUSTED

    def test_cooldown(self, clock):
        controller = EscalationController(EngineConfig(escalation_cooldown_ms=5000), clock=clock)
        assert controller.should_escalate(Category.NEEDS_REASONING, 100) is True
        clock.advance(4999)
        assert controller.explain_decision(Category.NEEDS_REASONING, 100).reason == RefusalReason.COOLDOWN
        clock.advance(1)
        assert controller.should_escalate(Category.NEEDS_REASONING, 100) is True

    def test_preview_does_not_start_cooldown(self, clock):
        controller = EscalationController(EngineConfig(escalation_cooldown_ms=5000), clock=clock)
        assert controller.explain_decision(Category.NEEDS_REASONING, 100, commit=False).escalate is True
        assert controller.should_escalate(Category.NEEDS_REASONING, 100) is True

    def test_internal_error_fails_closed(self, clock):
        controller = EscalationController(EngineConfig(), clock=clock)
        decision = controller.explain_decision(Category.NEEDS_REASONING, "high")  # type: ignore[arg-type]
        assert decision.escalate is False
        assert decision.reason == RefusalReason.INTERNAL_ERROR


class TestAdaptiveThreshold:
    def test_no_tuning_below_ten_samples(self, clock):
        controller = EscalationController(EngineConfig(), clock=clock)
        for _ in range(9):
            controller.record_outcome(had_errors=True, error_count=1, was_escalated=True)
        assert controller.threshold == 70

    def test_raises_when_rate_above_ceiling(self, clock):
        controller = EscalationController(EngineConfig(), clock=clock)
        for _ in range(10):
            controller.record_outcome(had_errors=True, error_count=1, was_escalated=True)
        assert controller.threshold == 75
        controller.record_outcome(had_errors=True, error_count=1, was_escalated=True)
        assert controller.threshold == 80

    def test_capped_at_ceiling(self, clock):
        controller = EscalationController(EngineConfig(), clock=clock, threshold=93)
        for _ in range(12):
            controller.record_outcome(had_errors=True, error_count=1, was_escalated=True)
        assert controller.threshold == 95

    def test_lowers_when_quiet_and_busy(self, clock):
        controller = EscalationController(EngineConfig(), clock=clock)
        for _ in range(10):
            controller.record_outcome(had_errors=True, error_count=5, was_escalated=False)
        assert controller.threshold == 65

    def test_never_below_hard_floor(self, clock):
        controller = EscalationController(EngineConfig(min_complexity_score=22), clock=clock)
        for _ in range(12):
            controller.record_outcome(had_errors=True, error_count=5, was_escalated=False)
        assert controller.threshold == 20

    def test_quiet_but_not_busy_leaves_threshold(self, clock):
        controller = EscalationController(EngineConfig(), clock=clock)
        for _ in range(15):
            controller.record_outcome(had_errors=True, error_count=1, was_escalated=False)
        assert controller.threshold == 70


class TestSnapshot:
    def test_roundtrip_keeps_window_and_threshold(self, clock):
        controller = EscalationController(EngineConfig(), clock=clock)
        for _ in range(10):
            controller.record_outcome(had_errors=True, error_count=1, was_escalated=True)
        data = controller.snapshot()

        restored = EscalationController(EngineConfig(), clock=clock)
        restored.restore(data)
        assert restored.threshold == 75
        assert len(restored.window) == 10
        assert restored.rolling_escalation_rate() == 1.0

    def test_threshold_discarded_when_base_changes(self, clock):
        controller = EscalationController(EngineConfig(), clock=clock, threshold=90)
        data = controller.snapshot()

        restored = EscalationController(EngineConfig(escalation_sensitivity="aggressive"), clock=clock)
        restored.restore(data)
        assert restored.threshold == 30


class TestReservations:
    def _full_window(self, clock, escalated: int = 2) -> EscalationController:
        controller = EscalationController(EngineConfig(escalation_sensitivity="aggressive"), clock=clock)
        for i in range(20):
            controller.record_outcome(had_errors=True, error_count=1, was_escalated=i < escalated)
        return controller

    def test_pending_escalations_count_against_ceiling(self, clock):
        controller = self._full_window(clock)
        assert controller.should_escalate(Category.NEEDS_REASONING, 100) is True
        controller.reserve_escalation()
        assert controller.should_escalate(Category.NEEDS_REASONING, 100) is True
        controller.reserve_escalation()
        # 4 of 22 once both in-flight checks are counted
        decision = controller.explain_decision(Category.NEEDS_REASONING, 100)
        assert decision.reason == RefusalReason.RATE_CEILING
        assert decision.current_rate == pytest.approx(4 / 22)

    def test_recording_releases_reservation(self, clock):
        controller = self._full_window(clock)
        controller.reserve_escalation()
        controller.record_outcome(had_errors=True, error_count=1, was_escalated=True, reserved=True)
        assert controller.pending_escalations == 0
        assert controller.window.stats().escalated == 3

    def test_release_without_outcome(self, clock):
        controller = self._full_window(clock)
        controller.reserve_escalation()
        controller.release_reservation()
        controller.release_reservation()
        assert controller.pending_escalations == 0
        assert controller.should_escalate(Category.NEEDS_REASONING, 100) is True
