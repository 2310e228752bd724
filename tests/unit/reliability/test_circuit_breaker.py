"""Tests for the circuit breaker."""

from unittest.mock import patch

from luxloop.reliability.circuit_breaker import CircuitBreaker, CircuitState


def _trip(breaker: CircuitBreaker, count: int | None = None) -> None:
    for i in range(count if count is not None else breaker.failure_threshold):
        breaker.record_failure("patch_script", f"Search content not found {i}")


class TestCircuitBreakerStates:
    """Closed -> open -> half-open -> closed transitions."""

    def test_starts_closed(self):
        breaker = CircuitBreaker()
        assert breaker.state is CircuitState.CLOSED
        assert breaker.can_proceed().allowed is True

    def test_opens_at_threshold(self):
        breaker = CircuitBreaker(failure_threshold=5)
        _trip(breaker, 4)
        assert breaker.state is CircuitState.CLOSED

        outcome = breaker.record_failure("patch_script", "boom")

        assert outcome.halted is True
        assert outcome.requires_user_action is True
        assert breaker.is_open

    def test_open_circuit_blocks_with_last_tool_and_cooldown(self):
        breaker = CircuitBreaker(failure_threshold=2, cooldown_seconds=30)
        _trip(breaker)

        decision = breaker.can_proceed()

        assert decision.allowed is False
        assert "patch_script" in decision.message
        assert "blocked for" in decision.message

    def test_cooldown_moves_to_half_open(self):
        breaker = CircuitBreaker(failure_threshold=2, cooldown_seconds=30)
        with patch("luxloop.reliability.circuit_breaker.time.time", return_value=1000.0):
            _trip(breaker)
        with patch("luxloop.reliability.circuit_breaker.time.time", return_value=1031.0):
            decision = breaker.can_proceed()

        assert decision.allowed is True
        assert breaker.state is CircuitState.HALF_OPEN

    def test_success_in_half_open_closes(self):
        breaker = CircuitBreaker(failure_threshold=2, cooldown_seconds=0)
        _trip(breaker)
        breaker.can_proceed()

        breaker.record_success()

        assert breaker.state is CircuitState.CLOSED
        assert breaker.consecutive_failures == 0

    def test_failure_in_half_open_reopens(self):
        breaker = CircuitBreaker(failure_threshold=2, cooldown_seconds=0)
        _trip(breaker)
        breaker.can_proceed()

        outcome = breaker.record_failure("get_script", "still broken")

        assert outcome.halted is True
        assert breaker.is_open


class TestCircuitBreakerWarnings:
    def test_warning_at_warning_threshold(self):
        breaker = CircuitBreaker(failure_threshold=5, warning_threshold=3)
        _trip(breaker, 2)
        assert breaker.can_proceed().message is None

        outcome = breaker.record_failure("edit_script", "boom")

        assert outcome.halted is False
        assert "3 consecutive failures" in outcome.message
        assert "2 more will block" in breaker.can_proceed().message

    def test_success_resets_count(self):
        breaker = CircuitBreaker()
        _trip(breaker, 3)
        breaker.record_success()
        assert breaker.consecutive_failures == 0

    def test_no_reset_on_success_when_disabled(self):
        breaker = CircuitBreaker(reset_on_success=False)
        _trip(breaker, 3)
        breaker.record_success()
        assert breaker.consecutive_failures == 3


class TestCircuitBreakerTaskBoundary:
    def test_new_task_clears_open_circuit(self):
        breaker = CircuitBreaker(failure_threshold=2)
        _trip(breaker)

        breaker.on_new_task()

        assert breaker.state is CircuitState.CLOSED
        assert breaker.task_failures == 0
        assert breaker.statistics()["times_opened"] == 1

    def test_force_reset(self):
        breaker = CircuitBreaker(failure_threshold=2)
        _trip(breaker)
        breaker.force_reset()
        assert breaker.can_proceed().allowed is True


class TestCircuitBreakerReporting:
    def test_format_for_prompt_quiet_when_healthy(self):
        assert CircuitBreaker().format_for_prompt() is None

    def test_format_for_prompt_when_open(self):
        breaker = CircuitBreaker(failure_threshold=1)
        _trip(breaker)
        assert breaker.format_for_prompt().startswith("[CIRCUIT OPEN]")

    def test_statistics_failure_rate(self):
        breaker = CircuitBreaker()
        _trip(breaker, 1)
        breaker.record_success()
        stats = breaker.statistics()
        assert stats["total_failures"] == 1
        assert stats["total_successes"] == 1
        assert stats["failure_rate"] == 0.5

    def test_snapshot_round_trip_keeps_open_state(self):
        breaker = CircuitBreaker(failure_threshold=2)
        _trip(breaker)

        restored = CircuitBreaker(failure_threshold=2)
        restored.load_dict(breaker.to_dict())

        assert restored.is_open
        assert restored.consecutive_failures == 2
        assert restored.status()["last_failed_tool"] == "patch_script"
