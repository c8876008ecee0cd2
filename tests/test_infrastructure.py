"""Tests for event ingestion, settings and the circuit breaker."""

import pytest

from storefront_analyzer.config import Settings, get_settings, reset_settings
from storefront_analyzer.infrastructure.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitConfig,
    CircuitState,
)
from storefront_analyzer.models.events import EventType, Viewport
from storefront_analyzer.validation.events import InvalidEventInput, parse_events, validate_event


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestParseEvents:
    def test_camel_case_aliases(self):
        [event] = parse_events([{
            "id": "e1", "sessionId": "s1", "type": "rage_click", "timestamp": 10,
            "elementSelector": "#buy", "clickCount": 4, "viewport": {"width": 390, "height": 844},
        }])
        assert event.type is EventType.RAGE_CLICK
        assert event.element_selector == "#buy"
        assert event.click_count == 4
        assert event.viewport == Viewport(390, 844)

    def test_snake_case_accepted(self):
        [event] = parse_events([{"id": "e1", "session_id": "s1", "type": "click", "timestamp": 0}])
        assert event.session_id == "s1"

    def test_unknown_type_becomes_other(self):
        [event] = parse_events([{"id": "e1", "sessionId": "s1", "type": "wiggle", "timestamp": 0}])
        assert event.type is EventType.OTHER

    def test_non_dict_reports_index(self):
        with pytest.raises(InvalidEventInput) as exc:
            parse_events([{"id": "e1", "sessionId": "s1", "type": "click", "timestamp": 0}, 42])
        assert exc.value.index == 1

    def test_scroll_depth_out_of_range(self):
        with pytest.raises(InvalidEventInput):
            parse_events([{"id": "e1", "sessionId": "s1", "type": "scroll_depth", "timestamp": 0,
                           "scrollDepth": 140}])

    def test_validate_event(self):
        ok, err = validate_event({"id": "e1", "sessionId": "s1", "type": "click", "timestamp": 0})
        assert ok and err is None
        ok, err = validate_event({"id": "", "sessionId": "s1", "type": "click", "timestamp": 0})
        assert not ok
        assert err.startswith("validation_error:")


class TestSettings:
    def test_defaults(self, settings):
        assert settings.learning_event_threshold == 50
        assert settings.cluster_method == "greedy"
        assert settings.business_defaults()["average_order_value"] == 75.0

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("STOREFRONT_LEARNING_EVENT_THRESHOLD", "10")
        monkeypatch.setenv("STOREFRONT_CLUSTER_METHOD", "dbscan")
        reset_settings()
        try:
            settings = get_settings()
            assert settings.learning_event_threshold == 10
            assert settings.cluster_method == "dbscan"
        finally:
            reset_settings()

    def test_cached(self):
        reset_settings()
        assert get_settings() is get_settings()
        assert isinstance(get_settings(), Settings)


class TestCircuitBreaker:
    def failing(self):
        raise ConnectionError("down")

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test_open", CircuitConfig(failure_threshold=2), FakeClock())
        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(self.failing)
        assert breaker.state is CircuitState.OPEN
        with pytest.raises(CircuitBreakerOpenError):
            breaker.call(lambda: "ok")

    def test_recovers_through_half_open(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test_recover", CircuitConfig(1, recovery_timeout=10, half_open_max_calls=2), clock)
        with pytest.raises(ConnectionError):
            breaker.call(self.failing)
        clock.now = 10
        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.state is CircuitState.HALF_OPEN
        breaker.call(lambda: "ok")
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test_reopen", CircuitConfig(1, recovery_timeout=5), clock)
        with pytest.raises(ConnectionError):
            breaker.call(self.failing)
        clock.now = 5
        with pytest.raises(ConnectionError):
            breaker.call(self.failing)
        assert breaker.state is CircuitState.OPEN


class TestNonFiniteInput:
    @pytest.mark.parametrize("field,value", [
        ("x", float("nan")),
        ("y", float("inf")),
        ("x", float("-inf")),
        ("scrollDepth", float("nan")),
    ])
    def test_rejected_at_boundary(self, field, value):
        raw = {"id": "e1", "sessionId": "s1", "type": "dead_click", "timestamp": 0, "x": 10, "y": 10}
        raw[field] = value
        with pytest.raises(InvalidEventInput) as exc:
            parse_events([raw])
        assert exc.value.index == 0
