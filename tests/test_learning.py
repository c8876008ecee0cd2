"""Tests for the learning store and the improvement loop."""

import threading

import pytest

from conftest import NOW_MS, make_event
from storefront_analyzer.behavior.classifiers import IdentityClassifier
from storefront_analyzer.behavior.identity import IdentitySource, IdentityState, UserIdentity
from storefront_analyzer.behavior.vector import NEUTRAL_VECTOR
from storefront_analyzer.fixes.mapper import map_identity_to_changes
from storefront_analyzer.learning.loop import (
    ActionType,
    ImprovementLoop,
    TriggerReason,
    UnknownCycleError,
    calculate_improvement,
    calculate_metrics,
    detect_anomalies,
    two_proportion_significance,
)
from storefront_analyzer.learning.store import LearningStore
from storefront_analyzer.models.events import EventType


class Clock:
    def __init__(self, now=NOW_MS):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def loop(settings, clock):
    return ImprovementLoop(LearningStore(), IdentityClassifier(), settings, clock)


def identity(state=IdentityState.CAUTIOUS, confidence=0.85):
    return UserIdentity(state, confidence, "test", NEUTRAL_VECTOR, NOW_MS, IdentitySource.RULE_BASED)


class TestLearningStore:
    def test_confidence_sequence(self):
        """Three approvals at impact 40 raise confidence toward 0.92."""
        store = LearningStore()
        seen = [0.5]
        for _ in range(3):
            seen.append(store.record_outcome(IdentityState.CAUTIOUS, "rule", True, 40, NOW_MS).confidence)
        assert seen[1:] == pytest.approx([0.696, 0.7632, 0.81024])
        assert all(b > a for a, b in zip(seen, seen[1:]))
        assert seen[-1] < 0.92

    def test_rejection_lowers_confidence(self):
        store = LearningStore()
        store.record_outcome(IdentityState.CAUTIOUS, "rule", True, 40, NOW_MS)
        record = store.record_outcome(IdentityState.CAUTIOUS, "rule", False, 0, NOW_MS)
        assert record.times_rejected == 1
        assert record.avg_impact == pytest.approx(12)
        assert record.confidence == pytest.approx(0.5 * 0.6 + 12 / 50 * 0.4)

    def test_impact_score_is_clamped(self):
        record = LearningStore().record_outcome(IdentityState.CONFIDENT, "rule", True, 1000, NOW_MS)
        assert record.confidence == pytest.approx(1.0)

    def test_replayed_decision_is_ignored(self):
        store = LearningStore()
        store.record_outcome(IdentityState.CAUTIOUS, "rule", True, 40, NOW_MS, decision_id="d1")
        record = store.record_outcome(IdentityState.CAUTIOUS, "rule", True, 40, NOW_MS, decision_id="d1")
        assert record.times_applied == 1

    @pytest.mark.parametrize("impact", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_impact_is_rejected(self, impact):
        store = LearningStore()
        with pytest.raises(ValueError):
            store.record_outcome(IdentityState.CAUTIOUS, "rule", True, impact, NOW_MS)
        assert store.get(IdentityState.CAUTIOUS) is None
        store.record_outcome(IdentityState.CAUTIOUS, "rule", True, 40, NOW_MS)
        with pytest.raises(ValueError):
            store.record_outcome(IdentityState.CAUTIOUS, "rule", True, impact, NOW_MS)
        record = store.get(IdentityState.CAUTIOUS)
        assert record.times_applied == 1
        assert record.confidence == pytest.approx(0.696)

    def test_remembered_decisions_are_bounded(self):
        store = LearningStore(decision_limit=2)
        for n in range(3):
            store.record_outcome(IdentityState.CAUTIOUS, "rule", True, 10, NOW_MS, decision_id=f"d{n}")
        # d0 was evicted, so it counts again; d2 is still remembered
        store.record_outcome(IdentityState.CAUTIOUS, "rule", True, 10, NOW_MS, decision_id="d0")
        store.record_outcome(IdentityState.CAUTIOUS, "rule", True, 10, NOW_MS, decision_id="d2")
        assert store.get(IdentityState.CAUTIOUS).times_applied == 4

    def test_concurrent_updates_are_not_lost(self):
        store = LearningStore()

        def approve():
            for _ in range(100):
                store.record_outcome(IdentityState.CAUTIOUS, "rule", True, 10, NOW_MS)

        threads = [threading.Thread(target=approve) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.get(IdentityState.CAUTIOUS).times_applied == 400

    def test_history_is_bounded(self, settings, clock):
        loop = ImprovementLoop(LearningStore(history_limit=2), IdentityClassifier(), settings, clock)
        ids = [loop.run_cycle([make_event(EventType.PAGE_VIEW)]).id for _ in range(3)]
        assert [c.id for c in loop.history()] == ids[1:]


class TestTriggerGate:
    def test_waits_for_events(self, loop):
        decision = loop.should_trigger(10)
        assert not decision.should_trigger
        assert decision.reason == "Waiting for more events (10 < 50)"

    def test_threshold(self, loop):
        decision = loop.should_trigger(50)
        assert decision.should_trigger
        assert decision.trigger is TriggerReason.THRESHOLD
        assert decision.reason == "Event threshold reached (50 >= 50)"

    def test_cooldown_after_cycle(self, loop, clock):
        loop.run_cycle([make_event(EventType.PAGE_VIEW)])
        clock.now += 60_000
        decision = loop.should_trigger(500)
        assert not decision.should_trigger
        assert decision.reason == "Cooldown: 240s remaining"
        clock.now += 240_000
        assert loop.should_trigger(500).should_trigger

    def test_anomaly_bypasses_cooldown(self, loop, clock):
        loop.run_cycle([make_event(EventType.PAGE_VIEW)])
        events = [make_event(EventType.RAGE_CLICK) for _ in range(5)]
        decision = loop.should_trigger(len(events), events)
        assert decision.should_trigger
        assert decision.trigger is TriggerReason.ANOMALY

    @pytest.mark.parametrize("event_type,count,kind", [
        (EventType.RAGE_CLICK, 5, "rage_click_spike"),
        (EventType.BOUNCE, 3, "bounce_spike"),
        (EventType.FORM_ERROR, 4, "form_error_spike"),
    ])
    def test_anomaly_thresholds(self, event_type, count, kind):
        assert detect_anomalies([make_event(event_type)] * count).kind == kind
        assert not detect_anomalies([make_event(event_type)] * (count - 1)).detected

    def test_anomaly_only_looks_at_recent_events(self):
        events = [make_event(EventType.RAGE_CLICK)] * 5 + [make_event(EventType.CLICK)] * 20
        assert not detect_anomalies(events).detected


class TestActionDecision:
    def test_skipped_without_changes(self, loop):
        mapping = map_identity_to_changes(IdentityState.CAUTIOUS, 0.85)
        empty = type(mapping)(mapping.identity_state, 0.85, (), (), "", "", "")
        assert loop.decide_action(identity(), empty).action is ActionType.SKIPPED

    def test_needs_approval_without_history(self, loop):
        mapping = map_identity_to_changes(IdentityState.CAUTIOUS, 0.85)
        decision = loop.decide_action(identity(), mapping)
        assert decision.action is ActionType.PR_APPROVAL
        assert decision.reason == "Requires approval: insufficient confidence for auto-apply"

    def test_auto_apply_with_learned_confidence(self, loop):
        for n in range(10):
            loop.record_outcome(IdentityState.CAUTIOUS, True, 100, decision_id=f"d{n}")
        mapping = map_identity_to_changes(IdentityState.CAUTIOUS, 0.85)
        decision = loop.decide_action(identity(confidence=0.85), mapping)
        assert decision.action is ActionType.REALTIME_VARIANT
        assert decision.reason == "Auto-applying: rule confidence 100%, identity confidence 85%"
        low = loop.decide_action(identity(confidence=0.7), mapping)
        assert low.action is ActionType.PR_APPROVAL


class TestCycles:
    def test_run_cycle(self, loop, clock):
        events = [make_event(EventType.PAGE_VIEW, session_id=f"s{i}") for i in range(3)]
        cycle = loop.run_cycle(events, TriggerReason.MANUAL)
        assert cycle.id == f"cycle_{NOW_MS}_1"
        assert cycle.events_analyzed == 3
        assert cycle.sessions_analyzed == 3
        assert cycle.action_type is ActionType.PR_APPROVAL
        assert loop.store.last_cycle_at == clock.now
        assert cycle.to_dict()["mapping"]["identity_state"] == cycle.identity.state.value

    def test_measure_impact(self, loop):
        cycle = loop.run_cycle([make_event(EventType.PAGE_VIEW)])
        before = [make_event(EventType.PAGE_VIEW, session_id=f"b{i}") for i in range(40)] + \
                 [make_event(EventType.CTA_CLICK, session_id=f"b{i}") for i in range(4)]
        after = [make_event(EventType.PAGE_VIEW, session_id=f"a{i}") for i in range(40)] + \
                [make_event(EventType.CLICK, session_id=f"a{i}", element_selector="button[data-cta]")
                 for i in range(20)]
        measured = loop.measure_impact(cycle.id, before, after)
        assert measured.impact.improvement == pytest.approx(400.0)
        assert measured.impact.is_significant
        assert loop.store.find_cycle(cycle.id).impact is not None

    def test_measure_unknown_cycle(self, loop):
        with pytest.raises(UnknownCycleError):
            loop.measure_impact("cycle_missing", [], [])

    def test_small_samples_are_not_significant(self, loop):
        cycle = loop.run_cycle([make_event(EventType.PAGE_VIEW)])
        measured = loop.measure_impact(cycle.id, [make_event(EventType.PAGE_VIEW)],
                                       [make_event(EventType.CTA_CLICK)])
        assert measured.impact.significance == 0.0
        assert not measured.impact.is_significant

    def test_learning_stats(self, loop):
        for n in range(3):
            loop.record_outcome(IdentityState.CONFIDENT, True, 30)
        loop.record_outcome(IdentityState.CAUTIOUS, False, 0)
        stats = loop.learning_stats()
        assert len(stats.records) == 2
        assert [p["state"] for p in stats.top_performing] == ["confident"]


class TestMetrics:
    def test_metrics(self):
        events = [
            make_event(EventType.PAGE_VIEW, session_id="a", timestamp=0),
            make_event(EventType.CTA_CLICK, session_id="a", timestamp=4000),
            make_event(EventType.BOUNCE, session_id="b"),
            make_event(EventType.PURCHASE, session_id="a", timestamp=6000),
        ]
        metrics = calculate_metrics(events)
        assert metrics.sessions == 2
        assert metrics.cta_clicks == 1
        assert metrics.purchases == 1
        assert metrics.bounce_rate == 0.5
        assert metrics.avg_session_duration == 6000

    def test_improvement_from_zero(self):
        zero = calculate_metrics([make_event(EventType.PAGE_VIEW)])
        some = calculate_metrics([make_event(EventType.CTA_CLICK)])
        assert calculate_improvement(zero, some) == 100.0
        assert calculate_improvement(zero, zero) == 0.0

    def test_significance_degenerate(self):
        empty = calculate_metrics([])
        assert two_proportion_significance(empty, empty) == 0.0
