"""Tests for the rule-based problem finder."""

from conftest import NOW_MS, make_event
from storefront_analyzer.insights.problems import (
    aggregate_events,
    calculate_priority,
    find_problems,
    frustration_signals,
    events_frame,
)
from storefront_analyzer.insights.types import ProblemCategory, Severity
from storefront_analyzer.models.events import EventType


def bouncing_sessions(n):
    return [make_event(EventType.PAGE_VIEW, session_id=f"b{i}") for i in range(n)]


class TestAggregation:
    def test_empty(self):
        summary = aggregate_events([])
        assert summary.total_sessions == 0
        assert summary.bounce_rate == 0.0

    def test_bounce_and_cta_rates(self):
        events = bouncing_sessions(2) + [
            make_event(EventType.PAGE_VIEW, session_id="buyer", timestamp=NOW_MS),
            make_event(EventType.CTA_CLICK, session_id="buyer", timestamp=NOW_MS + 10_000),
            make_event(EventType.PAGE_VIEW, session_id="leaver"),
            make_event(EventType.BOUNCE, session_id="leaver"),
        ]
        summary = aggregate_events(events)
        assert summary.total_sessions == 4
        assert summary.bounce_rate == 75.0
        assert summary.cta_click_rate == 25.0
        assert summary.avg_time_on_page == 2.5

    def test_scroll_milestones(self):
        events = [
            make_event(EventType.SCROLL_DEPTH, session_id="a", scroll_depth=60),
            make_event(EventType.SCROLL_DEPTH, session_id="b", scroll_depth=20),
        ]
        assert aggregate_events(events).scroll_reached == {25: 50, 50: 50, 75: 0, 100: 0}

    def test_frustration_signals_per_selector(self):
        events = [make_event(EventType.DEAD_CLICK, element_selector="#a")] * 2 + \
                 [make_event(EventType.RAGE_CLICK, element_selector="#b")]
        signals = frustration_signals(events_frame(events))
        assert list(signals["selector"]) == ["#a", "#b"]
        assert list(signals["dead_clicks"]) == [2, 0]


class TestFindProblems:
    def test_no_sessions(self):
        analysis = find_problems([], NOW_MS)
        assert analysis.problems == []
        assert analysis.summary == "No session data available for analysis."

    def test_high_bounce_is_critical(self):
        analysis = find_problems(bouncing_sessions(10), NOW_MS)
        dropoff = analysis.by_category(ProblemCategory.ENGAGEMENT_DROPOFF)
        assert dropoff
        assert dropoff[0].severity is Severity.CRITICAL

    def test_dead_click_hotspot_problem(self):
        events = [make_event(EventType.DEAD_CLICK, session_id=f"s{i}", element_selector="div.card",
                             element_text="$49 Jacket") for i in range(5)]
        friction = find_problems(events, NOW_MS).by_category(ProblemCategory.UX_FRICTION)
        assert friction
        assert friction[0].severity is Severity.HIGH

    def test_sorted_by_priority(self):
        problems = find_problems(bouncing_sessions(10), NOW_MS).problems
        priorities = [p.priority for p in problems]
        assert priorities == sorted(priorities, reverse=True)

    def test_ids_are_deterministic(self):
        events = bouncing_sessions(10)
        assert [p.id for p in find_problems(events, NOW_MS).problems] == \
               [p.id for p in find_problems(events, NOW_MS).problems]


def test_priority_is_capped():
    assert calculate_priority(Severity.CRITICAL, 100) == 100
    assert calculate_priority(Severity.LOW, 0) == 10
