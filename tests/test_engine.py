"""Tests for end-to-end insight generation."""

from conftest import NOW_MS, make_event
from storefront_analyzer.insights.engine import (
    NO_INSIGHTS_SUMMARY,
    format_insights_report,
    generate_insights,
    insights_by_category,
    insights_by_urgency,
)
from storefront_analyzer.insights.types import BusinessConfig, PatternType, ProblemCategory
from storefront_analyzer.models.events import EventType, Viewport


def widespread_rage(sessions=4, per_session=3):
    """Rage clicks on one button in every session: strong enough to be significant."""
    events = []
    for s in range(sessions):
        for n in range(per_session):
            events.append(make_event(EventType.RAGE_CLICK, session_id=f"s{s}", timestamp=NOW_MS - 1000,
                                     x=200 + n, y=150, element_selector="button[data-cta]",
                                     element_text="Shop now", viewport=Viewport(1280, 800),
                                     page_url="/store"))
    return events


class TestInsufficientData:
    def test_no_events(self, settings):
        analysis = generate_insights([], now_ms=NOW_MS, settings=settings)
        assert analysis.total_insights == 0
        assert analysis.summary == "No session data available"

    def test_too_few_events(self, settings):
        events = [make_event(EventType.CLICK) for _ in range(4)]
        analysis = generate_insights(events, now_ms=NOW_MS, settings=settings)
        assert analysis.total_insights == 0
        assert "Not enough events" in analysis.summary
        assert analysis.total_events_analyzed == 4


class TestGenerateInsights:
    def test_widespread_rage_yields_ranked_insight(self, settings):
        analysis = generate_insights(widespread_rage(), BusinessConfig(), now_ms=NOW_MS, settings=settings)
        assert analysis.total_insights >= 1
        insight = analysis.insights[0]
        assert insight.pattern.type is PatternType.RAGE_CLUSTER
        assert insight.category is ProblemCategory.UX_FRICTION
        assert insight.signal.is_significant
        assert insight.event_count == 12
        assert insight.sessions_affected_percent == 100
        assert insight.page_url == "/store"
        assert analysis.top_recommendations[0] == insight.recommendation
        assert analysis.total_estimated_revenue_loss == sum(i.impact.revenue_loss_per_month for i in analysis.insights)
        assert analysis.high_impact_count + analysis.medium_impact_count + analysis.low_impact_count == \
               analysis.total_insights

    def test_weak_patterns_are_filtered(self, settings, rage_scenario):
        analysis = generate_insights(rage_scenario, now_ms=NOW_MS, settings=settings)
        assert analysis.patterns_detected == 1
        assert analysis.total_insights == 0
        assert analysis.summary == NO_INSIGHTS_SUMMARY

    def test_max_insights_respected(self, settings):
        limited = settings.model_copy(update={"max_insights_per_report": 0})
        analysis = generate_insights(widespread_rage(), now_ms=NOW_MS, settings=limited)
        assert analysis.total_insights == 0

    def test_supplied_problems_are_used(self, settings):
        analysis = generate_insights(widespread_rage(), now_ms=NOW_MS, problems=[], settings=settings)
        assert all(i.source_problems == () for i in analysis.insights)

    def test_queries_and_report(self, settings):
        analysis = generate_insights(widespread_rage(), now_ms=NOW_MS, settings=settings)
        assert insights_by_category(analysis, ProblemCategory.UX_FRICTION) == list(analysis.insights)
        assert insights_by_urgency(analysis, 101) == []
        report = format_insights_report(analysis)
        assert report.startswith("# Actionable Insights Report")
        assert "## Top Insights" in report
        assert "Users rapidly clicking in frustration" in report
        assert "Above fold" in report

    def test_to_dict_is_plain_data(self, settings):
        data = generate_insights(widespread_rage(), now_ms=NOW_MS, settings=settings).to_dict()
        insight = data["insights"][0]
        assert insight["category"] == "ux_friction"
        assert insight["location"]["zone"] == "above_fold"
        assert data["business_config"]["average_order_value"] == 75.0
