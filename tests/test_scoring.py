"""Tests for impact estimation, signal strength and recommendations."""

import pytest
from pydantic import ValidationError

from conftest import NOW_MS, make_event
from storefront_analyzer.insights.impact import (
    aggregate_impacts,
    calculate_confidence,
    calculate_pattern_impact,
    calculate_revenue_loss,
    calculate_severity_based_impact,
    calculate_urgency_score,
    compare_impacts,
    impact_description,
)
from storefront_analyzer.insights.recommendations import (
    expected_improvement,
    generate_recommendation,
    generate_title,
    priority_label,
    select_action,
)
from storefront_analyzer.insights.signal import (
    calculate_pattern_signal,
    consistency_score,
    has_enough_data,
    recency_score,
    signal_description,
)
from storefront_analyzer.insights.spatial import analyze_spatial_location, analyze_viewport
from storefront_analyzer.insights.types import (
    MAX_MONTHLY_VISITORS,
    MAX_ORDER_VALUE,
    BusinessConfig,
    BusinessImpact,
    Coordinates,
    Pattern,
    PatternType,
    Severity,
)
from storefront_analyzer.models.events import EventType

VIEWPORT = analyze_viewport([])


def pattern(kind=PatternType.RAGE_CLUSTER, sessions_affected=3, total_sessions=10, y=100, n=6, **kwargs):
    events = tuple(make_event(EventType.RAGE_CLICK, session_id=f"s{i % sessions_affected}", x=100, y=y,
                              timestamp=NOW_MS) for i in range(n))
    return Pattern(id="p0", type=kind, centroid=Coordinates(100, y), radius=20, total_sessions=total_sessions,
                   sessions_affected=sessions_affected, source_events=events, **kwargs)


class TestRevenueLoss:
    def test_non_finite_loss_is_zero(self):
        assert calculate_revenue_loss(float("nan")) == 0

    def test_largest_config_stays_finite(self):
        config = BusinessConfig(average_order_value=MAX_ORDER_VALUE, monthly_visitors=MAX_MONTHLY_VISITORS,
                                current_conversion_rate=100)
        assert calculate_revenue_loss(1e300, config) == round(MAX_ORDER_VALUE * MAX_MONTHLY_VISITORS)

    @pytest.mark.parametrize("field,value", [
        ("monthly_visitors", 1e200),
        ("average_order_value", float("inf")),
        ("current_conversion_rate", float("nan")),
    ])
    def test_config_rejects_extreme_values(self, field, value):
        with pytest.raises(ValidationError):
            BusinessConfig(**{field: value})

    def test_zero_loss_is_zero(self):
        assert calculate_revenue_loss(0, BusinessConfig()) == 0

    def test_negative_loss_is_clamped(self):
        assert calculate_revenue_loss(-10, BusinessConfig()) == 0

    def test_monotonic(self):
        config = BusinessConfig(average_order_value=80, monthly_visitors=5000, current_conversion_rate=2.5)
        losses = [calculate_revenue_loss(x, config) for x in range(0, 60, 5)]
        assert losses == sorted(losses)

    def test_default_config(self):
        # 1000 visitors * 3% * $75 = $2250/month
        assert calculate_revenue_loss(10) == 225


class TestImpact:
    def test_urgency_bounded(self):
        assert calculate_urgency_score(50, Severity.CRITICAL, 100, True) == 100
        assert calculate_urgency_score(0, Severity.LOW, 0, False) == 20

    @pytest.mark.parametrize("events,sessions,located", [(0, 0, False), (100, 100, True), (5, 3, False)])
    def test_confidence_bounded(self, events, sessions, located):
        assert 0.0 <= calculate_confidence(events, sessions, located) <= 1.0

    def test_pattern_impact_above_fold(self):
        location = analyze_spatial_location(Coordinates(100, 100), VIEWPORT)
        impact = calculate_pattern_impact(pattern(), location)
        # 25 * 1.5 (above fold) * 1.0 (30% coverage)
        assert impact.conversion_loss_percent == 37.5
        assert impact.revenue_loss_per_month == calculate_revenue_loss(37.5)
        assert impact.urgency_score == 100

    def test_loss_is_capped(self):
        location = analyze_spatial_location(Coordinates(100, 100), VIEWPORT)
        impact = calculate_pattern_impact(pattern(sessions_affected=9), location)
        assert impact.conversion_loss_percent == 50.0

    def test_severity_based_impact(self):
        impact = calculate_severity_based_impact(Severity.LOW, 5, 2, None)
        assert impact.conversion_loss_percent == 1.0
        assert 0 <= impact.urgency_score <= 100

    def test_aggregate_empty_and_repeatable(self):
        assert aggregate_impacts([]).total_revenue_loss == 0
        impacts = [BusinessImpact(10, 100, 50, 0.7), BusinessImpact(20, 300, 71, 0.8)]
        assert aggregate_impacts(impacts) == aggregate_impacts(list(impacts))
        assert aggregate_impacts(impacts).average_urgency == 61

    def test_compare_impacts(self):
        worse, milder = BusinessImpact(20, 300, 80, 0.8), BusinessImpact(10, 100, 50, 0.7)
        assert compare_impacts(worse, milder) == -1
        assert compare_impacts(milder, worse) == 1
        assert compare_impacts(worse, worse) == 0

    def test_description(self):
        assert impact_description(BusinessImpact(20, 450, 90, 0.9)).startswith("Major conversion impact")


class TestSignal:
    def test_pattern_signal(self):
        signal = calculate_pattern_signal(pattern(), NOW_MS)
        # frequency 20, coverage 25, severity 20 (medium), recency 30, consistency 30
        assert signal.score == 24
        assert not signal.is_significant

    def test_recency_without_events(self):
        assert recency_score([], NOW_MS) == 10

    def test_recency_buckets(self):
        assert recency_score([NOW_MS - 2 * 3_600_000], NOW_MS) == 25
        assert recency_score([NOW_MS - 200 * 3_600_000], NOW_MS) == 10

    def test_consistency_capped(self):
        assert consistency_score(pattern(element_selectors=("#a",))) == 30

    def test_data_sufficiency(self):
        assert not has_enough_data(10, 0).sufficient
        assert not has_enough_data(4, 2).sufficient
        assert has_enough_data(5, 1).sufficient

    def test_description(self):
        assert signal_description(calculate_pattern_signal(pattern(), NOW_MS)) == "Very weak signal"


class TestRecommendations:
    def test_rage_action_names_element(self):
        p = pattern(element_texts=("Add to cart",))
        assert select_action(p) == 'Investigate why "Add to cart" is frustrating users. Add immediate visual feedback on click.'

    def test_dead_click_on_product_card(self):
        p = pattern(PatternType.DEAD_CLICK_HOTSPOT, element_texts=("$49 Jacket",))
        assert select_action(p).startswith("Make entire card/row clickable")

    @pytest.mark.parametrize("affected,expected", [(6, 72), (3, 60), (0, 48)])
    def test_improvement_scaling(self, affected, expected):
        p = pattern(sessions_affected=max(affected, 1), total_sessions=10 if affected else 20)
        assert expected_improvement(p) == expected

    def test_below_fold_cta_gets_target(self):
        p = pattern(PatternType.CTA_INVISIBILITY, y=1200)
        location = analyze_spatial_location(p.centroid, VIEWPORT)
        impact = calculate_pattern_impact(p, location)
        rec = generate_recommendation(p, location, impact, VIEWPORT)
        assert rec.target_location is not None
        assert rec.target_location.suggested_y == 400
        assert rec.priority == impact.urgency_score

    def test_titles(self):
        assert generate_title(pattern(element_texts=("Buy",)), None) == 'Many Users Frustrated by "Buy"'
        assert generate_title(pattern(PatternType.SCROLL_ABANDONMENT), None) == \
               "30% of Users Never See Below-Fold Content"


def test_priority_labels():
    assert [priority_label(p) for p in (85, 60, 40, 10)] == [
        "Critical Priority", "High Priority", "Medium Priority", "Low Priority",
    ]
