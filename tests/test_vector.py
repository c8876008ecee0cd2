"""Tests for behavioral vector extraction."""

import pytest

from conftest import NOW_MS, make_event
from storefront_analyzer.behavior.vector import (
    NEUTRAL_VECTOR,
    compute_frustration,
    extract_vector,
    recency_weights,
)
from storefront_analyzer.models.events import EventType


class TestExtractVector:
    def test_empty_events_are_neutral(self):
        """No events yields 0.5 on every dimension."""
        vector = extract_vector([], NOW_MS)
        assert vector == NEUTRAL_VECTOR
        assert vector.values() == (0.5, 0.5, 0.5, 0.5, 0.5)

    def test_dimensions_stay_in_unit_interval(self):
        events = [
            make_event(EventType.HOVER_INTENT, section_id=f"sec{i}", element_selector=f"#el{i}")
            for i in range(20)
        ] + [make_event(EventType.PURCHASE), make_event(EventType.DEAD_CLICK)]
        for value in extract_vector(events, NOW_MS).values():
            assert 0.0 <= value <= 1.0

    def test_pure_for_same_inputs(self):
        events = [make_event(EventType.PRODUCT_VIEW, section_id="products", timestamp=NOW_MS - 1000),
                  make_event(EventType.ADD_TO_CART, timestamp=NOW_MS - 500)]
        assert extract_vector(events, NOW_MS) == extract_vector(list(events), NOW_MS)

    def test_hesitation_events_raise_hesitation(self):
        calm = extract_vector([make_event(EventType.PAGE_VIEW)] * 3, NOW_MS)
        hesitant = extract_vector([make_event(EventType.SCROLL_REVERSAL), make_event(EventType.EXIT_INTENT),
                                   make_event(EventType.PAGE_VIEW)], NOW_MS)
        assert calm.hesitation == 0.0
        assert hesitant.hesitation == pytest.approx(1.0)

    def test_exploration_counts_distinct_sections_and_elements(self):
        events = [make_event(EventType.CLICK, section_id=f"sec{i}", element_selector=f"#b{i}") for i in range(5)]
        # 5/5 sections and 5/10 elements
        assert extract_vector(events, NOW_MS).exploration == pytest.approx(0.75)

    def test_focus_is_share_of_dominant_bucket(self):
        events = [make_event(EventType.CLICK, section_id="hero")] * 3 + [make_event(EventType.CLICK, section_id="faq")]
        assert extract_vector(events, NOW_MS).focus == pytest.approx(0.75)

    def test_velocity_grows_with_funnel_depth(self):
        browsing = extract_vector([make_event(EventType.PAGE_VIEW)], NOW_MS)
        buying = extract_vector([make_event(EventType.PAGE_VIEW), make_event(EventType.ADD_TO_CART),
                                 make_event(EventType.CHECKOUT_START), make_event(EventType.PURCHASE)], NOW_MS)
        assert buying.velocity > browsing.velocity


class TestRecency:
    def test_future_events_count_as_now(self):
        weights = recency_weights([make_event(EventType.CLICK, timestamp=NOW_MS + 60_000)], NOW_MS)
        assert weights[0] == pytest.approx(1.0)

    def test_older_events_weigh_less(self):
        events = [make_event(EventType.CLICK, timestamp=NOW_MS - 300_000), make_event(EventType.CLICK)]
        weights = recency_weights(events, NOW_MS)
        assert weights[0] < weights[1]


class TestFrustration:
    def test_no_events(self):
        assert compute_frustration([], NOW_MS) == 0.0

    def test_rage_clicks_saturate(self):
        events = [make_event(EventType.RAGE_CLICK, click_count=5)] * 3
        assert compute_frustration(events, NOW_MS) == 1.0

    def test_calm_session_has_no_frustration(self):
        assert compute_frustration([make_event(EventType.PAGE_VIEW), make_event(EventType.CLICK)], NOW_MS) == 0.0
