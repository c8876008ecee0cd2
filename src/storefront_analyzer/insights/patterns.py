"""Friction pattern detection.

Five detectors turn raw friction events into spatially located patterns. The
aggregator links rule-based problems to each pattern and orders the result
by occurrences times session coverage.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Literal, Optional, Sequence

from prometheus_client import Counter

from ..config import Settings
from ..models.events import DEFAULT_VIEWPORT, Event, EventType
from .spatial import (
    calculate_centroid,
    calculate_cluster_radius,
    cluster_events_by_proximity,
    event_coordinates,
)
from .types import Coordinates, Pattern, PatternType, Problem, ProblemCategory

logger = logging.getLogger(__name__)

PATTERNS_DETECTED = Counter("storefront_patterns_detected_total", "Friction patterns detected", ["type"])

SHALLOW_SCROLL_DEPTH = 50
ANXIOUS_PRICE_CHECKS = 5
LENIENT_SESSION_PERCENT = 1.0

PATTERN_DESCRIPTIONS: Dict[PatternType, str] = {
    PatternType.RAGE_CLUSTER: "Users rapidly clicking in frustration",
    PatternType.DEAD_CLICK_HOTSPOT: "Users clicking expecting interaction",
    PatternType.CTA_INVISIBILITY: "CTA not being seen or clicked",
    PatternType.CHECKOUT_FRICTION: "Friction in checkout process",
    PatternType.SCROLL_ABANDONMENT: "Users not scrolling to content",
    PatternType.ELEMENT_CONFUSION: "Users confused about interactivity",
    PatternType.PRICE_ANXIETY: "Users showing price-checking behavior",
}

_CATEGORY_LINKS = {
    PatternType.RAGE_CLUSTER: ProblemCategory.UX_FRICTION,
    PatternType.DEAD_CLICK_HOTSPOT: ProblemCategory.UX_FRICTION,
    PatternType.SCROLL_ABANDONMENT: ProblemCategory.ENGAGEMENT_DROPOFF,
    PatternType.PRICE_ANXIETY: ProblemCategory.CONVERSION_BLOCKER,
}


@dataclass(frozen=True)
class DetectionOptions:
    cluster_radius: float = 50.0
    cluster_method: Literal["greedy", "dbscan"] = "greedy"
    min_occurrences: int = 3
    min_session_percent: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "DetectionOptions":
        return cls(
            cluster_radius=settings.cluster_radius,
            cluster_method=settings.cluster_method,
            min_occurrences=settings.min_occurrences_for_pattern,
            min_session_percent=settings.min_session_percent_for_pattern,
        )


DEFAULT_OPTIONS = DetectionOptions()


def _unique(values: Iterable[Optional[str]]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(v for v in values if v))


def _session_percent(sessions: int, total_sessions: int) -> float:
    return sessions / total_sessions * 100 if total_sessions else 0.0


def _located_pattern(
    pattern_type: PatternType,
    index: int,
    events: Sequence[Event],
    total_sessions: int,
    selectors: Optional[tuple[str, ...]] = None,
) -> Optional[Pattern]:
    coords = event_coordinates(events)
    if not coords:
        return None
    centroid = calculate_centroid(coords)
    return Pattern(
        id=f"pattern_{pattern_type.value}_{index}",
        type=pattern_type,
        centroid=centroid,
        radius=calculate_cluster_radius(coords, centroid),
        total_sessions=total_sessions,
        sessions_affected=len({e.session_id for e in events}),
        element_selectors=selectors if selectors is not None else _unique(e.element_selector for e in events),
        element_texts=_unique(e.element_text for e in events),
        source_events=tuple(events),
    )


def detect_rage_clusters(events: Sequence[Event], total_sessions: int,
                         options: DetectionOptions = DEFAULT_OPTIONS) -> List[Pattern]:
    rage_clicks = [e for e in events if e.type is EventType.RAGE_CLICK]
    if not rage_clicks:
        return []
    patterns: List[Pattern] = []
    for cluster in cluster_events_by_proximity(rage_clicks, options.cluster_radius, options.cluster_method):
        if len(cluster) < options.min_occurrences:
            continue
        sessions = len({e.session_id for e in cluster})
        if _session_percent(sessions, total_sessions) < options.min_session_percent:
            continue
        pattern = _located_pattern(PatternType.RAGE_CLUSTER, len(patterns), cluster, total_sessions)
        if pattern:
            patterns.append(pattern)
    return patterns


def detect_dead_click_hotspots(events: Sequence[Event], total_sessions: int,
                               options: DetectionOptions = DEFAULT_OPTIONS) -> List[Pattern]:
    """Selector groups first, then spatial clusters for clicks without a shared selector."""
    dead_clicks = [e for e in events if e.type is EventType.DEAD_CLICK]
    if not dead_clicks:
        return []

    by_selector: Dict[str, List[Event]] = {}
    for event in dead_clicks:
        by_selector.setdefault(event.element_selector or "unknown", []).append(event)

    patterns: List[Pattern] = []
    for selector, group in by_selector.items():
        if len(group) < options.min_occurrences:
            continue
        sessions = len({e.session_id for e in group})
        if _session_percent(sessions, total_sessions) < LENIENT_SESSION_PERCENT:
            continue
        pattern = _located_pattern(PatternType.DEAD_CLICK_HOTSPOT, len(patterns), group, total_sessions,
                                   selectors=(selector,))
        if pattern:
            patterns.append(pattern)

    covered = {s for p in patterns for s in p.element_selectors}
    for cluster in cluster_events_by_proximity(dead_clicks, options.cluster_radius, options.cluster_method):
        if covered.intersection(e.element_selector for e in cluster if e.element_selector):
            continue
        if len(cluster) < options.min_occurrences:
            continue
        sessions = len({e.session_id for e in cluster})
        if _session_percent(sessions, total_sessions) < LENIENT_SESSION_PERCENT:
            continue
        pattern = _located_pattern(PatternType.DEAD_CLICK_HOTSPOT, len(patterns), cluster, total_sessions)
        if pattern:
            patterns.append(pattern)
    return patterns


def detect_scroll_abandonment(events: Sequence[Event], total_sessions: int,
                              options: DetectionOptions = DEFAULT_OPTIONS) -> List[Pattern]:
    scroll_events = [e for e in events if e.type is EventType.SCROLL_DEPTH]
    if not scroll_events:
        return []

    deepest: Dict[str, Event] = {}
    for event in scroll_events:
        current = deepest.get(event.session_id)
        if current is None or (event.scroll_depth or 0) > (current.scroll_depth or 0):
            deepest[event.session_id] = event
    shallow = [e for e in deepest.values() if (e.scroll_depth or 0) < SHALLOW_SCROLL_DEPTH]

    if len(shallow) < options.min_occurrences:
        return []
    if _session_percent(len(shallow), total_sessions) < options.min_session_percent:
        return []

    viewport = next((e.viewport for e in events if e.viewport), None) or DEFAULT_VIEWPORT
    return [Pattern(
        id=f"pattern_{PatternType.SCROLL_ABANDONMENT.value}_0",
        type=PatternType.SCROLL_ABANDONMENT,
        centroid=Coordinates(viewport.width / 2, viewport.height),
        radius=viewport.width / 2,
        total_sessions=total_sessions,
        sessions_affected=len(shallow),
        source_events=tuple(shallow),
    )]


def detect_element_confusion(events: Sequence[Event], total_sessions: int,
                             options: DetectionOptions = DEFAULT_OPTIONS) -> List[Pattern]:
    groups: Dict[str, Dict[EventType, List[Event]]] = {}
    for event in events:
        if event.type not in (EventType.DEAD_CLICK, EventType.DOUBLE_CLICK):
            continue
        bucket = groups.setdefault(event.element_selector or "unknown",
                                   {EventType.DEAD_CLICK: [], EventType.DOUBLE_CLICK: []})
        bucket[event.type].append(event)

    patterns: List[Pattern] = []
    for selector, bucket in groups.items():
        dead, double = bucket[EventType.DEAD_CLICK], bucket[EventType.DOUBLE_CLICK]
        if len(dead) < 2 or len(double) < 1:
            continue
        combined = dead + double
        sessions = len({e.session_id for e in combined})
        if _session_percent(sessions, total_sessions) < LENIENT_SESSION_PERCENT:
            continue
        pattern = _located_pattern(PatternType.ELEMENT_CONFUSION, len(patterns), combined, total_sessions,
                                   selectors=(selector,))
        if pattern:
            patterns.append(pattern)
    return patterns


def detect_price_anxiety(events: Sequence[Event], total_sessions: int,
                         options: DetectionOptions = DEFAULT_OPTIONS) -> List[Pattern]:
    per_session: Dict[str, List[Event]] = {}
    for event in events:
        if event.type is EventType.PRICE_CHECK:
            per_session.setdefault(event.session_id, []).append(event)

    anxious = [checks for checks in per_session.values() if len(checks) >= ANXIOUS_PRICE_CHECKS]
    if not anxious:
        return []
    if _session_percent(len(anxious), total_sessions) < LENIENT_SESSION_PERCENT:
        return []

    anxious_events = [e for checks in anxious for e in checks]
    coords = event_coordinates(anxious_events)
    centroid = calculate_centroid(coords)
    return [Pattern(
        id=f"pattern_{PatternType.PRICE_ANXIETY.value}_0",
        type=PatternType.PRICE_ANXIETY,
        centroid=centroid,
        radius=calculate_cluster_radius(coords, centroid),
        total_sessions=total_sessions,
        sessions_affected=len(anxious),
        element_selectors=_unique(e.element_selector for e in anxious_events),
        element_texts=_unique(e.element_text for e in anxious_events),
        source_events=tuple(anxious_events),
    )]


def _related_problems(pattern: Pattern, problems: Sequence[Problem]) -> tuple[Problem, ...]:
    linked_category = _CATEGORY_LINKS.get(pattern.type)
    selectors = set(pattern.element_selectors)
    related = []
    for problem in problems:
        selector_match = any(v in selectors for v in problem.evidence.values() if isinstance(v, str))
        if selector_match or problem.category is linked_category:
            related.append(problem)
    return tuple(related)


def detect_all_patterns(
    events: Sequence[Event],
    problems: Sequence[Problem] = (),
    options: DetectionOptions = DEFAULT_OPTIONS,
) -> List[Pattern]:
    total_sessions = len({e.session_id for e in events})
    if total_sessions == 0:
        return []

    patterns = [
        *detect_rage_clusters(events, total_sessions, options),
        *detect_dead_click_hotspots(events, total_sessions, options),
        *detect_scroll_abandonment(events, total_sessions, options),
        *detect_element_confusion(events, total_sessions, options),
        *detect_price_anxiety(events, total_sessions, options),
    ]
    patterns = [replace(p, related_problems=_related_problems(p, problems)) for p in patterns]
    # sorted() is stable, so ties keep detector order
    patterns = sorted(patterns, key=lambda p: p.occurrences * p.sessions_affected_percent, reverse=True)

    for pattern in patterns:
        PATTERNS_DETECTED.labels(type=pattern.type.value).inc()
    logger.debug(f"Detected {len(patterns)} patterns across {total_sessions} sessions")
    return patterns


def pattern_description(pattern_type: PatternType) -> str:
    return PATTERN_DESCRIPTIONS[pattern_type]
