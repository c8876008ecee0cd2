"""Behavioral vector extraction.

Collapses a session's recent events into five bounded dimensions that
summarise how the visitor is moving through the store. Every event is
weighted by exponential recency decay, ``exp(-age / window)``, so the last
few minutes dominate the signature.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Dict, Sequence

import numpy as np

from ..models.events import Event, EventType

logger = logging.getLogger(__name__)

RECENCY_WINDOW_MS = 300_000
NEUTRAL = 0.5

FUNNEL_STAGES = (
    EventType.PAGE_VIEW,
    EventType.SECTION_VIEW,
    EventType.PRODUCT_VIEW,
    EventType.ADD_TO_CART,
    EventType.CHECKOUT_START,
    EventType.PURCHASE,
)
_FUNNEL_INDEX = {stage: idx for idx, stage in enumerate(FUNNEL_STAGES)}

HESITATION_EVENTS = frozenset({
    EventType.SCROLL_REVERSAL,
    EventType.DEAD_CLICK,
    EventType.FORM_BLUR,
    EventType.CHECKOUT_ABANDON,
    EventType.EXIT_INTENT,
})

ENGAGEMENT_WEIGHTS: Dict[EventType, float] = {
    EventType.HOVER_INTENT: 2.0,
    EventType.TEXT_SELECTION: 1.5,
    EventType.PRODUCT_VIEW: 1.0,
    EventType.SECTION_VIEW: 0.5,
}

FRUSTRATION_EVENTS = frozenset({EventType.RAGE_CLICK, EventType.DEAD_CLICK, EventType.DOUBLE_CLICK})

MAX_SECTIONS = 5
MAX_ELEMENTS = 10


@dataclass(frozen=True)
class BehavioralVector:
    exploration: float
    hesitation: float
    engagement: float
    velocity: float
    focus: float

    def values(self) -> tuple[float, float, float, float, float]:
        return (self.exploration, self.hesitation, self.engagement, self.velocity, self.focus)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    def describe(self) -> str:
        return ", ".join(f"{name}={value:.2f}" for name, value in self.to_dict().items())


NEUTRAL_VECTOR = BehavioralVector(NEUTRAL, NEUTRAL, NEUTRAL, NEUTRAL, NEUTRAL)


def recency_weights(events: Sequence[Event], now_ms: int, window_ms: int = RECENCY_WINDOW_MS) -> np.ndarray:
    """Per-event decay weights; events stamped in the future count as age 0."""
    if not events:
        return np.zeros(0)
    timestamps = np.fromiter((e.timestamp for e in events), dtype=float, count=len(events))
    ages = np.clip(now_ms - timestamps, 0.0, None)
    return np.exp(-ages / float(window_ms))


def _clamp01(value: float) -> float:
    return float(min(max(value, 0.0), 1.0))


def exploration_score(events: Sequence[Event], weights: np.ndarray) -> float:
    if weights.sum() <= 0:
        return NEUTRAL
    sections = {e.section_id for e in events if e.section_id}
    elements = {e.element_selector for e in events if e.element_selector}
    section_score = min(len(sections) / MAX_SECTIONS, 1.0)
    element_score = min(len(elements) / MAX_ELEMENTS, 1.0)
    return _clamp01((section_score + element_score) / 2)


def _mass(events: Sequence[Event], weights: np.ndarray, types: frozenset) -> float:
    mask = np.fromiter((e.type in types for e in events), dtype=bool, count=len(events))
    return float(weights[mask].sum())


def hesitation_score(events: Sequence[Event], weights: np.ndarray) -> float:
    total = float(weights.sum())
    if total <= 0:
        return NEUTRAL
    return _clamp01(_mass(events, weights, HESITATION_EVENTS) / total * 3)


def engagement_score(events: Sequence[Event], weights: np.ndarray) -> float:
    total = float(weights.sum())
    if total <= 0:
        return NEUTRAL
    factors = np.fromiter((ENGAGEMENT_WEIGHTS.get(e.type, 0.0) for e in events), dtype=float, count=len(events))
    return _clamp01(float((weights * factors).sum()) / total)


def velocity_score(events: Sequence[Event], weights: np.ndarray) -> float:
    total = float(weights.sum())
    if total <= 0:
        return NEUTRAL
    stages = len(FUNNEL_STAGES)
    progression = 0.0
    max_index = -1
    for event, weight in zip(events, weights):
        idx = _FUNNEL_INDEX.get(event.type)
        if idx is None:
            continue
        progression += weight * (idx + 1)
        max_index = max(max_index, idx)
    progression_score = progression / (total * stages)
    stage_score = max(max_index, 0) / stages
    return _clamp01((progression_score + stage_score) / 2)


def focus_score(events: Sequence[Event], weights: np.ndarray) -> float:
    total = float(weights.sum())
    if total <= 0:
        return NEUTRAL
    buckets: Dict[str, float] = {}
    for event, weight in zip(events, weights):
        key = event.section_id or event.element_selector or "unknown"
        buckets[key] = buckets.get(key, 0.0) + float(weight)
    return _clamp01(max(buckets.values()) / total)


def extract_vector(events: Sequence[Event], now_ms: int, window_ms: int = RECENCY_WINDOW_MS) -> BehavioralVector:
    """Pure mapping from events to a behavioral vector; empty input is neutral."""
    if not events:
        return NEUTRAL_VECTOR
    weights = recency_weights(events, now_ms, window_ms)
    return BehavioralVector(
        exploration=exploration_score(events, weights),
        hesitation=hesitation_score(events, weights),
        engagement=engagement_score(events, weights),
        velocity=velocity_score(events, weights),
        focus=focus_score(events, weights),
    )


def compute_frustration(events: Sequence[Event], now_ms: int, window_ms: int = RECENCY_WINDOW_MS) -> float:
    if not events:
        return 0.0
    weights = recency_weights(events, now_ms, window_ms)
    total = float(weights.sum())
    if total <= 0:
        return 0.0
    mass = 0.0
    for event, weight in zip(events, weights):
        if event.type in FRUSTRATION_EVENTS:
            mass += weight * 2
        if event.type is EventType.RAGE_CLICK and event.click_count:
            mass += weight * event.click_count
    return _clamp01(mass / total * 2)
