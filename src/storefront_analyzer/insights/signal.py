"""Signal strength scoring and noise filtering for insights."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .types import (
    PATTERN_IMPACT_FACTORS,
    Insight,
    Pattern,
    Severity,
    SignalFactors,
    SignalStrength,
    round_half_up,
)

MIN_SIGNAL_STRENGTH = 30
MAX_INSIGHTS_PER_REPORT = 10
MIN_EVENTS_FOR_ANALYSIS = 5
HOUR_MS = 3_600_000

SIGNAL_WEIGHTS = {
    "frequency": 0.20,
    "session_coverage": 0.25,
    "severity": 0.25,
    "recency": 0.15,
    "consistency": 0.15,
}

SEVERITY_SCORE = {Severity.CRITICAL: 40, Severity.HIGH: 30, Severity.MEDIUM: 20, Severity.LOW: 10}
NEUTRAL_FACTOR = 20


def frequency_score(occurrences: int) -> int:
    if occurrences >= 20:
        return 30
    if occurrences >= 10:
        return 25
    if occurrences >= 5:
        return 20
    if occurrences >= 3:
        return 15
    return 10


def session_coverage_score(session_percent: float) -> int:
    if session_percent >= 50:
        return 30
    if session_percent >= 25:
        return 25
    if session_percent >= 10:
        return 20
    if session_percent >= 5:
        return 15
    return 10


def recency_score(timestamps: Iterable[int], now_ms: int) -> int:
    latest = max(timestamps, default=None)
    if latest is None:
        return 10
    hours = (now_ms - latest) / HOUR_MS
    if hours < 1:
        return 30
    if hours < 24:
        return 25
    if hours < 72:
        return 20
    if hours < 168:
        return 15
    return 10


def consistency_score(pattern: Pattern) -> int:
    score = 20
    selectors = len(pattern.element_selectors)
    if selectors == 1:
        score += 10
    elif selectors <= 3:
        score += 5
    if pattern.radius <= 25:
        score += 10
    elif pattern.radius <= 50:
        score += 5
    return min(score, 30)


def _combine(factors: SignalFactors, threshold: int) -> SignalStrength:
    raw = (
        factors.frequency * SIGNAL_WEIGHTS["frequency"]
        + factors.session_coverage * SIGNAL_WEIGHTS["session_coverage"]
        + factors.severity * SIGNAL_WEIGHTS["severity"]
        + factors.recency * SIGNAL_WEIGHTS["recency"]
        + factors.consistency * SIGNAL_WEIGHTS["consistency"]
    )
    score = min(max(round_half_up(raw), 0), 100)
    return SignalStrength(score=score, factors=factors, is_significant=score >= threshold)


def calculate_pattern_signal(pattern: Pattern, now_ms: int, threshold: int = MIN_SIGNAL_STRENGTH) -> SignalStrength:
    """Severity comes from the first related problem, else medium."""
    severity = pattern.related_problems[0].severity if pattern.related_problems else Severity.MEDIUM
    factors = SignalFactors(
        frequency=frequency_score(pattern.occurrences),
        session_coverage=session_coverage_score(pattern.sessions_affected_percent),
        severity=SEVERITY_SCORE[severity],
        recency=recency_score((e.timestamp for e in pattern.source_events), now_ms),
        consistency=consistency_score(pattern),
    )
    return _combine(factors, threshold)


def calculate_insight_signal(
    severity: Severity,
    event_count: int,
    session_percent: float,
    pattern: Optional[Pattern],
    now_ms: int,
    threshold: int = MIN_SIGNAL_STRENGTH,
) -> SignalStrength:
    if pattern is not None:
        recency = recency_score((e.timestamp for e in pattern.source_events), now_ms)
        consistency = consistency_score(pattern)
    else:
        recency = consistency = NEUTRAL_FACTOR
    factors = SignalFactors(
        frequency=frequency_score(event_count),
        session_coverage=session_coverage_score(session_percent),
        severity=SEVERITY_SCORE[severity],
        recency=recency,
        consistency=consistency,
    )
    return _combine(factors, threshold)


def pattern_base_severity(pattern: Pattern) -> Severity:
    return PATTERN_IMPACT_FACTORS[pattern.type].base_severity


def sort_by_signal_and_impact(insights: Sequence[Insight]) -> List[Insight]:
    return sorted(
        insights,
        key=lambda i: (-i.impact.urgency_score, -i.signal.score, -i.impact.revenue_loss_per_month),
    )


def filter_and_prioritize(
    insights: Sequence[Insight],
    max_count: int = MAX_INSIGHTS_PER_REPORT,
) -> List[Insight]:
    significant = [i for i in insights if i.signal.is_significant]
    return sort_by_signal_and_impact(significant)[:max_count]


def signal_description(signal: SignalStrength) -> str:
    if signal.score >= 80:
        return "Very strong signal"
    if signal.score >= 60:
        return "Strong signal"
    if signal.score >= 40:
        return "Moderate signal"
    if signal.score >= 30:
        return "Weak signal"
    return "Very weak signal"


@dataclass(frozen=True)
class DataSufficiency:
    sufficient: bool
    reason: Optional[str] = None


def has_enough_data(event_count: int, session_count: int) -> DataSufficiency:
    if session_count < 1:
        return DataSufficiency(False, "No session data available")
    if event_count < MIN_EVENTS_FOR_ANALYSIS:
        return DataSufficiency(False, "Not enough events for meaningful analysis")
    return DataSufficiency(True)
