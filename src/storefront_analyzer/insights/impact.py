"""Business impact estimation for friction patterns."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from .types import (
    DEFAULT_BUSINESS_CONFIG,
    PATTERN_IMPACT_FACTORS,
    BusinessConfig,
    BusinessImpact,
    PageZone,
    Pattern,
    Severity,
    SpatialLocation,
    round_half_up,
)

MAX_CONVERSION_LOSS = 50.0

SEVERITY_CONVERSION_LOSS: Dict[Severity, float] = {
    Severity.CRITICAL: 20,
    Severity.HIGH: 12,
    Severity.MEDIUM: 6,
    Severity.LOW: 2,
}

LOCATION_IMPACT_MULTIPLIER: Dict[PageZone, float] = {
    PageZone.ABOVE_FOLD: 1.5,
    PageZone.MID_PAGE: 1.0,
    PageZone.BELOW_FOLD: 0.7,
    PageZone.FOOTER: 0.4,
}

SEVERITY_URGENCY_BASE: Dict[Severity, int] = {
    Severity.CRITICAL: 80,
    Severity.HIGH: 60,
    Severity.MEDIUM: 40,
    Severity.LOW: 20,
}


def session_coverage_multiplier(session_percent: float) -> float:
    if session_percent >= 80:
        return 1.5
    if session_percent >= 50:
        return 1.2
    if session_percent >= 25:
        return 1.0
    if session_percent >= 10:
        return 0.8
    return 0.5


def calculate_revenue_loss(conversion_loss_percent: float,
                           config: BusinessConfig = DEFAULT_BUSINESS_CONFIG) -> int:
    """Monthly revenue at risk; monotonic in the loss and zero at zero loss."""
    if math.isnan(conversion_loss_percent) or conversion_loss_percent <= 0:
        return 0
    loss = min(conversion_loss_percent, 100.0)
    monthly_revenue = config.monthly_visitors * (config.current_conversion_rate / 100) * config.average_order_value
    return max(round_half_up(monthly_revenue * loss / 100), 0)


def calculate_urgency_score(conversion_loss: float, severity: Severity, session_percent: float,
                            is_above_fold: bool) -> int:
    score = SEVERITY_URGENCY_BASE[severity]
    if session_percent >= 50:
        score += 15
    elif session_percent >= 25:
        score += 8
    if is_above_fold:
        score += 10
    if conversion_loss >= 20:
        score += 10
    elif conversion_loss >= 10:
        score += 5
    return min(max(round_half_up(score), 0), 100)


def calculate_confidence(event_count: int, session_count: int, has_location: bool) -> float:
    confidence = 0.5
    if event_count >= 20:
        confidence += 0.2
    elif event_count >= 10:
        confidence += 0.15
    elif event_count >= 5:
        confidence += 0.1

    if session_count >= 10:
        confidence += 0.2
    elif session_count >= 5:
        confidence += 0.15
    elif session_count >= 3:
        confidence += 0.1

    if has_location:
        confidence += 0.1
    return min(max(confidence, 0.0), 1.0)


def _scaled_loss(base: float, location: Optional[SpatialLocation], session_percent: float) -> float:
    loss = base
    if location is not None:
        loss *= LOCATION_IMPACT_MULTIPLIER[location.zone]
    loss *= session_coverage_multiplier(session_percent)
    return min(max(loss, 0.0), MAX_CONVERSION_LOSS)


def _impact(loss: float, severity: Severity, session_percent: float, event_count: int, session_count: int,
            location: Optional[SpatialLocation], config: BusinessConfig) -> BusinessImpact:
    return BusinessImpact(
        conversion_loss_percent=round_half_up(loss * 10) / 10,
        revenue_loss_per_month=calculate_revenue_loss(loss, config),
        urgency_score=calculate_urgency_score(
            loss, severity, session_percent, location.is_above_fold if location else False
        ),
        confidence=calculate_confidence(event_count, session_count, location is not None),
    )


def calculate_pattern_impact(pattern: Pattern, location: Optional[SpatialLocation],
                             config: BusinessConfig = DEFAULT_BUSINESS_CONFIG) -> BusinessImpact:
    factor = PATTERN_IMPACT_FACTORS[pattern.type]
    pct = pattern.sessions_affected_percent
    loss = _scaled_loss(factor.conversion_loss_percent, location, pct)
    return _impact(loss, factor.base_severity, pct, pattern.occurrences, pattern.sessions_affected, location, config)


def calculate_severity_based_impact(severity: Severity, session_percent: float, event_count: int,
                                    location: Optional[SpatialLocation],
                                    config: BusinessConfig = DEFAULT_BUSINESS_CONFIG) -> BusinessImpact:
    """Impact for a rule-tagged problem that has no pattern behind it."""
    loss = _scaled_loss(SEVERITY_CONVERSION_LOSS[severity], location, session_percent)
    estimated_sessions = max(1, round_half_up(event_count / 5))
    return _impact(loss, severity, session_percent, event_count, estimated_sessions, location, config)


def impact_description(impact: BusinessImpact) -> str:
    loss = impact.conversion_loss_percent
    if loss >= 15:
        parts = [f"Major conversion impact ({loss}% estimated loss)"]
    elif loss >= 8:
        parts = [f"Moderate conversion impact ({loss}% estimated loss)"]
    else:
        parts = [f"Minor conversion impact ({loss}% estimated loss)"]
    if impact.revenue_loss_per_month > 0:
        parts.append(f"Est. ${impact.revenue_loss_per_month}/mo revenue at risk")
    return ". ".join(parts)


def impact_sort_key(impact: BusinessImpact) -> tuple:
    """Ascending key placing the most severe impact first."""
    return (-impact.urgency_score, -impact.conversion_loss_percent, -impact.revenue_loss_per_month)


def compare_impacts(a: BusinessImpact, b: BusinessImpact) -> int:
    ka, kb = impact_sort_key(a), impact_sort_key(b)
    return (ka > kb) - (ka < kb)


@dataclass(frozen=True)
class ImpactTotals:
    total_revenue_loss: int
    average_urgency: int
    max_conversion_loss: float


def aggregate_impacts(impacts: Sequence[BusinessImpact]) -> ImpactTotals:
    if not impacts:
        return ImpactTotals(0, 0, 0.0)
    return ImpactTotals(
        total_revenue_loss=sum(i.revenue_loss_per_month for i in impacts),
        average_urgency=round_half_up(sum(i.urgency_score for i in impacts) / len(impacts)),
        max_conversion_loss=max(i.conversion_loss_percent for i in impacts),
    )
