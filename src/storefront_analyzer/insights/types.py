"""Shared types for the insight pipeline."""
from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..models.events import Event


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ProblemCategory(str, Enum):
    UX_FRICTION = "ux_friction"
    ENGAGEMENT_DROPOFF = "engagement_dropoff"
    CONVERSION_BLOCKER = "conversion_blocker"
    NAVIGATION_ISSUE = "navigation_issue"
    CONTENT_ISSUE = "content_issue"


class PatternType(str, Enum):
    RAGE_CLUSTER = "rage_cluster"
    DEAD_CLICK_HOTSPOT = "dead_click_hotspot"
    SCROLL_ABANDONMENT = "scroll_abandonment"
    ELEMENT_CONFUSION = "element_confusion"
    PRICE_ANXIETY = "price_anxiety"
    CTA_INVISIBILITY = "cta_invisibility"
    CHECKOUT_FRICTION = "checkout_friction"


class PageZone(str, Enum):
    ABOVE_FOLD = "above_fold"
    MID_PAGE = "mid_page"
    BELOW_FOLD = "below_fold"
    FOOTER = "footer"


class EffortLevel(str, Enum):
    TRIVIAL = "trivial"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass(frozen=True)
class ImpactFactor:
    conversion_loss_percent: float
    base_severity: Severity


PATTERN_IMPACT_FACTORS: Dict[PatternType, ImpactFactor] = {
    PatternType.RAGE_CLUSTER: ImpactFactor(25, Severity.CRITICAL),
    PatternType.DEAD_CLICK_HOTSPOT: ImpactFactor(15, Severity.HIGH),
    PatternType.CTA_INVISIBILITY: ImpactFactor(35, Severity.CRITICAL),
    PatternType.CHECKOUT_FRICTION: ImpactFactor(40, Severity.CRITICAL),
    PatternType.SCROLL_ABANDONMENT: ImpactFactor(20, Severity.HIGH),
    PatternType.ELEMENT_CONFUSION: ImpactFactor(10, Severity.MEDIUM),
    PatternType.PRICE_ANXIETY: ImpactFactor(15, Severity.MEDIUM),
}


@dataclass(frozen=True)
class Coordinates:
    x: float
    y: float


@dataclass(frozen=True)
class ZoneBreakpoints:
    above_fold: int
    mid_page: int
    below_fold: int
    footer: int


@dataclass(frozen=True)
class ViewportAnalysis:
    average_width: int
    average_height: int
    fold_line: int
    page_height: int
    zone_breakpoints: ZoneBreakpoints


@dataclass(frozen=True)
class SpatialLocation:
    zone: PageZone
    coordinates: Coordinates
    description: str
    viewport_percentage_x: int
    viewport_percentage_y: int
    fold_line: int
    is_above_fold: bool


@dataclass(frozen=True)
class TargetLocation:
    zone: PageZone
    description: str
    suggested_y: Optional[int] = None


@dataclass(frozen=True)
class Problem:
    """A rule-tagged issue found by the problem finder."""
    id: str
    category: ProblemCategory
    severity: Severity
    title: str
    description: str
    evidence: Dict[str, Any]
    affected_sessions: int
    affected_sessions_percent: float
    recommendation: str
    priority: int


@dataclass(frozen=True)
class Pattern:
    id: str
    type: PatternType
    centroid: Coordinates
    radius: float
    total_sessions: int
    sessions_affected: int
    element_selectors: Tuple[str, ...] = ()
    element_texts: Tuple[str, ...] = ()
    source_events: Tuple[Event, ...] = ()
    related_problems: Tuple[Problem, ...] = ()

    @property
    def occurrences(self) -> int:
        return len(self.source_events)

    @property
    def sessions_affected_percent(self) -> float:
        if self.total_sessions <= 0:
            return 0.0
        return self.sessions_affected / self.total_sessions * 100

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "centroid": asdict(self.centroid),
            "radius": self.radius,
            "occurrences": self.occurrences,
            "sessions_affected": self.sessions_affected,
            "sessions_affected_percent": round(self.sessions_affected_percent, 2),
            "element_selectors": list(self.element_selectors),
            "element_texts": list(self.element_texts),
            "related_problems": [p.id for p in self.related_problems],
        }


MAX_ORDER_VALUE = 1_000_000.0
MAX_MONTHLY_VISITORS = 10_000_000_000.0


class BusinessConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    average_order_value: float = Field(75.0, ge=0, le=MAX_ORDER_VALUE, allow_inf_nan=False)
    monthly_visitors: float = Field(1000, ge=0, le=MAX_MONTHLY_VISITORS, allow_inf_nan=False)
    current_conversion_rate: float = Field(3.0, ge=0, le=100, allow_inf_nan=False)


DEFAULT_BUSINESS_CONFIG = BusinessConfig()


@dataclass(frozen=True)
class BusinessImpact:
    conversion_loss_percent: float
    revenue_loss_per_month: int
    urgency_score: int
    confidence: float
    trend: str = "unknown"


@dataclass(frozen=True)
class SignalFactors:
    frequency: int
    session_coverage: int
    severity: int
    recency: int
    consistency: int


@dataclass(frozen=True)
class SignalStrength:
    score: int
    factors: SignalFactors
    is_significant: bool


@dataclass(frozen=True)
class ExpectedOutcome:
    metric: str
    improvement_percent: int
    description: str


@dataclass(frozen=True)
class Recommendation:
    action: str
    current_location: Optional[SpatialLocation]
    target_location: Optional[TargetLocation]
    expected_outcome: ExpectedOutcome
    effort: EffortLevel
    priority: int


@dataclass(frozen=True)
class Insight:
    id: str
    title: str
    summary: str
    category: ProblemCategory
    severity: Severity
    location: SpatialLocation
    impact: BusinessImpact
    recommendation: Recommendation
    signal: SignalStrength
    pattern: Pattern
    source_problems: Tuple[Problem, ...]
    event_count: int
    sessions_affected: int
    sessions_affected_percent: float
    timestamp: int
    page_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "summary": self.summary,
            "category": self.category.value,
            "severity": self.severity.value,
            "location": _jsonable(asdict(self.location)),
            "impact": asdict(self.impact),
            "recommendation": _jsonable(asdict(self.recommendation)),
            "signal": asdict(self.signal),
            "pattern": self.pattern.to_dict(),
            "source_problems": [p.id for p in self.source_problems],
            "event_count": self.event_count,
            "sessions_affected": self.sessions_affected,
            "sessions_affected_percent": round(self.sessions_affected_percent, 2),
            "timestamp": self.timestamp,
            "page_url": self.page_url,
        }


@dataclass(frozen=True)
class InsightsAnalysis:
    timestamp: int
    total_insights: int
    high_impact_count: int
    medium_impact_count: int
    low_impact_count: int
    total_estimated_revenue_loss: int
    top_recommendations: Tuple[Recommendation, ...]
    viewport: ViewportAnalysis
    business_config: BusinessConfig
    insights: Tuple[Insight, ...]
    summary: str
    total_events_analyzed: int
    total_sessions_analyzed: int
    patterns_detected: int
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "total_insights": self.total_insights,
            "high_impact_count": self.high_impact_count,
            "medium_impact_count": self.medium_impact_count,
            "low_impact_count": self.low_impact_count,
            "total_estimated_revenue_loss": self.total_estimated_revenue_loss,
            "top_recommendations": [_jsonable(asdict(r)) for r in self.top_recommendations],
            "viewport": asdict(self.viewport),
            "business_config": self.business_config.model_dump(),
            "insights": [i.to_dict() for i in self.insights],
            "summary": self.summary,
            "total_events_analyzed": self.total_events_analyzed,
            "total_sessions_analyzed": self.total_sessions_analyzed,
            "patterns_detected": self.patterns_detected,
            "notes": list(self.notes),
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
