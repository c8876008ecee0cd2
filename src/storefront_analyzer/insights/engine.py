"""Insight assembly.

Runs the full pipeline over a batch of events: viewport analysis, rule-based
problem tagging, pattern detection, then per-pattern location, impact,
recommendation and signal scoring. Noise is filtered out and the survivors
are ranked into an ``InsightsAnalysis``.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from prometheus_client import Counter, Histogram

from ..config import Settings, get_settings
from ..models.events import Event
from .impact import aggregate_impacts, calculate_pattern_impact
from .patterns import DetectionOptions, detect_all_patterns, pattern_description
from .problems import find_problems
from .recommendations import (
    effort_description,
    generate_recommendation,
    generate_summary,
    generate_title,
    priority_label,
)
from .signal import calculate_insight_signal, filter_and_prioritize, has_enough_data, pattern_base_severity
from .spatial import analyze_spatial_location, analyze_viewport, format_location
from .types import (
    DEFAULT_BUSINESS_CONFIG,
    BusinessConfig,
    Insight,
    InsightsAnalysis,
    Pattern,
    PatternType,
    Problem,
    ProblemCategory,
    ViewportAnalysis,
)

logger = logging.getLogger(__name__)

INSIGHTS_GENERATED = Counter("storefront_insights_generated_total", "Insights emitted after filtering", ["category"])
INSIGHT_RUNS = Counter("storefront_insight_runs_total", "Insight generation runs", ["outcome"])
INSIGHT_LATENCY = Histogram("storefront_insight_generation_seconds", "Insight generation latency")

HIGH_IMPACT_URGENCY = 70
MEDIUM_IMPACT_URGENCY = 40
TOP_RECOMMENDATIONS = 3
NO_INSIGHTS_SUMMARY = "No significant insights detected. Continue monitoring for patterns."

PATTERN_CATEGORIES = {
    PatternType.RAGE_CLUSTER: ProblemCategory.UX_FRICTION,
    PatternType.DEAD_CLICK_HOTSPOT: ProblemCategory.UX_FRICTION,
    PatternType.ELEMENT_CONFUSION: ProblemCategory.UX_FRICTION,
    PatternType.CTA_INVISIBILITY: ProblemCategory.CONVERSION_BLOCKER,
    PatternType.CHECKOUT_FRICTION: ProblemCategory.CONVERSION_BLOCKER,
    PatternType.PRICE_ANXIETY: ProblemCategory.CONVERSION_BLOCKER,
    PatternType.SCROLL_ABANDONMENT: ProblemCategory.ENGAGEMENT_DROPOFF,
}


def pattern_to_insight(
    pattern: Pattern,
    viewport: ViewportAnalysis,
    config: BusinessConfig,
    index: int,
    now_ms: int,
    min_signal: int,
) -> Insight:
    location = analyze_spatial_location(pattern.centroid, viewport)
    impact = calculate_pattern_impact(pattern, location, config)
    severity = pattern_base_severity(pattern)
    first_event = pattern.source_events[0] if pattern.source_events else None
    return Insight(
        id=f"insight_{index}",
        title=generate_title(pattern, location),
        summary=generate_summary(pattern, location, impact),
        category=PATTERN_CATEGORIES.get(pattern.type, ProblemCategory.UX_FRICTION),
        severity=severity,
        location=location,
        impact=impact,
        recommendation=generate_recommendation(pattern, location, impact, viewport),
        signal=calculate_insight_signal(
            severity, pattern.occurrences, pattern.sessions_affected_percent, pattern, now_ms, min_signal
        ),
        pattern=pattern,
        source_problems=pattern.related_problems,
        event_count=pattern.occurrences,
        sessions_affected=pattern.sessions_affected,
        sessions_affected_percent=pattern.sessions_affected_percent,
        timestamp=now_ms,
        page_url=(first_event.page_url if first_event and first_event.page_url else "/"),
    )


def summarize(insights: Sequence[Insight], total_revenue_loss: int) -> str:
    if not insights:
        return NO_INSIGHTS_SUMMARY
    parts = []
    high = sum(1 for i in insights if i.impact.urgency_score >= HIGH_IMPACT_URGENCY)
    if high:
        parts.append(f"{high} high-impact issue{'s' if high > 1 else ''} requiring attention")
    if total_revenue_loss > 0:
        parts.append(f"Est. ${total_revenue_loss}/mo revenue at risk")
    parts.append(f"{len(insights)} actionable insight{'s' if len(insights) > 1 else ''} generated")
    return ". ".join(parts) + "."


def _empty_analysis(events: Sequence[Event], sessions: int, config: BusinessConfig, now_ms: int,
                    summary: str) -> InsightsAnalysis:
    return InsightsAnalysis(
        timestamp=now_ms,
        total_insights=0,
        high_impact_count=0,
        medium_impact_count=0,
        low_impact_count=0,
        total_estimated_revenue_loss=0,
        top_recommendations=(),
        viewport=analyze_viewport(events),
        business_config=config,
        insights=(),
        summary=summary,
        total_events_analyzed=len(events),
        total_sessions_analyzed=sessions,
        patterns_detected=0,
    )


def generate_insights(
    events: Sequence[Event],
    config: BusinessConfig = DEFAULT_BUSINESS_CONFIG,
    now_ms: Optional[int] = None,
    problems: Optional[Sequence[Problem]] = None,
    settings: Optional[Settings] = None,
) -> InsightsAnalysis:
    """Compose a ranked insights analysis.

    Insufficient data is reported through the summary, never raised.
    """
    settings = settings or get_settings()
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    sessions = len({e.session_id for e in events})

    sufficiency = has_enough_data(len(events), sessions)
    if not sufficiency.sufficient:
        INSIGHT_RUNS.labels(outcome="insufficient_data").inc()
        logger.info(f"Skipping insight generation: {sufficiency.reason}")
        return _empty_analysis(events, sessions, config, now_ms, sufficiency.reason or "Not enough data for analysis")

    with INSIGHT_LATENCY.time():
        viewport = analyze_viewport(events)
        if problems is None:
            problems = find_problems(events, now_ms).problems
        patterns = detect_all_patterns(events, problems, DetectionOptions.from_settings(settings))
        raw = [
            pattern_to_insight(p, viewport, config, i, now_ms, settings.min_signal_strength)
            for i, p in enumerate(patterns)
        ]
        insights = filter_and_prioritize(raw, settings.max_insights_per_report)

    totals = aggregate_impacts([i.impact for i in insights])
    urgencies = [i.impact.urgency_score for i in insights]
    for insight in insights:
        INSIGHTS_GENERATED.labels(category=insight.category.value).inc()
    INSIGHT_RUNS.labels(outcome="ok").inc()
    logger.info(
        f"Generated {len(insights)} insights from {len(patterns)} patterns "
        f"({len(events)} events, {sessions} sessions)"
    )
    return InsightsAnalysis(
        timestamp=now_ms,
        total_insights=len(insights),
        high_impact_count=sum(1 for u in urgencies if u >= HIGH_IMPACT_URGENCY),
        medium_impact_count=sum(1 for u in urgencies if MEDIUM_IMPACT_URGENCY <= u < HIGH_IMPACT_URGENCY),
        low_impact_count=sum(1 for u in urgencies if u < MEDIUM_IMPACT_URGENCY),
        total_estimated_revenue_loss=totals.total_revenue_loss,
        top_recommendations=tuple(i.recommendation for i in insights[:TOP_RECOMMENDATIONS]),
        viewport=viewport,
        business_config=config,
        insights=tuple(insights),
        summary=summarize(insights, totals.total_revenue_loss),
        total_events_analyzed=len(events),
        total_sessions_analyzed=sessions,
        patterns_detected=len(patterns),
    )


def insights_by_category(analysis: InsightsAnalysis, category: ProblemCategory) -> List[Insight]:
    return [i for i in analysis.insights if i.category is category]


def insights_by_urgency(analysis: InsightsAnalysis, min_urgency: int) -> List[Insight]:
    return [i for i in analysis.insights if i.impact.urgency_score >= min_urgency]


def format_insights_report(analysis: InsightsAnalysis) -> str:
    generated = datetime.fromtimestamp(analysis.timestamp / 1000, tz=timezone.utc).isoformat()
    vp = analysis.viewport
    lines = [
        "# Actionable Insights Report",
        f"Generated: {generated}",
        "",
        "## Summary",
        analysis.summary,
        "",
        f"- Events analyzed: {analysis.total_events_analyzed}",
        f"- Sessions analyzed: {analysis.total_sessions_analyzed}",
        f"- Patterns detected: {analysis.patterns_detected}",
        f"- Insights generated: {analysis.total_insights}",
        "",
        "## Viewport Analysis",
        f"- Average size: {vp.average_width}x{vp.average_height}",
        f"- Fold line: {vp.fold_line}px",
        "",
    ]
    if analysis.insights:
        lines += ["## Top Insights", ""]
    for n, insight in enumerate(analysis.insights, start=1):
        rec = insight.recommendation
        lines += [
            f"### {n}. {insight.title}",
            f"**Severity:** {insight.severity.value.upper()} | **Urgency:** {insight.impact.urgency_score}/100 "
            f"({priority_label(rec.priority)})",
            "",
            insight.summary,
            f"_{pattern_description(insight.pattern.type)}_",
            "",
            "**Location:**",
            f"- {insight.location.description}",
            f"- {format_location(insight.location)}",
            "",
            "**Impact:**",
            f"- Estimated conversion loss: {insight.impact.conversion_loss_percent}%",
            f"- Estimated revenue loss: ${insight.impact.revenue_loss_per_month}/mo",
            "",
            "**Recommendation:**",
            f"- {rec.action}",
            f"- Expected: {rec.expected_outcome.metric} +{rec.expected_outcome.improvement_percent}%",
            f"- Effort: {effort_description(rec.effort)}",
            "",
        ]
    return "\n".join(lines)
