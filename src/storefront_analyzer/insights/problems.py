"""Rule-based problem finder.

Tags storefront-wide issues (friction hotspots, bounce, weak scroll depth,
low CTA engagement, cart abandonment, confusion, thin section engagement)
from raw events. Problems feed the pattern aggregator as related evidence.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import pandas as pd

from ..models.events import Event, EventType
from .types import Problem, ProblemCategory, Severity, round_half_up

logger = logging.getLogger(__name__)

THRESHOLDS = {
    "dead_click_hotspot_count": 5,
    "dead_click_critical_count": 10,
    "rage_click_area_count": 2,
    "bounce_rate_high": 60,
    "bounce_rate_medium": 40,
    "scroll_reach_50_minimum": 50,
    "avg_time_on_page_minimum": 30,
    "cta_click_rate_minimum": 10,
    "cart_abandonment_high": 70,
    "price_sensitive_share": 0.3,
    "confused_sessions_percent": 15,
    "scroll_reversal_sessions_percent": 20,
    "section_views_per_session_minimum": 2,
}

SEVERITY_WEIGHT = {Severity.CRITICAL: 40, Severity.HIGH: 30, Severity.MEDIUM: 20, Severity.LOW: 10}


@dataclass
class EventSummary:
    total_sessions: int = 0
    total_events: int = 0
    bounce_rate: float = 0.0
    avg_time_on_page: float = 0.0
    cta_click_rate: float = 0.0
    scroll_reached: Dict[int, int] = field(default_factory=lambda: {25: 0, 50: 0, 75: 0, 100: 0})


@dataclass
class ProblemAnalysis:
    timestamp: int
    problems: List[Problem]
    summary: str

    @property
    def total_problems(self) -> int:
        return len(self.problems)

    def count(self, severity: Severity) -> int:
        return sum(1 for p in self.problems if p.severity is severity)

    def by_category(self, category: ProblemCategory) -> List[Problem]:
        return [p for p in self.problems if p.category is category]


def calculate_priority(severity: Severity, affected_percent: float) -> int:
    return round_half_up(min(SEVERITY_WEIGHT[severity] + min(affected_percent, 100) * 0.6, 100))


def events_frame(events: Sequence[Event]) -> pd.DataFrame:
    columns = ["session_id", "type", "timestamp", "element_selector", "element_text",
               "scroll_depth", "inferred_behavior"]
    if not events:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(
        [(e.session_id, e.type.value, e.timestamp, e.element_selector, e.element_text,
          e.scroll_depth, e.inferred_behavior) for e in events],
        columns=columns,
    )


def _round1(value: float) -> float:
    return round_half_up(value * 10) / 10


def aggregate_events(events: Sequence[Event]) -> EventSummary:
    df = events_frame(events)
    summary = EventSummary(total_events=len(df))
    if df.empty:
        return summary
    by_session = df.groupby("session_id", sort=False)
    total = by_session.ngroups
    summary.total_sessions = total

    has_bounce = by_session["type"].agg(lambda t: (t == EventType.BOUNCE.value).any())
    only_page_view = by_session["type"].agg(lambda t: len(t) == 1 and t.iloc[0] == EventType.PAGE_VIEW.value)
    bounced = has_bounce.astype(bool) | only_page_view.astype(bool)
    summary.bounce_rate = _round1(int(bounced.sum()) / total * 100)

    durations = (by_session["timestamp"].max() - by_session["timestamp"].min()) / 1000
    summary.avg_time_on_page = _round1(float(durations.mean()))

    cta_types = {EventType.CTA_CLICK.value, EventType.ADD_TO_CART.value}
    cta_sessions = df.loc[df["type"].isin(cta_types), "session_id"].nunique()
    summary.cta_click_rate = _round1(cta_sessions / total * 100)

    scrolls = df[df["type"] == EventType.SCROLL_DEPTH.value]
    max_scroll = scrolls.groupby("session_id")["scroll_depth"].max().fillna(0)
    max_scroll = max_scroll.reindex(by_session.size().index, fill_value=0)
    summary.scroll_reached = {
        milestone: round_half_up((max_scroll >= milestone).sum() / total * 100)
        for milestone in (25, 50, 75, 100)
    }
    return summary


def frustration_signals(df: pd.DataFrame, limit: int = 15) -> pd.DataFrame:
    """Dead and rage click counts per element selector."""
    mask = df["type"].isin([EventType.DEAD_CLICK.value, EventType.RAGE_CLICK.value]) & df["element_selector"].notna()
    frustrated = df[mask]
    if frustrated.empty:
        return pd.DataFrame(columns=["selector", "text", "dead_clicks", "rage_clicks"])
    grouped = frustrated.groupby("element_selector", sort=False)
    signals = pd.DataFrame({
        "text": grouped["element_text"].first().fillna(""),
        "dead_clicks": grouped["type"].agg(lambda t: int((t == EventType.DEAD_CLICK.value).sum())),
        "rage_clicks": grouped["type"].agg(lambda t: int((t == EventType.RAGE_CLICK.value).sum())),
    })
    signals.index.name = "selector"
    signals = signals.reset_index()
    signals["total"] = signals["dead_clicks"] + signals["rage_clicks"]
    return signals.sort_values("total", ascending=False, kind="stable").head(limit)


def _sessions_for(df: pd.DataFrame, event_type: EventType, selector: Optional[str] = None) -> int:
    mask = df["type"] == event_type.value
    if selector is not None:
        mask &= df["element_selector"] == selector
    return int(df.loc[mask, "session_id"].nunique())


def detect_ux_friction(df: pd.DataFrame, total_sessions: int) -> List[Problem]:
    problems: List[Problem] = []
    signals = frustration_signals(df)
    hotspots = signals[signals["dead_clicks"] >= THRESHOLDS["dead_click_hotspot_count"]]
    for idx, row in enumerate(hotspots.itertuples(index=False)):
        sessions = _sessions_for(df, EventType.DEAD_CLICK, row.selector)
        pct = sessions / total_sessions * 100
        severity = Severity.CRITICAL if row.dead_clicks >= THRESHOLDS["dead_click_critical_count"] else Severity.HIGH
        label = row.text or row.selector
        problems.append(Problem(
            id=f"prob_ux_friction_{idx}",
            category=ProblemCategory.UX_FRICTION,
            severity=severity,
            title=f'Dead click hotspot on "{label}"',
            description=f'Users are clicking on "{label}" expecting it to be interactive, but nothing happens.',
            evidence={"Dead clicks": int(row.dead_clicks), "Element": row.selector,
                      "Sessions affected": f"{pct:.1f}%"},
            affected_sessions=sessions,
            affected_sessions_percent=pct,
            recommendation=f'Make "{label}" interactive (clickable) or change its styling to not appear clickable.',
            priority=calculate_priority(severity, pct),
        ))

    rage_areas = signals[signals["rage_clicks"] >= THRESHOLDS["rage_click_area_count"]]
    for idx, row in enumerate(rage_areas.itertuples(index=False), start=len(hotspots)):
        sessions = _sessions_for(df, EventType.RAGE_CLICK, row.selector)
        pct = sessions / total_sessions * 100
        label = row.text or row.selector
        problems.append(Problem(
            id=f"prob_ux_friction_{idx}",
            category=ProblemCategory.UX_FRICTION,
            severity=Severity.CRITICAL,
            title=f'Rage clicking on "{label}"',
            description=f'Users are rapidly clicking on "{label}" multiple times, indicating severe frustration.',
            evidence={"Rage click incidents": int(row.rage_clicks), "Element": row.selector,
                      "Behavior": "Rapid repeated clicks (3+ in 2 seconds)"},
            affected_sessions=sessions,
            affected_sessions_percent=pct,
            recommendation=f'Investigate why "{label}" is frustrating users. Check if it is slow, broken or misleading.',
            priority=calculate_priority(Severity.CRITICAL, pct),
        ))
    return problems


def detect_engagement_dropoff(summary: EventSummary, total_sessions: int) -> List[Problem]:
    problems: List[Problem] = []
    bounce = summary.bounce_rate
    if bounce >= THRESHOLDS["bounce_rate_medium"]:
        critical = bounce >= THRESHOLDS["bounce_rate_high"]
        severity = Severity.CRITICAL if critical else Severity.MEDIUM
        problems.append(Problem(
            id="prob_engagement_dropoff_0",
            category=ProblemCategory.ENGAGEMENT_DROPOFF,
            severity=severity,
            title="Critical bounce rate" if critical else "Elevated bounce rate",
            description=f"{bounce}% of visitors leave without meaningful interaction.",
            evidence={"Bounce rate": f"{bounce}%"},
            affected_sessions=round_half_up(total_sessions * bounce / 100),
            affected_sessions_percent=bounce,
            recommendation="Improve above-the-fold content: clearer value proposition, compelling visuals, fast hero.",
            priority=calculate_priority(severity, bounce),
        ))

    reached50 = summary.scroll_reached[50]
    if reached50 < THRESHOLDS["scroll_reach_50_minimum"]:
        dropoff = 100 - reached50
        problems.append(Problem(
            id="prob_engagement_dropoff_1",
            category=ProblemCategory.ENGAGEMENT_DROPOFF,
            severity=Severity.HIGH,
            title="Users not scrolling past halfway",
            description=f"Only {reached50}% of users scroll past the midpoint of the page.",
            evidence={"Reached 50%": f"{reached50}%", "Reached 100%": f"{summary.scroll_reached[100]}%",
                      "Drop-off": f"{dropoff}% never see lower content"},
            affected_sessions=round_half_up(total_sessions * dropoff / 100),
            affected_sessions_percent=dropoff,
            recommendation="Add scroll cues, break content into sections, or move key content higher.",
            priority=calculate_priority(Severity.HIGH, dropoff),
        ))

    if summary.avg_time_on_page < THRESHOLDS["avg_time_on_page_minimum"]:
        problems.append(Problem(
            id="prob_engagement_dropoff_2",
            category=ProblemCategory.ENGAGEMENT_DROPOFF,
            severity=Severity.MEDIUM,
            title="Very short session duration",
            description=f"Users spend only {summary.avg_time_on_page:.1f} seconds on average.",
            evidence={"Avg time on page": f"{summary.avg_time_on_page:.1f}s",
                      "Target minimum": f"{THRESHOLDS['avg_time_on_page_minimum']}s"},
            affected_sessions=total_sessions,
            affected_sessions_percent=100,
            recommendation="Improve content quality, add engaging elements and make sure the page loads quickly.",
            priority=calculate_priority(Severity.MEDIUM, 80),
        ))
    return problems


def detect_conversion_blockers(df: pd.DataFrame, summary: EventSummary, total_sessions: int) -> List[Problem]:
    problems: List[Problem] = []
    cta_rate = summary.cta_click_rate
    if cta_rate < THRESHOLDS["cta_click_rate_minimum"]:
        missed = 100 - cta_rate
        problems.append(Problem(
            id="prob_conversion_blocker_0",
            category=ProblemCategory.CONVERSION_BLOCKER,
            severity=Severity.HIGH,
            title="Low call-to-action engagement",
            description=f"Only {cta_rate}% of users click on CTAs.",
            evidence={"CTA click rate": f"{cta_rate}%", "Target minimum": f"{THRESHOLDS['cta_click_rate_minimum']}%"},
            affected_sessions=round_half_up(total_sessions * missed / 100),
            affected_sessions_percent=missed,
            recommendation="Make CTAs more prominent with contrasting colors, clearer text and better positioning.",
            priority=calculate_priority(Severity.HIGH, missed),
        ))

    has_review = (df["type"] == EventType.CART_REVIEW.value).any()
    cart_sessions = _sessions_for(df, EventType.ADD_TO_CART)
    if has_review and cart_sessions > 0:
        checkout_sessions = _sessions_for(df, EventType.CHECKOUT_START)
        abandoned = cart_sessions - checkout_sessions
        abandonment = abandoned / cart_sessions * 100
        if abandonment > THRESHOLDS["cart_abandonment_high"]:
            problems.append(Problem(
                id="prob_conversion_blocker_1",
                category=ProblemCategory.CONVERSION_BLOCKER,
                severity=Severity.CRITICAL,
                title="High cart abandonment",
                description=f"{abandonment:.1f}% of users who add items to cart don't proceed to checkout.",
                evidence={"Cart abandonment": f"{abandonment:.1f}%", "Added to cart": cart_sessions,
                          "Started checkout": checkout_sessions},
                affected_sessions=abandoned,
                affected_sessions_percent=abandoned / total_sessions * 100,
                recommendation="Simplify checkout, show clear pricing, add trust signals, consider exit-intent offers.",
                priority=calculate_priority(Severity.CRITICAL, abandonment),
            ))

    price_sensitive = int(df.loc[df["inferred_behavior"] == "price_sensitive", "session_id"].nunique())
    share = price_sensitive / total_sessions
    if share > THRESHOLDS["price_sensitive_share"]:
        problems.append(Problem(
            id="prob_conversion_blocker_2",
            category=ProblemCategory.CONVERSION_BLOCKER,
            severity=Severity.MEDIUM,
            title="High price sensitivity detected",
            description=f"{share * 100:.1f}% of users show price-sensitive behavior.",
            evidence={"Price-sensitive sessions": str(price_sensitive),
                      "Behavior": "Repeatedly checking/clicking prices"},
            affected_sessions=price_sensitive,
            affected_sessions_percent=share * 100,
            recommendation="Show value justification, competitor comparison, savings, or discounts.",
            priority=calculate_priority(Severity.MEDIUM, share * 100),
        ))
    return problems


def detect_navigation_problems(df: pd.DataFrame, total_sessions: int) -> List[Problem]:
    problems: List[Problem] = []
    confused = int(df.loc[df["inferred_behavior"] == "confused", "session_id"].nunique())
    confused_pct = confused / total_sessions * 100
    if confused_pct > THRESHOLDS["confused_sessions_percent"]:
        problems.append(Problem(
            id="prob_navigation_issue_0",
            category=ProblemCategory.NAVIGATION_ISSUE,
            severity=Severity.HIGH,
            title="Users are getting confused",
            description=f"{confused_pct:.1f}% of sessions show confusion signals.",
            evidence={"Confused sessions": f"{confused_pct:.1f}%",
                      "Signals": "Rage clicks, dead clicks, scroll reversals"},
            affected_sessions=confused,
            affected_sessions_percent=confused_pct,
            recommendation="Simplify navigation, add clearer labels and make interactive elements look clickable.",
            priority=calculate_priority(Severity.HIGH, confused_pct),
        ))

    reversal_sessions = _sessions_for(df, EventType.SCROLL_REVERSAL)
    reversal_pct = reversal_sessions / total_sessions * 100
    if reversal_pct > THRESHOLDS["scroll_reversal_sessions_percent"]:
        problems.append(Problem(
            id="prob_navigation_issue_1",
            category=ProblemCategory.NAVIGATION_ISSUE,
            severity=Severity.MEDIUM,
            title="Users scrolling back and forth",
            description=f"{reversal_pct:.1f}% of users repeatedly scroll up and down looking for something.",
            evidence={"Sessions with scroll reversals": f"{reversal_pct:.1f}%",
                      "Scroll reversal events": int((df["type"] == EventType.SCROLL_REVERSAL.value).sum())},
            affected_sessions=reversal_sessions,
            affected_sessions_percent=reversal_pct,
            recommendation="Improve content organization and add quick navigation.",
            priority=calculate_priority(Severity.MEDIUM, reversal_pct),
        ))
    return problems


def detect_content_issues(df: pd.DataFrame, total_sessions: int) -> List[Problem]:
    problems: List[Problem] = []
    section_views = int((df["type"] == EventType.SECTION_VIEW.value).sum())
    per_session = section_views / total_sessions
    if per_session < THRESHOLDS["section_views_per_session_minimum"] and total_sessions > 5:
        problems.append(Problem(
            id="prob_content_issue_0",
            category=ProblemCategory.CONTENT_ISSUE,
            severity=Severity.MEDIUM,
            title="Low section engagement",
            description=f"Users view only {per_session:.1f} sections on average.",
            evidence={"Sections viewed per session": f"{per_session:.1f}", "Total section views": section_views},
            affected_sessions=total_sessions,
            affected_sessions_percent=100,
            recommendation="Make section transitions more enticing and give each section clear value.",
            priority=calculate_priority(Severity.MEDIUM, 60),
        ))

    researchers = set(df.loc[df["type"] == EventType.TEXT_SELECTION.value, "session_id"])
    converted = set(df.loc[df["type"].isin([EventType.ADD_TO_CART.value, EventType.CHECKOUT_START.value]), "session_id"])
    not_converted = len(researchers - converted)
    if len(researchers) > 3 and not_converted / len(researchers) > 0.7:
        pct = not_converted / total_sessions * 100
        problems.append(Problem(
            id="prob_content_issue_1",
            category=ProblemCategory.CONTENT_ISSUE,
            severity=Severity.LOW,
            title="Researchers not converting",
            description="Users who select text (research behavior) often don't convert.",
            evidence={"Text selection sessions": len(researchers),
                      "Converted": len(researchers) - not_converted},
            affected_sessions=not_converted,
            affected_sessions_percent=pct,
            recommendation="Add FAQ, comparison tables, detailed specs or trust signals.",
            priority=calculate_priority(Severity.LOW, pct),
        ))
    return problems


def find_problems(events: Sequence[Event], now_ms: int = 0) -> ProblemAnalysis:
    df = events_frame(events)
    total_sessions = int(df["session_id"].nunique()) if not df.empty else 0
    if total_sessions == 0:
        return ProblemAnalysis(now_ms, [], "No session data available for analysis.")

    summary = aggregate_events(events)
    problems = [
        *detect_ux_friction(df, total_sessions),
        *detect_engagement_dropoff(summary, total_sessions),
        *detect_conversion_blockers(df, summary, total_sessions),
        *detect_navigation_problems(df, total_sessions),
        *detect_content_issues(df, total_sessions),
    ]
    problems.sort(key=lambda p: p.priority, reverse=True)
    analysis = ProblemAnalysis(now_ms, problems, "")
    analysis.summary = _summarize(analysis, total_sessions)
    logger.debug(f"Problem finder tagged {len(problems)} problems across {total_sessions} sessions")
    return analysis


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'s' if n != 1 else ''}"


def _summarize(analysis: ProblemAnalysis, total_sessions: int) -> str:
    if not analysis.problems:
        return "No significant problems detected. Continue monitoring for patterns."
    parts = []
    critical = analysis.count(Severity.CRITICAL)
    high = analysis.count(Severity.HIGH)
    if critical:
        parts.append(f"Found {_plural(critical, 'critical issue')} requiring immediate attention.")
    if high:
        parts.append(f"{_plural(high, 'high-priority issue')} should be addressed soon.")
    parts.append(f"Total: {_plural(analysis.total_problems, 'issue')} identified across {total_sessions} sessions.")
    return " ".join(parts)
