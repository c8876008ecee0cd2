"""Action templates, titles and summaries for friction patterns."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .spatial import above_fold_target
from .types import (
    BusinessImpact,
    EffortLevel,
    ExpectedOutcome,
    Pattern,
    PatternType,
    Recommendation,
    SpatialLocation,
    ViewportAnalysis,
    round_half_up,
)


@dataclass(frozen=True)
class RecommendationTemplate:
    actions: Tuple[str, ...]
    metric: str
    base_improvement: float
    effort: EffortLevel


PATTERN_RECOMMENDATIONS: Dict[PatternType, RecommendationTemplate] = {
    PatternType.RAGE_CLUSTER: RecommendationTemplate(
        ("Add loading indicators or visual feedback when clicked",
         "Increase click target size and add hover states",
         "Ensure the element responds within 100ms"),
        "User frustration rate", 60, EffortLevel.SMALL,
    ),
    PatternType.DEAD_CLICK_HOTSPOT: RecommendationTemplate(
        ("Make the element interactive (add click handler)",
         "Change styling to not appear clickable (remove hover effects, change cursor)",
         "Add visual boundaries to clarify what is/isn't clickable"),
        "Click success rate", 40, EffortLevel.SMALL,
    ),
    PatternType.CTA_INVISIBILITY: RecommendationTemplate(
        ("Move CTA above the fold",
         "Increase CTA contrast and size",
         "Add visual indicators pointing to CTA"),
        "CTA click rate", 140, EffortLevel.SMALL,
    ),
    PatternType.CHECKOUT_FRICTION: RecommendationTemplate(
        ("Simplify checkout form fields",
         "Add progress indicators",
         "Show security badges and trust signals"),
        "Checkout completion rate", 25, EffortLevel.MEDIUM,
    ),
    PatternType.SCROLL_ABANDONMENT: RecommendationTemplate(
        ("Add scroll indicators or visual cues",
         "Move important content above the fold",
         "Make hero section more compelling to encourage exploration"),
        "Content visibility rate", 35, EffortLevel.SMALL,
    ),
    PatternType.ELEMENT_CONFUSION: RecommendationTemplate(
        ("Add clear visual affordances (buttons look like buttons)",
         "Use consistent interactive element styling",
         "Add tooltips explaining element functionality"),
        "Interaction success rate", 45, EffortLevel.SMALL,
    ),
    PatternType.PRICE_ANXIETY: RecommendationTemplate(
        ("Add value justification near prices",
         "Show competitor price comparisons",
         "Display savings, discounts, or payment plans"),
        "Add-to-cart rate", 20, EffortLevel.MEDIUM,
    ),
}

_RELOCATABLE = (PatternType.CTA_INVISIBILITY, PatternType.DEAD_CLICK_HOTSPOT)


def _first(values: Tuple[str, ...]) -> str:
    return values[0] if values else ""


def select_action(pattern: Pattern) -> str:
    template = PATTERN_RECOMMENDATIONS[pattern.type]
    if pattern.type is PatternType.DEAD_CLICK_HOTSPOT:
        text = _first(pattern.element_texts)
        if "$" in text or "product" in text.lower():
            return "Make entire card/row clickable to navigate to product details"
        if any("div" in s or "span" in s for s in pattern.element_selectors):
            return "Make element interactive OR add clear visual boundaries around interactive buttons"
    if pattern.type is PatternType.RAGE_CLUSTER:
        name = _first(pattern.element_texts) or _first(pattern.element_selectors) or "this area"
        return f'Investigate why "{name}" is frustrating users. Add immediate visual feedback on click.'
    return template.actions[0]


def expected_improvement(pattern: Pattern) -> int:
    improvement = PATTERN_RECOMMENDATIONS[pattern.type].base_improvement
    pct = pattern.sessions_affected_percent
    if pct >= 50:
        improvement *= 1.2
    elif pct < 10:
        improvement *= 0.8
    return round_half_up(improvement)


def generate_recommendation(
    pattern: Pattern,
    location: Optional[SpatialLocation],
    impact: BusinessImpact,
    viewport: ViewportAnalysis,
) -> Recommendation:
    template = PATTERN_RECOMMENDATIONS[pattern.type]
    target = None
    if location is not None and not location.is_above_fold and pattern.type in _RELOCATABLE:
        target = above_fold_target(viewport)
    improvement = expected_improvement(pattern)
    return Recommendation(
        action=select_action(pattern),
        current_location=location,
        target_location=target,
        expected_outcome=ExpectedOutcome(
            metric=template.metric,
            improvement_percent=improvement,
            description=f"{template.metric}: +{improvement}% improvement expected",
        ),
        effort=template.effort,
        priority=impact.urgency_score,
    )


def _session_word(pct: float) -> str:
    if pct >= 50:
        return "Most"
    if pct >= 25:
        return "Many"
    return "Some"


def generate_title(pattern: Pattern, location: Optional[SpatialLocation]) -> str:
    name = (_first(pattern.element_texts)[:30] or _first(pattern.element_selectors)[:30] or "Element")
    pct = pattern.sessions_affected_percent
    kind = pattern.type
    if kind is PatternType.RAGE_CLUSTER:
        return f'{_session_word(pct)} Users Frustrated by "{name}"'
    if kind is PatternType.DEAD_CLICK_HOTSPOT:
        if pct >= 80:
            return f'"{name}" Confusing {pct:.0f}% of Users'
        return f'Users Expect "{name}" to be Clickable'
    if kind is PatternType.CTA_INVISIBILITY:
        y = location.coordinates.y if location else "?"
        return f"CTA Not Visible - Below Fold at Y={y}px"
    if kind is PatternType.CHECKOUT_FRICTION:
        return f"Checkout Friction Losing {pct:.0f}% of Customers"
    if kind is PatternType.SCROLL_ABANDONMENT:
        return f"{pct:.0f}% of Users Never See Below-Fold Content"
    if kind is PatternType.ELEMENT_CONFUSION:
        return f'Users Confused About "{name}" Interactivity'
    return f"Price-Checking Behavior Detected in {pct:.0f}% of Sessions"


def generate_summary(pattern: Pattern, location: Optional[SpatialLocation], impact: BusinessImpact) -> str:
    where = f" at {location.description}" if location else ""
    name = _first(pattern.element_texts) or _first(pattern.element_selectors) or "this element"
    pct = pattern.sessions_affected_percent
    loss = impact.conversion_loss_percent
    kind = pattern.type
    if kind is PatternType.RAGE_CLUSTER:
        return (f'Users are rapidly clicking on "{name}"{where}, indicating severe frustration. '
                f"This affects {pct:.0f}% of sessions and may be causing an estimated {loss}% conversion loss.")
    if kind is PatternType.DEAD_CLICK_HOTSPOT:
        return (f'{pattern.occurrences} clicks on "{name}"{where} resulted in no action. '
                f"Users expect this element to be interactive. Estimated conversion impact: {loss}%.")
    if kind is PatternType.CTA_INVISIBILITY:
        visibility = "is good visibility" if location and location.is_above_fold else "requires scrolling to see"
        return (f"Your call-to-action is positioned{where}, which {visibility}. "
                f"Only {100 - pct:.0f}% of users interact with it.")
    if kind is PatternType.CHECKOUT_FRICTION:
        return (f"Checkout process is losing {pct:.0f}% of users who add items to cart. "
                f"Friction signals detected including {pattern.occurrences} frustration events. "
                f"Potential monthly revenue impact: ${impact.revenue_loss_per_month}.")
    if kind is PatternType.SCROLL_ABANDONMENT:
        fold = location.fold_line if location else 800
        return (f"{pct:.0f}% of users don't scroll past the initial viewport. "
                f"Content below Y={fold}px is not being seen. "
                "Consider moving important elements above the fold or adding scroll encouragement.")
    if kind is PatternType.ELEMENT_CONFUSION:
        return (f'Users are confused about whether "{name}" is interactive{where}. '
                f"{pattern.occurrences} dead clicks and double-clicks detected, suggesting unclear UI affordances.")
    return (f"{pct:.0f}% of sessions show excessive price-checking behavior "
            f"({pattern.occurrences} price interactions). "
            "Users may find prices too high or need more value justification.")


EFFORT_DESCRIPTIONS = {
    EffortLevel.TRIVIAL: "Quick fix (< 1 hour)",
    EffortLevel.SMALL: "Small change (1-4 hours)",
    EffortLevel.MEDIUM: "Moderate effort (1-2 days)",
    EffortLevel.LARGE: "Significant work (3+ days)",
}


def effort_description(effort: EffortLevel) -> str:
    return EFFORT_DESCRIPTIONS[effort]


def priority_label(priority: int) -> str:
    if priority >= 80:
        return "Critical Priority"
    if priority >= 60:
        return "High Priority"
    if priority >= 40:
        return "Medium Priority"
    return "Low Priority"
