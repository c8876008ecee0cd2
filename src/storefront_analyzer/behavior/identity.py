"""Intent states, the deterministic rule cascade and per-state UI guidance."""
from __future__ import annotations

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from .vector import BehavioralVector


class IdentityState(str, Enum):
    FRUSTRATED = "frustrated"
    OVERWHELMED = "overwhelmed"
    CONFIDENT = "confident"
    READY_TO_DECIDE = "ready_to_decide"
    COMPARISON_FOCUSED = "comparison_focused"
    IMPULSE_BUYER = "impulse_buyer"
    CAUTIOUS = "cautious"
    EXPLORATORY = "exploratory"


STATE_DESCRIPTIONS: Dict[IdentityState, str] = {
    IdentityState.FRUSTRATED: "Repeated failed interactions; the visitor is fighting the page",
    IdentityState.OVERWHELMED: "Wide exploration with heavy hesitation; too many options",
    IdentityState.CONFIDENT: "Moving quickly down the funnel with little hesitation",
    IdentityState.READY_TO_DECIDE: "Engaged, progressing and mostly settled",
    IdentityState.COMPARISON_FOCUSED: "Deep engagement concentrated on a few items",
    IdentityState.IMPULSE_BUYER: "Fast progress with little research",
    IdentityState.CAUTIOUS: "Researching carefully without committing",
    IdentityState.EXPLORATORY: "Browsing broadly without a clear target",
}


class IdentitySource(str, Enum):
    RULE_BASED = "rule_based"
    REMOTE = "remote"
    CACHE = "cache"


@dataclass(frozen=True)
class UserIdentity:
    state: IdentityState
    confidence: float
    reasoning: str
    vector: BehavioralVector
    computed_at: int
    source: IdentitySource = IdentitySource.RULE_BASED

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "confidence": round(self.confidence, 4),
            "reasoning": self.reasoning,
            "vector": self.vector.to_dict(),
            "computed_at": self.computed_at,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class IdentityRule:
    name: str
    state: IdentityState
    condition: str
    predicate: Callable[[BehavioralVector, float], bool] = field(compare=False, repr=False)

    def matches(self, vector: BehavioralVector, frustration: float) -> bool:
        return self.predicate(vector, frustration)


# Evaluated top to bottom; the first match wins.
IDENTITY_RULES: Tuple[IdentityRule, ...] = (
    IdentityRule("frustration_signal", IdentityState.FRUSTRATED, "frustration > 0.6",
                 lambda v, f: f > 0.6),
    IdentityRule("hesitant_explorer", IdentityState.OVERWHELMED, "hesitation > 0.7 and exploration > 0.6",
                 lambda v, f: v.hesitation > 0.7 and v.exploration > 0.6),
    IdentityRule("fast_and_sure", IdentityState.CONFIDENT, "velocity > 0.7 and hesitation < 0.3",
                 lambda v, f: v.velocity > 0.7 and v.hesitation < 0.3),
    IdentityRule("engaged_progress", IdentityState.READY_TO_DECIDE,
                 "engagement > 0.6 and velocity > 0.6 and hesitation < 0.4",
                 lambda v, f: v.engagement > 0.6 and v.velocity > 0.6 and v.hesitation < 0.4),
    IdentityRule("focused_engagement", IdentityState.COMPARISON_FOCUSED, "engagement > 0.7 and focus > 0.6",
                 lambda v, f: v.engagement > 0.7 and v.focus > 0.6),
    IdentityRule("fast_low_research", IdentityState.IMPULSE_BUYER, "velocity > 0.7 and engagement < 0.4",
                 lambda v, f: v.velocity > 0.7 and v.engagement < 0.4),
    IdentityRule("slow_researcher", IdentityState.CAUTIOUS, "velocity < 0.4 and engagement > 0.6",
                 lambda v, f: v.velocity < 0.4 and v.engagement > 0.6),
    IdentityRule("wide_browsing", IdentityState.EXPLORATORY, "exploration > 0.6",
                 lambda v, f: v.exploration > 0.6),
)

DEFAULT_STATE = IdentityState.CAUTIOUS


def match_rule(vector: BehavioralVector, frustration: float = 0.0) -> Optional[IdentityRule]:
    for rule in IDENTITY_RULES:
        if rule.matches(vector, frustration):
            return rule
    return None


def classify_rule_based(vector: BehavioralVector, frustration: float = 0.0) -> IdentityState:
    rule = match_rule(vector, frustration)
    return rule.state if rule else DEFAULT_STATE


def explain_rule_match(vector: BehavioralVector, frustration: float = 0.0) -> str:
    rule = match_rule(vector, frustration)
    if rule is None:
        return f"no rule matched, defaulting to {DEFAULT_STATE.value}"
    return f"{rule.name}: {rule.condition}"


def rule_based_confidence(vector: BehavioralVector) -> float:
    """Distance from the neutral vector mapped into [0.6, 0.95]."""
    deviation = sum(abs(v - 0.5) for v in vector.values()) / 5
    return min(0.6 + 0.3 * deviation, 0.95)


@dataclass(frozen=True)
class UIRecommendations:
    headline_style: str
    cta_style: str
    urgency: str
    show_trust_badges: bool
    show_comparison_tools: bool
    simplify_layout: bool

    def to_dict(self) -> dict:
        return asdict(self)


UI_RECOMMENDATIONS: Dict[IdentityState, UIRecommendations] = {
    IdentityState.CONFIDENT: UIRecommendations("direct", "bold", "high", False, False, False),
    IdentityState.OVERWHELMED: UIRecommendations("helpful", "guided", "low", True, False, True),
    IdentityState.COMPARISON_FOCUSED: UIRecommendations("informative", "compare", "low", True, True, False),
    IdentityState.READY_TO_DECIDE: UIRecommendations("action", "checkout", "high", True, False, True),
    IdentityState.CAUTIOUS: UIRecommendations("reassuring", "safe", "medium", True, True, False),
    IdentityState.IMPULSE_BUYER: UIRecommendations("exciting", "urgent", "extreme", False, False, True),
    IdentityState.FRUSTRATED: UIRecommendations("helpful", "support", "low", True, False, True),
    IdentityState.EXPLORATORY: UIRecommendations("inviting", "browse", "low", False, False, False),
}


def get_ui_recommendations(state: IdentityState) -> UIRecommendations:
    return UI_RECOMMENDATIONS[state]
