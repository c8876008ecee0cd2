"""Static identity fix rules.

Each rule targets one identity state and fires when its UI recommendation
flag is active for that state. Rules are data; ordering is by priority.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from enum import Enum
from typing import List, Tuple

from ..behavior.identity import IdentityState, UIRecommendations


class RecommendationFlag(str, Enum):
    SIMPLIFY_LAYOUT = "simplify_layout"
    SHOW_TRUST_BADGES = "show_trust_badges"
    SHOW_COMPARISON_TOOLS = "show_comparison_tools"
    HIGH_URGENCY = "high_urgency"
    LOW_URGENCY = "low_urgency"
    BOLD_CTA = "bold_cta"
    GUIDED_CTA = "guided_cta"
    SUPPORT_CTA = "support_cta"


class ChangeType(str, Enum):
    STYLE = "style"
    ATTRIBUTE = "attribute"
    TEXT = "text"
    VISIBILITY = "visibility"
    CONFIG = "config"


@dataclass(frozen=True)
class ElementChange:
    selector: str
    component_path: str
    change_type: ChangeType
    property: str
    old_value: str
    new_value: str
    reason: str

    @property
    def dedupe_key(self) -> str:
        return f"{self.component_path}:{self.property}"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["change_type"] = self.change_type.value
        return data


@dataclass(frozen=True)
class FixRule:
    id: str
    identity_state: IdentityState
    flag: RecommendationFlag
    priority: int
    summary: str
    expected_impact: str
    changes: Tuple[ElementChange, ...]


def flag_active(flag: RecommendationFlag, ui: UIRecommendations) -> bool:
    if flag is RecommendationFlag.SIMPLIFY_LAYOUT:
        return ui.simplify_layout
    if flag is RecommendationFlag.SHOW_TRUST_BADGES:
        return ui.show_trust_badges
    if flag is RecommendationFlag.SHOW_COMPARISON_TOOLS:
        return ui.show_comparison_tools
    if flag is RecommendationFlag.HIGH_URGENCY:
        return ui.urgency in ("high", "extreme")
    if flag is RecommendationFlag.LOW_URGENCY:
        return ui.urgency == "low"
    if flag is RecommendationFlag.BOLD_CTA:
        return ui.cta_style == "bold"
    if flag is RecommendationFlag.GUIDED_CTA:
        return ui.cta_style == "guided"
    return ui.cta_style == "support"


def active_flags(ui: UIRecommendations) -> List[RecommendationFlag]:
    return [flag for flag in RecommendationFlag if flag_active(flag, ui)]


HERO = "components/store/Hero.tsx"
TESTIMONIALS = "components/store/Testimonials.tsx"
PRODUCT_GRID = "components/store/ProductGrid.tsx"
CTA = "button[data-cta]"


def _config(selector: str, component: str, prop: str, value: str, reason: str) -> ElementChange:
    return ElementChange(selector, component, ChangeType.CONFIG, prop, "*", value, reason)


_S = IdentityState
_F = RecommendationFlag

FIX_RULES: Tuple[FixRule, ...] = (
    FixRule("frustrated_simplify_layout", _S.FRUSTRATED, _F.SIMPLIFY_LAYOUT, 10,
            "Simplify page layout for frustrated users", "+25-35% engagement from frustrated users", (
                _config("#hero h1", HERO, "hero.headline", "Simple. Easy. Done.",
                        "Shorter, clearer headline reduces cognitive load"),
                _config(CTA, HERO, "hero.cta.size", "large", "Larger CTA is easier to find and click"),
            )),
    FixRule("frustrated_support_cta", _S.FRUSTRATED, _F.SUPPORT_CTA, 9,
            "Use supportive CTA language", "+15-20% click-through on CTA", (
                _config(CTA, HERO, "hero.cta.text", "Get Help Now",
                        "Supportive language reassures frustrated users"),
            )),
    FixRule("frustrated_show_trust", _S.FRUSTRATED, _F.SHOW_TRUST_BADGES, 8,
            "Show testimonials to rebuild trust", "+10-15% trust signals", (
                _config("#testimonials", TESTIMONIALS, "testimonials.show", "true",
                        "Social proof helps rebuild trust for frustrated users"),
            )),
    FixRule("overwhelmed_reduce_products", _S.OVERWHELMED, _F.SIMPLIFY_LAYOUT, 10,
            "Reduce product grid columns to decrease overwhelm", "+30-40% completion rate", (
                _config("#products", PRODUCT_GRID, "products.layout", "grid-2",
                        "Fewer products per row reduces decision paralysis"),
            )),
    FixRule("overwhelmed_guided_cta", _S.OVERWHELMED, _F.GUIDED_CTA, 9,
            "Use guided language on CTA", "+20-25% click-through", (
                _config(CTA, HERO, "hero.cta.text", "Start Here →",
                        "Guided language helps overwhelmed users know where to begin"),
                _config("#hero h1", HERO, "hero.subheadline", "We'll help you find exactly what you need",
                        "Reassuring subheadline for overwhelmed users"),
            )),
    FixRule("cautious_show_reviews", _S.CAUTIOUS, _F.SHOW_TRUST_BADGES, 10,
            "Show testimonials and trust signals", "+25-30% conversion for cautious users", (
                _config("#testimonials", TESTIMONIALS, "testimonials.show", "true",
                        "Cautious users need social proof before committing"),
            )),
    FixRule("cautious_safe_cta", _S.CAUTIOUS, _F.SHOW_TRUST_BADGES, 9,
            "Use risk-free language on CTA", "+15-20% click-through", (
                _config(CTA, HERO, "hero.cta.text", "Browse Risk-Free",
                        "Reassuring language reduces perceived risk for cautious users"),
            )),
    FixRule("confident_bold_cta", _S.CONFIDENT, _F.BOLD_CTA, 10,
            "Use direct, action-oriented CTA", "+15-20% conversion", (
                _config(CTA, HERO, "hero.cta.text", "Buy Now", "Confident users want direct action, not browsing"),
                _config(CTA, HERO, "hero.cta.size", "large", "Larger CTA for confident users ready to act"),
            )),
    FixRule("ready_checkout_cta", _S.READY_TO_DECIDE, _F.HIGH_URGENCY, 10,
            "Use checkout-focused CTA with urgency", "+35-45% conversion", (
                _config(CTA, HERO, "hero.cta.text", "Complete Your Order →", "Direct path to checkout for ready users"),
            )),
    FixRule("impulse_urgent_cta", _S.IMPULSE_BUYER, _F.HIGH_URGENCY, 10,
            "Create urgency with limited-time messaging", "+40-50% conversion for impulse buyers", (
                _config(CTA, HERO, "hero.cta.text", "Buy Now - Limited Time!",
                        "Urgency messaging captures impulse buyers before they leave"),
                _config(CTA, HERO, "hero.cta.size", "large", "Large CTA is unmissable for quick decision makers"),
            )),
    FixRule("impulse_simplify", _S.IMPULSE_BUYER, _F.SIMPLIFY_LAYOUT, 9,
            "Simplify layout to reduce friction", "+20-25% faster checkout", (
                _config("#products", PRODUCT_GRID, "products.layout", "grid-2",
                        "Fewer choices means faster decisions for impulse buyers"),
                _config("#hero h1", HERO, "hero.headline", "Flash Sale - Today Only!",
                        "Exciting headline with urgency for impulse buyers"),
            )),
    FixRule("comparison_show_tools", _S.COMPARISON_FOCUSED, _F.SHOW_COMPARISON_TOOLS, 10,
            "Show comparison tools and trust badges for comparison shoppers",
            "+20-30% engagement from comparison shoppers", (
                _config("#testimonials", TESTIMONIALS, "testimonials.show", "true",
                        "Social proof helps comparison shoppers make decisions"),
                _config(CTA, HERO, "hero.cta.text", "Compare Our Products", "Matches user intent to compare options"),
                _config("#hero h1", HERO, "hero.subheadline", "Trusted by 10,000+ customers. See why we're rated #1.",
                        "Trust signals help comparison shoppers choose"),
            )),
    FixRule("exploratory_discovery_cta", _S.EXPLORATORY, _F.LOW_URGENCY, 10,
            "Encourage exploration with discovery-focused CTA", "+25-35% page engagement", (
                _config(CTA, HERO, "hero.cta.text", "Discover Our Collection",
                        "Discovery language matches browsing intent"),
                _config("#hero h1", HERO, "hero.headline", "Explore Something New",
                        "Inviting headline encourages browsers to keep exploring"),
            )),
)


def rules_for_state(state: IdentityState) -> List[FixRule]:
    """Rules for one state, highest priority first (stable for ties)."""
    return sorted((r for r in FIX_RULES if r.identity_state is state), key=lambda r: r.priority, reverse=True)
