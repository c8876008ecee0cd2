"""Identity → concrete element changes."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Sequence

from ..behavior.identity import IdentityState, UIRecommendations, get_ui_recommendations
from .rules import ChangeType, ElementChange, FixRule, RecommendationFlag, flag_active, rules_for_state

logger = logging.getLogger(__name__)

CONFIG_FILE = "data/config-live.json"


@dataclass(frozen=True)
class IdentityFixMapping:
    identity_state: IdentityState
    confidence: float
    recommendations: tuple[RecommendationFlag, ...]
    element_changes: tuple[ElementChange, ...]
    summary: str
    expected_impact: str
    rationale: str
    rule_ids: tuple[str, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.element_changes)

    def to_dict(self) -> dict:
        return {
            "identity_state": self.identity_state.value,
            "confidence": self.confidence,
            "recommendations": [r.value for r in self.recommendations],
            "element_changes": [c.to_dict() for c in self.element_changes],
            "summary": self.summary,
            "expected_impact": self.expected_impact,
            "rationale": self.rationale,
            "rule_ids": list(self.rule_ids),
        }


def match_rules(state: IdentityState, ui: UIRecommendations) -> List[FixRule]:
    return [rule for rule in rules_for_state(state) if flag_active(rule.flag, ui)]


def map_identity_to_changes(
    state: IdentityState,
    confidence: float,
    ui: Optional[UIRecommendations] = None,
) -> IdentityFixMapping:
    ui = ui or get_ui_recommendations(state)
    matched = match_rules(state, ui)

    applied: List[RecommendationFlag] = []
    changes: List[ElementChange] = []
    seen: set[str] = set()
    for rule in matched:
        if rule.flag not in applied:
            applied.append(rule.flag)
        for change in rule.changes:
            if change.dedupe_key in seen:
                continue
            seen.add(change.dedupe_key)
            changes.append(change)

    flags = ", ".join(f.value for f in applied)
    return IdentityFixMapping(
        identity_state=state,
        confidence=confidence,
        recommendations=tuple(applied),
        element_changes=tuple(changes),
        summary="; ".join(r.summary for r in matched) if matched else f"No specific fixes for {state.value} identity",
        expected_impact=matched[0].expected_impact if matched else "Moderate improvement expected",
        rationale=(
            f'User identified as "{state.value}" with {confidence * 100:.0f}% confidence. '
            f"Applied {len(applied)} recommendation(s): {flags}."
        ),
        rule_ids=tuple(r.id for r in matched),
    )


class ElementLookup(Protocol):
    def contains(self, selector: str) -> bool:
        ...


@dataclass
class ElementIndex:
    """Known page elements by selector and full DOM path."""
    selectors: set[str] = field(default_factory=set)
    full_paths: List[str] = field(default_factory=list)

    @classmethod
    def from_elements(cls, elements: Iterable[dict]) -> "ElementIndex":
        index = cls()
        for element in elements:
            if element.get("selector"):
                index.selectors.add(element["selector"])
            if element.get("full_path"):
                index.full_paths.append(element["full_path"])
        return index

    def contains(self, selector: str) -> bool:
        if selector in self.selectors:
            return True
        needle = selector.replace("#", "", 1)
        return any(needle in path for path in self.full_paths)


@dataclass(frozen=True)
class ValidationReport:
    valid: tuple[ElementChange, ...]
    invalid: tuple[ElementChange, ...]
    index_loaded: bool


def validate_element_targets(changes: Sequence[ElementChange], index: Optional[ElementLookup]) -> ValidationReport:
    """Advisory check of change selectors; never alters the mapping."""
    if index is None:
        return ValidationReport(tuple(changes), (), False)
    valid, invalid = [], []
    for change in changes:
        (valid if index.contains(change.selector) else invalid).append(change)
    if invalid:
        logger.info(f"{len(invalid)} element change(s) target selectors missing from the element index")
    return ValidationReport(tuple(valid), tuple(invalid), True)


_ACTIONS = {
    ChangeType.STYLE: "change_style",
    ChangeType.TEXT: "change_text",
}


def to_fix_recommendation(mapping: IdentityFixMapping, now_ms: int) -> dict:
    """Export a mapping as a file-level change request."""
    return {
        "issue_id": f"identity_{mapping.identity_state.value}_{now_ms}",
        "confidence": mapping.confidence,
        "summary": mapping.summary,
        "change_type": "attribute",
        "changes": [
            {
                "file": CONFIG_FILE if c.change_type is ChangeType.CONFIG else c.component_path,
                "element_selector": c.selector,
                "action": _ACTIONS.get(c.change_type, "modify_attribute"),
                "attribute": c.property,
                "value": c.new_value,
                "old_value": c.old_value if c.old_value != "*" else None,
                "reason": c.reason,
            }
            for c in mapping.element_changes
        ],
        "expected_impact": mapping.expected_impact,
        "rationale": mapping.rationale,
    }


def describe_mapping(mapping: IdentityFixMapping) -> str:
    lines = [
        f'## Identity-Based Fix for "{mapping.identity_state.value}" User',
        "",
        f"**Confidence:** {mapping.confidence * 100:.0f}%",
        "",
        f"**Summary:** {mapping.summary}",
        "",
        f"**Expected Impact:** {mapping.expected_impact}",
        "",
        "### Changes:",
    ]
    for change in mapping.element_changes:
        lines.append(f'- **{change.property}**: "{change.old_value}" → "{change.new_value}"')
        lines.append(f"  - *Reason:* {change.reason}")
    lines += ["", "---", f"*{mapping.rationale}*"]
    return "\n".join(lines)
