"""Identity-driven UI fix rules and their mapping to element changes."""
from .rules import FIX_RULES, ChangeType, ElementChange, FixRule, RecommendationFlag, active_flags, rules_for_state
from .mapper import (
    ElementIndex,
    IdentityFixMapping,
    ValidationReport,
    describe_mapping,
    map_identity_to_changes,
    to_fix_recommendation,
    validate_element_targets,
)

__all__ = [
    "FIX_RULES",
    "ChangeType",
    "ElementChange",
    "FixRule",
    "RecommendationFlag",
    "active_flags",
    "rules_for_state",
    "ElementIndex",
    "IdentityFixMapping",
    "ValidationReport",
    "describe_mapping",
    "map_identity_to_changes",
    "to_fix_recommendation",
    "validate_element_targets",
]
