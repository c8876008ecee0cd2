"""Behavioral signature extraction and identity classification."""
from .vector import BehavioralVector, NEUTRAL_VECTOR, compute_frustration, extract_vector
from .identity import (
    IdentityState,
    UIRecommendations,
    UserIdentity,
    classify_rule_based,
    get_ui_recommendations,
    rule_based_confidence,
)
from .classifiers import ClassifierError, IdentityCache, IdentityClassifier, RuleBasedClassifier, RemoteIdentityClassifier

__all__ = [
    "BehavioralVector",
    "NEUTRAL_VECTOR",
    "compute_frustration",
    "extract_vector",
    "IdentityState",
    "UIRecommendations",
    "UserIdentity",
    "classify_rule_based",
    "get_ui_recommendations",
    "rule_based_confidence",
    "ClassifierError",
    "IdentityCache",
    "IdentityClassifier",
    "RuleBasedClassifier",
    "RemoteIdentityClassifier",
]
