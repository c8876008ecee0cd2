"""Friction pattern detection, impact scoring and insight assembly."""
from .engine import format_insights_report, generate_insights, insights_by_category, insights_by_urgency
from .patterns import DetectionOptions, detect_all_patterns
from .problems import find_problems
from .types import BusinessConfig, Insight, InsightsAnalysis, Pattern, PatternType

__all__ = [
    "BusinessConfig",
    "DetectionOptions",
    "Insight",
    "InsightsAnalysis",
    "Pattern",
    "PatternType",
    "detect_all_patterns",
    "find_problems",
    "format_insights_report",
    "generate_insights",
    "insights_by_category",
    "insights_by_urgency",
]
