"""Closed-loop improvement: trigger gate, action decision and outcome learning."""
from .store import LearningRecord, LearningStore
from .loop import (
    ActionType,
    ImprovementCycle,
    ImprovementLoop,
    TriggerReason,
    UnknownCycleError,
    calculate_improvement,
    calculate_metrics,
    detect_anomalies,
)

__all__ = [
    "LearningRecord",
    "LearningStore",
    "ActionType",
    "ImprovementCycle",
    "ImprovementLoop",
    "TriggerReason",
    "UnknownCycleError",
    "calculate_improvement",
    "calculate_metrics",
    "detect_anomalies",
]
