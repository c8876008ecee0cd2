"""Detect, analyze, act, measure, learn.

``ImprovementLoop`` decides when enough new behavior has accumulated to run a
cycle, classifies the visitor, maps the identity to element changes and
chooses between auto-applying a realtime variant or queueing the change for
human approval. Approval outcomes feed back into the ``LearningStore``.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Callable, List, Optional, Sequence

from prometheus_client import Counter, Gauge
from scipy.stats import norm

from ..behavior.classifiers import IdentityClassifier
from ..behavior.identity import IdentityState, UIRecommendations, UserIdentity, get_ui_recommendations
from ..config import Settings, get_settings
from ..fixes.mapper import IdentityFixMapping, map_identity_to_changes
from ..models.events import Event, EventType
from .store import LearningRecord, LearningStore

logger = logging.getLogger(__name__)

LEARNING_OUTCOMES = Counter("storefront_learning_outcomes_total", "Recorded fix decisions", ["state", "outcome"])
CYCLES_RUN = Counter("storefront_improvement_cycles_total", "Improvement cycles by action", ["trigger", "action"])
RULE_CONFIDENCE = Gauge("storefront_learning_rule_confidence", "Learned confidence per identity state", ["state"])

ANOMALY_WINDOW = 20
MIN_APPLICATIONS_FOR_RANKING = 3
TOP_PERFORMERS = 5


class TriggerReason(str, Enum):
    THRESHOLD = "threshold"
    SCHEDULE = "schedule"
    MANUAL = "manual"
    ANOMALY = "anomaly"


class ActionType(str, Enum):
    REALTIME_VARIANT = "realtime_variant"
    PR_APPROVAL = "pr_approval"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class AnomalyRule:
    event_type: EventType
    threshold: int
    name: str
    severity: str


ANOMALY_RULES = (
    AnomalyRule(EventType.RAGE_CLICK, 5, "rage_click_spike", "critical"),
    AnomalyRule(EventType.BOUNCE, 3, "bounce_spike", "high"),
    AnomalyRule(EventType.FORM_ERROR, 4, "form_error_spike", "high"),
)


@dataclass(frozen=True)
class Anomaly:
    detected: bool
    kind: Optional[str] = None
    severity: Optional[str] = None


@dataclass(frozen=True)
class TriggerDecision:
    should_trigger: bool
    reason: str
    trigger: Optional[TriggerReason] = None


@dataclass(frozen=True)
class ActionDecision:
    action: ActionType
    reason: str


@dataclass(frozen=True)
class ConversionMetrics:
    sessions: int
    cta_clicks: int
    add_to_carts: int
    checkout_starts: int
    purchases: int
    bounce_rate: float
    avg_session_duration: float

    @property
    def cta_rate(self) -> float:
        return self.cta_clicks / self.sessions if self.sessions > 0 else 0.0


@dataclass(frozen=True)
class ImpactMeasurement:
    before: ConversionMetrics
    after: ConversionMetrics
    improvement: float
    significance: float
    is_significant: bool


@dataclass(frozen=True)
class ImprovementCycle:
    id: str
    started_at: int
    trigger_reason: TriggerReason
    events_analyzed: int
    sessions_analyzed: int
    identity: UserIdentity
    ui_recommendations: UIRecommendations
    mapping: IdentityFixMapping
    action_type: ActionType
    action_reason: str
    completed_at: Optional[int] = None
    impact: Optional[ImpactMeasurement] = None

    def to_dict(self) -> dict:
        impact = None
        if self.impact is not None:
            impact = {
                "before": asdict(self.impact.before),
                "after": asdict(self.impact.after),
                "improvement": round(self.impact.improvement, 2),
                "significance": round(self.impact.significance, 4),
                "is_significant": self.impact.is_significant,
            }
        return {
            "id": self.id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "trigger_reason": self.trigger_reason.value,
            "events_analyzed": self.events_analyzed,
            "sessions_analyzed": self.sessions_analyzed,
            "identity": self.identity.to_dict(),
            "ui_recommendations": self.ui_recommendations.to_dict(),
            "mapping": self.mapping.to_dict(),
            "action_type": self.action_type.value,
            "action_reason": self.action_reason,
            "impact": impact,
        }


@dataclass(frozen=True)
class LearningStats:
    total_cycles: int
    records: List[LearningRecord] = field(default_factory=list)
    top_performing: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_cycles": self.total_cycles,
            "records": [r.to_dict() for r in self.records],
            "top_performing": list(self.top_performing),
        }


class UnknownCycleError(KeyError):
    pass


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def detect_anomalies(events: Sequence[Event]) -> Anomaly:
    recent = list(events)[-ANOMALY_WINDOW:]
    for rule in ANOMALY_RULES:
        if sum(1 for e in recent if e.type is rule.event_type) >= rule.threshold:
            return Anomaly(True, rule.name, rule.severity)
    return Anomaly(False)


def calculate_metrics(events: Sequence[Event]) -> ConversionMetrics:
    by_session: dict[str, List[int]] = {}
    for e in events:
        by_session.setdefault(e.session_id, []).append(e.timestamp)
    sessions = len(by_session)

    def count(kind: EventType) -> int:
        return sum(1 for e in events if e.type is kind)

    cta_clicks = sum(
        1 for e in events
        if e.type is EventType.CTA_CLICK
        or (e.type is EventType.CLICK and e.element_selector and "[data-cta]" in e.element_selector)
    )
    durations = [max(ts) - min(ts) for ts in by_session.values() if len(ts) >= 2]
    return ConversionMetrics(
        sessions=sessions,
        cta_clicks=cta_clicks,
        add_to_carts=count(EventType.ADD_TO_CART),
        checkout_starts=count(EventType.CHECKOUT_START),
        purchases=count(EventType.PURCHASE),
        bounce_rate=count(EventType.BOUNCE) / sessions if sessions > 0 else 0.0,
        avg_session_duration=sum(durations) / len(durations) if durations else 0.0,
    )


def calculate_improvement(before: ConversionMetrics, after: ConversionMetrics) -> float:
    """Relative change in CTA click rate, in percent."""
    if before.cta_rate == 0:
        return 100.0 if after.cta_rate > 0 else 0.0
    return (after.cta_rate - before.cta_rate) / before.cta_rate * 100


def two_proportion_significance(before: ConversionMetrics, after: ConversionMetrics) -> float:
    """Two-sided confidence (1 - p) that the CTA session rates differ."""
    n1, n2 = before.sessions, after.sessions
    if n1 == 0 or n2 == 0:
        return 0.0
    x1, x2 = min(before.cta_clicks, n1), min(after.cta_clicks, n2)
    pooled = (x1 + x2) / (n1 + n2)
    se = math.sqrt(pooled * (1 - pooled) * (1 / n1 + 1 / n2))
    if se == 0:
        return 0.0
    z = (x2 / n2 - x1 / n1) / se
    return float(2 * norm.cdf(abs(z)) - 1)


class ImprovementLoop:
    def __init__(
        self,
        store: LearningStore,
        classifier: Optional[IdentityClassifier] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], int] = _wall_clock_ms,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.classifier = classifier or IdentityClassifier.from_settings(self.settings)
        self.clock = clock

    @property
    def cooldown_ms(self) -> int:
        return int(self.settings.learning_cooldown_seconds * 1000)

    def should_trigger(self, event_count: int, events: Optional[Sequence[Event]] = None) -> TriggerDecision:
        if events:
            anomaly = detect_anomalies(events)
            if anomaly.detected:
                return TriggerDecision(True, f"Anomaly detected: {anomaly.kind} ({anomaly.severity})",
                                       TriggerReason.ANOMALY)

        elapsed = self.clock() - self.store.last_cycle_at
        if self.store.last_cycle_at and elapsed < self.cooldown_ms:
            remaining = int(math.floor((self.cooldown_ms - elapsed) / 1000 + 0.5))
            return TriggerDecision(False, f"Cooldown: {remaining}s remaining")

        threshold = self.settings.learning_event_threshold
        if event_count >= threshold:
            return TriggerDecision(True, f"Event threshold reached ({event_count} >= {threshold})",
                                   TriggerReason.THRESHOLD)
        return TriggerDecision(False, f"Waiting for more events ({event_count} < {threshold})")

    def analyze(self, events: Sequence[Event], now_ms: Optional[int] = None):
        now_ms = now_ms if now_ms is not None else self.clock()
        identity = self.classifier.classify(events, now_ms)
        ui = get_ui_recommendations(identity.state)
        mapping = map_identity_to_changes(identity.state, identity.confidence, ui)
        return identity, ui, mapping

    def decide_action(self, identity: UserIdentity, mapping: IdentityFixMapping) -> ActionDecision:
        if not mapping.has_changes:
            return ActionDecision(ActionType.SKIPPED, "No applicable changes for this identity state")

        record = self.store.get(mapping.identity_state)
        if (
            record is not None
            and record.confidence >= self.settings.auto_apply_rule_confidence
            and identity.confidence >= self.settings.auto_apply_identity_confidence
        ):
            return ActionDecision(
                ActionType.REALTIME_VARIANT,
                f"Auto-applying: rule confidence {record.confidence * 100:.0f}%, "
                f"identity confidence {identity.confidence * 100:.0f}%",
            )
        return ActionDecision(ActionType.PR_APPROVAL, "Requires approval: insufficient confidence for auto-apply")

    def run_cycle(self, events: Sequence[Event], trigger_reason: TriggerReason = TriggerReason.MANUAL) -> ImprovementCycle:
        started_at = self.clock()
        cycle_id = f"cycle_{started_at}_{self.store.next_cycle_number()}"
        logger.info(f"[{cycle_id}] Starting improvement cycle ({trigger_reason.value})")

        identity, ui, mapping = self.analyze(events, started_at)
        decision = self.decide_action(identity, mapping)
        logger.info(
            f"[{cycle_id}] Identity {identity.state.value} ({identity.confidence:.0%}); "
            f"action {decision.action.value}: {decision.reason}"
        )

        completed_at = self.clock()
        cycle = ImprovementCycle(
            id=cycle_id,
            started_at=started_at,
            trigger_reason=trigger_reason,
            events_analyzed=len(events),
            sessions_analyzed=len({e.session_id for e in events}),
            identity=identity,
            ui_recommendations=ui,
            mapping=mapping,
            action_type=decision.action,
            action_reason=decision.reason,
            completed_at=completed_at,
        )
        self.store.add_cycle(cycle, completed_at)
        CYCLES_RUN.labels(trigger=trigger_reason.value, action=decision.action.value).inc()
        return cycle

    def record_outcome(
        self,
        state: IdentityState,
        approved: bool,
        impact: float,
        fix_rule_id: Optional[str] = None,
        decision_id: Optional[str] = None,
    ) -> LearningRecord:
        record = self.store.record_outcome(
            state, fix_rule_id or f"identity_{state.value}", approved, impact, self.clock(), decision_id
        )
        LEARNING_OUTCOMES.labels(state=state.value, outcome="approved" if approved else "rejected").inc()
        RULE_CONFIDENCE.labels(state=state.value).set(record.confidence)
        return record

    def measure_impact(self, cycle_id: str, before: Sequence[Event], after: Sequence[Event]) -> ImprovementCycle:
        cycle = self.store.find_cycle(cycle_id)
        if cycle is None:
            raise UnknownCycleError(cycle_id)

        before_metrics = calculate_metrics(before)
        after_metrics = calculate_metrics(after)
        minimum = self.settings.min_events_for_metrics
        if len(before) < minimum or len(after) < minimum:
            logger.info(f"[{cycle_id}] Fewer than {minimum} events on one side; significance not computed")
            significance = 0.0
        else:
            significance = two_proportion_significance(before_metrics, after_metrics)
        measured = replace(cycle, impact=ImpactMeasurement(
            before=before_metrics,
            after=after_metrics,
            improvement=calculate_improvement(before_metrics, after_metrics),
            significance=significance,
            is_significant=significance >= self.settings.significance_threshold,
        ))
        self.store.replace_cycle(measured)
        return measured

    def history(self) -> List[ImprovementCycle]:
        return self.store.cycles()

    def learning_stats(self) -> LearningStats:
        records = self.store.records()
        ranked = sorted(
            (r for r in records if r.times_applied >= MIN_APPLICATIONS_FOR_RANKING),
            key=lambda r: r.confidence,
            reverse=True,
        )[:TOP_PERFORMERS]
        return LearningStats(
            total_cycles=self.store.cycle_count,
            records=records,
            top_performing=[
                {"state": r.identity_state.value, "confidence": r.confidence, "impact": r.avg_impact}
                for r in ranked
            ],
        )
