"""In-process learning state.

The store is passed to the improvement loop explicitly so tests can use a
fresh instance and deployments can swap in a persistent implementation.
"""
from __future__ import annotations

import logging
import math
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass, asdict
from typing import Deque, Dict, List, Optional

from ..behavior.identity import IdentityState

logger = logging.getLogger(__name__)

INITIAL_CONFIDENCE = 0.5
IMPACT_DECAY = 0.7
NEW_IMPACT_WEIGHT = 0.3
APPROVAL_WEIGHT = 0.6
IMPACT_WEIGHT = 0.4
IMPACT_NORMALIZER = 50.0


@dataclass
class LearningRecord:
    identity_state: IdentityState
    fix_rule_id: str
    times_applied: int = 0
    times_approved: int = 0
    times_rejected: int = 0
    avg_impact: float = 0.0
    confidence: float = INITIAL_CONFIDENCE
    last_applied: int = 0

    @property
    def approval_rate(self) -> float:
        if self.times_applied == 0:
            return 0.0
        return self.times_approved / self.times_applied

    def apply_outcome(self, approved: bool, impact: float, now_ms: int) -> None:
        if not math.isfinite(impact):
            raise ValueError(f"impact must be a finite number, got {impact!r}")
        self.times_applied += 1
        self.last_applied = now_ms
        if approved:
            self.times_approved += 1
            self.avg_impact = self.avg_impact * IMPACT_DECAY + impact * NEW_IMPACT_WEIGHT
        else:
            self.times_rejected += 1
        impact_score = min(1.0, max(0.0, self.avg_impact / IMPACT_NORMALIZER))
        self.confidence = self.approval_rate * APPROVAL_WEIGHT + impact_score * IMPACT_WEIGHT

    def to_dict(self) -> dict:
        data = asdict(self)
        data["identity_state"] = self.identity_state.value
        return data


class LearningStore:
    """Learning records keyed by identity state plus the recent cycle history."""

    def __init__(self, history_limit: int = 100, decision_limit: int = 10_000):
        self._lock = threading.RLock()
        self._records: Dict[IdentityState, LearningRecord] = {}
        self._seen_decisions: "OrderedDict[str, None]" = OrderedDict()
        self._decision_limit = decision_limit
        self._cycles: Deque = deque(maxlen=history_limit)
        self.last_cycle_at: int = 0
        self.cycle_count: int = 0

    def get(self, state: IdentityState) -> Optional[LearningRecord]:
        with self._lock:
            return self._records.get(state)

    def records(self) -> List[LearningRecord]:
        with self._lock:
            return list(self._records.values())

    def record_outcome(
        self,
        state: IdentityState,
        fix_rule_id: str,
        approved: bool,
        impact: float,
        now_ms: int,
        decision_id: Optional[str] = None,
    ) -> LearningRecord:
        """Fold one human decision into the record for ``state``.

        Replaying a ``decision_id`` that was already applied leaves the record
        untouched and returns it as-is.
        """
        if not math.isfinite(impact):
            raise ValueError(f"impact must be a finite number, got {impact!r}")
        with self._lock:
            record = self._records.get(state)
            if decision_id is not None and decision_id in self._seen_decisions and record is not None:
                logger.debug(f"Ignoring replayed learning decision {decision_id}")
                return record
            if record is None:
                record = LearningRecord(identity_state=state, fix_rule_id=fix_rule_id, last_applied=now_ms)
                self._records[state] = record
            record.apply_outcome(approved, impact, now_ms)
            if decision_id is not None:
                self._seen_decisions[decision_id] = None
                if len(self._seen_decisions) > self._decision_limit:
                    self._seen_decisions.popitem(last=False)
            logger.info(
                f"Updated learning record for {state.value}: approval {record.approval_rate:.0%}, "
                f"avg impact {record.avg_impact:.1f}%, confidence {record.confidence:.0%}"
            )
            return record

    def next_cycle_number(self) -> int:
        with self._lock:
            self.cycle_count += 1
            return self.cycle_count

    def add_cycle(self, cycle, completed_at: int) -> None:
        with self._lock:
            self._cycles.append(cycle)
            self.last_cycle_at = completed_at

    def cycles(self) -> list:
        with self._lock:
            return list(self._cycles)

    def find_cycle(self, cycle_id: str):
        with self._lock:
            for cycle in self._cycles:
                if cycle.id == cycle_id:
                    return cycle
        return None

    def replace_cycle(self, cycle) -> bool:
        with self._lock:
            for i, existing in enumerate(self._cycles):
                if existing.id == cycle.id:
                    self._cycles[i] = cycle
                    return True
        return False
