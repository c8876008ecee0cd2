"""Identity classification strategies and the fallback orchestrator.

The rule cascade is always available and never fails. An optional remote
backend can be configured in front of it; anything the backend does wrong
(timeouts, transport errors, malformed or out-of-range answers, an open
circuit) raises ``ClassifierError`` and the orchestrator moves on to the next
strategy.
"""
from __future__ import annotations

import json
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from prometheus_client import Counter

from ..config import Settings, get_settings
from ..infrastructure.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitConfig,
    get_circuit_breaker,
)
from ..models.events import Event
from .identity import (
    STATE_DESCRIPTIONS,
    IdentitySource,
    IdentityState,
    UserIdentity,
    classify_rule_based,
    explain_rule_match,
    rule_based_confidence,
)
from .vector import BehavioralVector, compute_frustration, extract_vector

logger = logging.getLogger(__name__)

CLASSIFICATIONS = Counter(
    "storefront_identity_classifications_total", "Identity classifications", ["source", "state"]
)
CLASSIFIER_FAILURES = Counter(
    "storefront_identity_classifier_failures_total", "Classifier strategy failures", ["strategy", "reason"]
)
CACHE_LOOKUPS = Counter("storefront_identity_cache_lookups_total", "Identity cache lookups", ["result"])


class ClassifierError(Exception):
    """A classification strategy could not produce a trustworthy answer."""

    def __init__(self, message: str, reason: str = "error"):
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True)
class ClassificationResult:
    state: IdentityState
    confidence: float
    reasoning: str
    source: IdentitySource


class IdentityClassifierStrategy(ABC):
    name: str = "strategy"

    @abstractmethod
    def classify(self, vector: BehavioralVector, events: Sequence[Event], now_ms: int) -> ClassificationResult:
        """Return a classification or raise ClassifierError."""


class RuleBasedClassifier(IdentityClassifierStrategy):
    name = "rule_based"

    def __init__(self, window_ms: int = 300_000):
        self.window_ms = window_ms

    def classify(self, vector: BehavioralVector, events: Sequence[Event], now_ms: int) -> ClassificationResult:
        frustration = compute_frustration(events, now_ms, self.window_ms)
        state = classify_rule_based(vector, frustration)
        reasoning = (
            f"Rule-based classification ({explain_rule_match(vector, frustration)}) "
            f"from behavioral vector: {vector.describe()}, frustration={frustration:.2f}"
        )
        return ClassificationResult(state, rule_based_confidence(vector), reasoning, IdentitySource.RULE_BASED)


_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_BARE_JSON = re.compile(r"\{.*\}", re.DOTALL)


def parse_classifier_payload(payload: Any) -> ClassificationResult:
    """Validate a backend answer; accepts a dict or text containing a JSON object."""
    data = payload
    if isinstance(payload, str):
        match = _FENCED_JSON.search(payload) or _BARE_JSON.search(payload)
        if not match:
            raise ClassifierError("no JSON object in classifier response", reason="unparseable")
        try:
            data = json.loads(match.group(1) if match.re is _FENCED_JSON else match.group(0))
        except json.JSONDecodeError as e:
            raise ClassifierError(f"invalid JSON in classifier response: {e}", reason="unparseable") from e
    if not isinstance(data, dict):
        raise ClassifierError("classifier response is not an object", reason="unparseable")

    try:
        state = IdentityState(data.get("identity_state"))
    except ValueError as e:
        raise ClassifierError(f"unknown identity state {data.get('identity_state')!r}", reason="invalid_state") from e

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not 0 <= confidence <= 1:
        raise ClassifierError(f"confidence out of range: {confidence!r}", reason="invalid_confidence")

    reasoning = data.get("reasoning") or "No reasoning provided"
    return ClassificationResult(state, float(confidence), str(reasoning), IdentitySource.REMOTE)


def build_prompt(vector: BehavioralVector, frustration: float) -> str:
    states = "\n".join(f"- {state.value}: {desc}" for state, desc in STATE_DESCRIPTIONS.items())
    return (
        "Classify the shopper's intent from this behavioral vector (each dimension in [0, 1]).\n"
        f"{vector.describe()}, frustration={frustration:.2f}\n\n"
        f"Possible identity states:\n{states}\n\n"
        'Respond with JSON only: {"identity_state": "<state>", "confidence": <0-1>, "reasoning": "<short>"}'
    )


class RemoteIdentityClassifier(IdentityClassifierStrategy):
    name = "remote"

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        model: str = "identity-classifier",
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        breaker: Optional[CircuitBreaker] = None,
        window_ms: int = 300_000,
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()
        self.breaker = breaker or CircuitBreaker("identity_classifier")
        self.window_ms = window_ms

    def _post(self, body: Dict[str, Any]) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        response = self.session.post(self.endpoint, json=body, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError:
            return response.text
        # Chat-style backends wrap the answer in a text field
        if isinstance(data, dict) and "identity_state" not in data and isinstance(data.get("text"), str):
            return data["text"]
        return data

    def classify(self, vector: BehavioralVector, events: Sequence[Event], now_ms: int) -> ClassificationResult:
        frustration = compute_frustration(events, now_ms, self.window_ms)
        body = {"model": self.model, "prompt": build_prompt(vector, frustration), "vector": vector.to_dict()}
        try:
            payload = self.breaker.call(self._post, body)
        except CircuitBreakerOpenError as e:
            raise ClassifierError(str(e), reason="circuit_open") from e
        except requests.Timeout as e:
            raise ClassifierError(f"classifier timed out after {self.timeout}s", reason="timeout") from e
        except requests.RequestException as e:
            raise ClassifierError(f"classifier transport error: {e}", reason="transport") from e
        return parse_classifier_payload(payload)


def cache_key(vector: BehavioralVector, frustration: float = 0.0) -> str:
    parts = list(vector.values()) + [frustration]
    return "|".join(f"{round(v, 1):.1f}" for v in parts)


class IdentityCache:
    """Quantized vector → result cache with a fixed TTL.

    Expired entries are ignored on lookup and dropped by a sweep that runs at
    most once per sweep interval.
    """

    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic,
                 sweep_interval: Optional[float] = None):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval if sweep_interval is not None else ttl_seconds
        self._clock = clock
        self._entries: Dict[str, tuple[float, ClassificationResult]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, vector: BehavioralVector, frustration: float = 0.0) -> Optional[ClassificationResult]:
        with self._lock:
            entry = self._entries.get(cache_key(vector, frustration))
        if entry is None or self._clock() - entry[0] >= self.ttl_seconds:
            CACHE_LOOKUPS.labels(result="miss").inc()
            return None
        CACHE_LOOKUPS.labels(result="hit").inc()
        return entry[1]

    def put(self, vector: BehavioralVector, result: ClassificationResult, frustration: float = 0.0) -> None:
        now = self._clock()
        with self._lock:
            self._entries[cache_key(vector, frustration)] = (now, result)
        if now - self._last_sweep >= self.sweep_interval:
            self.sweep()

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (stored, _) in self._entries.items() if now - stored >= self.ttl_seconds]
            for key in expired:
                del self._entries[key]
            self._last_sweep = now
        if expired:
            logger.debug(f"Swept {len(expired)} expired identity cache entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class IdentityClassifier:
    """Runs strategies in order and returns the first successful answer.

    The rule-based strategy is always appended last, so classification never
    fails. The cache only fronts remote strategies.
    """

    def __init__(
        self,
        strategies: Optional[List[IdentityClassifierStrategy]] = None,
        cache: Optional[IdentityCache] = None,
        window_ms: int = 300_000,
    ):
        self.window_ms = window_ms
        self.fallback = RuleBasedClassifier(window_ms)
        self.strategies = [s for s in (strategies or []) if not isinstance(s, RuleBasedClassifier)]
        self.cache = cache if cache is not None else IdentityCache()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "IdentityClassifier":
        settings = settings or get_settings()
        strategies: List[IdentityClassifierStrategy] = []
        if settings.classifier_endpoint:
            breaker = get_circuit_breaker(
                "identity_classifier",
                CircuitConfig(
                    failure_threshold=settings.breaker_failure_threshold,
                    recovery_timeout=settings.breaker_recovery_timeout,
                ),
            )
            strategies.append(RemoteIdentityClassifier(
                endpoint=settings.classifier_endpoint,
                api_key=settings.classifier_api_key,
                model=settings.classifier_model,
                timeout=settings.classifier_timeout_seconds,
                breaker=breaker,
                window_ms=settings.recency_window_ms,
            ))
        return cls(strategies, IdentityCache(settings.identity_cache_ttl_seconds), settings.recency_window_ms)

    def classify_vector(self, vector: BehavioralVector, events: Sequence[Event], now_ms: int) -> UserIdentity:
        frustration = 0.0
        if self.strategies:
            frustration = compute_frustration(events, now_ms, self.window_ms)
            cached = self.cache.get(vector, frustration)
            if cached is not None:
                return self._identity(cached, vector, now_ms, IdentitySource.CACHE)

        for strategy in self.strategies:
            try:
                result = self._run(strategy, vector, events, now_ms)
            except ClassifierError as e:
                CLASSIFIER_FAILURES.labels(strategy=strategy.name, reason=e.reason).inc()
                logger.warning(f"Identity strategy {strategy.name} failed ({e.reason}): {e}; falling back")
                continue
            self.cache.put(vector, result, frustration)
            return self._identity(result, vector, now_ms, result.source)

        result = self.fallback.classify(vector, events, now_ms)
        if self.strategies:
            result = ClassificationResult(
                result.state, result.confidence,
                result.reasoning.replace("Rule-based classification", "Rule-based fallback", 1),
                result.source,
            )
        return self._identity(result, vector, now_ms, result.source)

    @staticmethod
    def _run(strategy: IdentityClassifierStrategy, vector: BehavioralVector, events: Sequence[Event],
             now_ms: int) -> ClassificationResult:
        try:
            return strategy.classify(vector, events, now_ms)
        except ClassifierError:
            raise
        except Exception as e:
            logger.exception(f"Identity strategy {strategy.name} raised unexpectedly")
            raise ClassifierError(f"{type(e).__name__}: {e}", reason="unexpected") from e

    def classify(self, events: Sequence[Event], now_ms: Optional[int] = None) -> UserIdentity:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        vector = extract_vector(events, now_ms, self.window_ms)
        return self.classify_vector(vector, events, now_ms)

    def _identity(self, result: ClassificationResult, vector: BehavioralVector, now_ms: int,
                  source: IdentitySource) -> UserIdentity:
        CLASSIFICATIONS.labels(source=source.value, state=result.state.value).inc()
        return UserIdentity(
            state=result.state,
            confidence=result.confidence,
            reasoning=result.reasoning,
            vector=vector,
            computed_at=now_ms,
            source=source,
        )
