from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, CollectorRegistry, Counter, Histogram, generate_latest
from pydantic import BaseModel, Field

from .. import __version__
from ..behavior.identity import IdentityState, get_ui_recommendations
from ..config import get_settings
from ..fixes.mapper import (
    ElementIndex,
    describe_mapping,
    map_identity_to_changes,
    to_fix_recommendation,
    validate_element_targets,
)
from ..insights.engine import format_insights_report, generate_insights
from ..insights.types import BusinessConfig
from ..learning.loop import ImprovementLoop, TriggerReason, UnknownCycleError
from ..learning.store import LearningStore
from ..validation.events import InvalidEventInput, parse_events

logger = logging.getLogger(__name__)

registry = CollectorRegistry()
REQUESTS = Counter("storefront_api_requests_total", "API requests", ["endpoint", "status"], registry=registry)
LATENCY = Histogram(
    "storefront_api_request_latency_seconds", "API request latency", ["endpoint"], registry=registry,
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

_loop: Optional[ImprovementLoop] = None


def get_loop() -> ImprovementLoop:
    global _loop
    if _loop is None:
        settings = get_settings()
        _loop = ImprovementLoop(LearningStore(settings.cycle_history_limit), settings=settings)
    return _loop


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger.info(f"Starting storefront analyzer API v{__version__} ({settings.environment})")
    yield
    logger.info("Shutting down storefront analyzer API")


app = FastAPI(title="Storefront Behavior Analyzer API", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    LATENCY.labels(endpoint=endpoint).observe(time.perf_counter() - start)
    REQUESTS.labels(endpoint=endpoint, status=str(response.status_code)).inc()
    return response


@app.exception_handler(InvalidEventInput)
async def invalid_event_handler(request: Request, exc: InvalidEventInput):
    return JSONResponse(status_code=422, content={"error": "invalid_event", "detail": str(exc), "index": exc.index})


class EventBatch(BaseModel):
    events: List[Any] = Field(default_factory=list)
    now_ms: Optional[int] = None


class InsightsRequest(EventBatch):
    business_config: Optional[BusinessConfig] = None
    format: str = "json"


class IdentityFixRequest(EventBatch):
    identity_state: Optional[IdentityState] = None
    confidence: float = Field(0.7, ge=0, le=1)
    element_index: Optional[List[dict]] = None


class CycleRequest(EventBatch):
    trigger_reason: TriggerReason = TriggerReason.MANUAL
    force: bool = False


class MeasureRequest(BaseModel):
    before: List[Any]
    after: List[Any]


class OutcomeRequest(BaseModel):
    identity_state: IdentityState
    approved: bool
    impact: float = Field(0.0, allow_inf_nan=False, ge=-1000, le=1000)
    fix_rule_id: Optional[str] = None
    decision_id: Optional[str] = None


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}


@app.get("/metrics")
def metrics():
    data = generate_latest(registry) + generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.post("/insights")
def insights(body: InsightsRequest):
    settings = get_settings()
    config = body.business_config or BusinessConfig(**settings.business_defaults())
    analysis = generate_insights(parse_events(body.events), config, body.now_ms, settings=settings)
    if body.format == "markdown":
        return PlainTextResponse(format_insights_report(analysis), media_type="text/markdown")
    return analysis.to_dict()


@app.post("/identity")
def identity(body: EventBatch, loop: ImprovementLoop = Depends(get_loop)):
    result = loop.classifier.classify(parse_events(body.events), body.now_ms)
    return {"identity": result.to_dict(), "ui_recommendations": get_ui_recommendations(result.state).to_dict()}


@app.post("/identity/fix")
def identity_fix(body: IdentityFixRequest, loop: ImprovementLoop = Depends(get_loop)):
    now_ms = body.now_ms if body.now_ms is not None else loop.clock()
    if body.identity_state is not None:
        state, confidence = body.identity_state, body.confidence
    else:
        classified = loop.classifier.classify(parse_events(body.events), now_ms)
        state, confidence = classified.state, classified.confidence
    mapping = map_identity_to_changes(state, confidence)
    index = ElementIndex.from_elements(body.element_index) if body.element_index is not None else None
    report = validate_element_targets(mapping.element_changes, index)
    return {
        "mapping": mapping.to_dict(),
        "fix": to_fix_recommendation(mapping, now_ms),
        "description": describe_mapping(mapping),
        "validation": {
            "index_loaded": report.index_loaded,
            "valid": [c.selector for c in report.valid],
            "invalid": [c.selector for c in report.invalid],
        },
    }


@app.post("/cycles")
def run_cycle(body: CycleRequest, loop: ImprovementLoop = Depends(get_loop)):
    events = parse_events(body.events)
    trigger = body.trigger_reason
    if not body.force:
        decision = loop.should_trigger(len(events), events)
        if not decision.should_trigger:
            return {"triggered": False, "reason": decision.reason, "cycle": None}
        trigger = decision.trigger or trigger
        reason = decision.reason
    else:
        reason = f"Forced {trigger.value} cycle"
    cycle = loop.run_cycle(events, trigger)
    return {"triggered": True, "reason": reason, "cycle": cycle.to_dict()}


@app.get("/cycles")
def list_cycles(loop: ImprovementLoop = Depends(get_loop)):
    return [c.to_dict() for c in loop.history()]


@app.post("/cycles/{cycle_id}/measure")
def measure_cycle(cycle_id: str, body: MeasureRequest, loop: ImprovementLoop = Depends(get_loop)):
    try:
        cycle = loop.measure_impact(cycle_id, parse_events(body.before), parse_events(body.after))
    except UnknownCycleError:
        raise HTTPException(status_code=404, detail="cycle_not_found")
    return cycle.to_dict()


@app.post("/learning/outcomes")
def record_outcome(body: OutcomeRequest, loop: ImprovementLoop = Depends(get_loop)):
    record = loop.record_outcome(body.identity_state, body.approved, body.impact, body.fix_rule_id, body.decision_id)
    return record.to_dict()


@app.get("/learning")
def learning(loop: ImprovementLoop = Depends(get_loop)):
    return loop.learning_stats().to_dict()
