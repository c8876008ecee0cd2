from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..models.events import Event, EventType, Viewport

logger = logging.getLogger(__name__)


class InvalidEventInput(ValueError):
    """Raised when raw event input is wrongly typed at the ingestion boundary."""

    def __init__(self, message: str, index: int | None = None):
        super().__init__(message)
        self.index = index


class ViewportSchema(BaseModel):
    width: int = Field(gt=0, le=20000)
    height: int = Field(gt=0, le=20000)


class EventSchemaV1(BaseModel):
    id: str = Field(min_length=1, max_length=128)
    session_id: str = Field(min_length=1, max_length=128, alias="sessionId")
    type: str = Field(min_length=1, max_length=64)
    timestamp: int = Field(ge=0)
    x: Optional[float] = Field(None, allow_inf_nan=False)
    y: Optional[float] = Field(None, allow_inf_nan=False)
    element_selector: Optional[str] = Field(None, alias="elementSelector", max_length=1024)
    element_text: Optional[str] = Field(None, alias="elementText", max_length=2048)
    section_id: Optional[str] = Field(None, alias="sectionId", max_length=256)
    scroll_depth: Optional[float] = Field(None, alias="scrollDepth", ge=0, le=100, allow_inf_nan=False)
    viewport: Optional[ViewportSchema] = None
    click_count: Optional[int] = Field(None, alias="clickCount", ge=0)
    inferred_behavior: Optional[str] = Field(None, alias="inferredBehavior")
    page_url: Optional[str] = Field(None, alias="pageUrl", max_length=2048)

    model_config = {"populate_by_name": True, "extra": "ignore"}

    def to_event(self) -> Event:
        return Event(
            id=self.id,
            session_id=self.session_id,
            type=EventType.parse(self.type),
            timestamp=self.timestamp,
            x=self.x,
            y=self.y,
            element_selector=self.element_selector,
            element_text=self.element_text,
            section_id=self.section_id,
            scroll_depth=self.scroll_depth,
            viewport=Viewport(self.viewport.width, self.viewport.height) if self.viewport else None,
            click_count=self.click_count,
            inferred_behavior=self.inferred_behavior,
            page_url=self.page_url,
        )


def validate_event(evt: Dict[str, Any]) -> tuple[bool, str | None]:
    try:
        EventSchemaV1.model_validate(evt)
        return True, None
    except ValidationError as ve:
        return False, f"validation_error:{ve.errors()[0].get('msg', 'invalid')}"


def parse_events(raw: Iterable[Any]) -> List[Event]:
    """Validate raw dicts into immutable events.

    Event instances pass through untouched. Unknown type strings become
    ``EventType.OTHER``; structurally invalid input raises InvalidEventInput.
    """
    events: List[Event] = []
    for index, item in enumerate(raw):
        if isinstance(item, Event):
            events.append(item)
            continue
        if not isinstance(item, dict):
            raise InvalidEventInput(f"event #{index} is not an object", index=index)
        try:
            events.append(EventSchemaV1.model_validate(item).to_event())
        except ValidationError as ve:
            err = ve.errors()[0]
            loc = ".".join(str(p) for p in err.get("loc", ()))
            logger.warning(f"Rejected event #{index}: {loc} {err.get('msg')}")
            raise InvalidEventInput(f"event #{index}: {loc} {err.get('msg', 'invalid')}", index=index) from ve
    return events
