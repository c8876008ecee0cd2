"""Shared fixtures: an event factory and a clean settings object."""

import itertools

import pytest

from storefront_analyzer.config import Settings, reset_settings
from storefront_analyzer.models.events import Event, EventType, Viewport

NOW_MS = 1_700_000_000_000

_ids = itertools.count()


def make_event(event_type, session_id="s1", timestamp=NOW_MS, **fields) -> Event:
    """Build an event; ``event_type`` may be an EventType or its string value."""
    if not isinstance(event_type, EventType):
        event_type = EventType(event_type)
    return Event(id=f"evt_{next(_ids)}", session_id=session_id, type=event_type, timestamp=timestamp, **fields)


@pytest.fixture
def now_ms() -> int:
    return NOW_MS


@pytest.fixture
def event():
    return make_event


@pytest.fixture
def settings() -> Settings:
    reset_settings()
    return Settings()


@pytest.fixture
def rage_scenario():
    """Six rage clicks inside a 20px box spread over 3 of 10 sessions."""
    events = []
    for n, (x, y) in enumerate([(100, 200), (105, 210), (110, 205), (115, 215), (120, 200), (118, 219)]):
        events.append(make_event(EventType.RAGE_CLICK, session_id=f"s{n % 3}", x=x, y=y,
                                 element_selector="button.add", element_text="Add to cart",
                                 viewport=Viewport(1280, 800)))
    for n in range(3, 10):
        events.append(make_event(EventType.PAGE_VIEW, session_id=f"s{n}"))
    return events
