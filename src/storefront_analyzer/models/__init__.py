from .events import DEFAULT_VIEWPORT, Event, EventType, Viewport

__all__ = ["Event", "EventType", "Viewport", "DEFAULT_VIEWPORT"]
