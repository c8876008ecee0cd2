"""Domain types for storefront interaction events."""
from __future__ import annotations

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    CLICK = "click"
    RAGE_CLICK = "rage_click"
    DEAD_CLICK = "dead_click"
    DOUBLE_CLICK = "double_click"
    CTA_CLICK = "cta_click"
    PAGE_VIEW = "page_view"
    SECTION_VIEW = "section_view"
    SCROLL_DEPTH = "scroll_depth"
    HOVER_INTENT = "hover_intent"
    TEXT_SELECTION = "text_selection"
    PRODUCT_VIEW = "product_view"
    ADD_TO_CART = "add_to_cart"
    CART_REVIEW = "cart_review"
    CHECKOUT_START = "checkout_start"
    CHECKOUT_ABANDON = "checkout_abandon"
    PURCHASE = "purchase"
    BOUNCE = "bounce"
    FORM_ERROR = "form_error"
    FORM_BLUR = "form_blur"
    EXIT_INTENT = "exit_intent"
    PRICE_CHECK = "price_check"
    SCROLL_REVERSAL = "scroll_reversal"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str) -> "EventType":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int


DEFAULT_VIEWPORT = Viewport(width=1280, height=800)


@dataclass(frozen=True)
class Event:
    """A single storefront interaction; timestamps are epoch milliseconds."""
    id: str
    session_id: str
    type: EventType
    timestamp: int
    x: Optional[float] = None
    y: Optional[float] = None
    element_selector: Optional[str] = None
    element_text: Optional[str] = None
    section_id: Optional[str] = None
    scroll_depth: Optional[float] = None
    viewport: Optional[Viewport] = None
    click_count: Optional[int] = None
    inferred_behavior: Optional[str] = None
    page_url: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.x is not None and self.y is not None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data
