"""Page geometry: fold line, zones, centroids and proximity clustering."""
from __future__ import annotations

import logging
from typing import List, Literal, Sequence

import numpy as np

from ..models.events import Event
from .types import (
    Coordinates,
    PageZone,
    SpatialLocation,
    TargetLocation,
    ViewportAnalysis,
    ZoneBreakpoints,
    round_half_up,
)

logger = logging.getLogger(__name__)

CLUSTER_RADIUS_PX = 50.0
DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 800

_ZONE_DESCRIPTIONS = {
    PageZone.ABOVE_FOLD: "visible without scrolling",
    PageZone.MID_PAGE: "in the middle of the page (requires scrolling)",
    PageZone.BELOW_FOLD: "below the fold (requires significant scrolling)",
    PageZone.FOOTER: "in the footer area",
}


def _viewport_from_fold(avg_width: float, avg_height: float) -> ViewportAnalysis:
    fold = avg_height
    return ViewportAnalysis(
        average_width=round_half_up(avg_width),
        average_height=round_half_up(avg_height),
        fold_line=round_half_up(fold),
        page_height=round_half_up(fold * 3),
        zone_breakpoints=ZoneBreakpoints(
            above_fold=round_half_up(fold),
            mid_page=round_half_up(fold * 2),
            below_fold=round_half_up(fold * 3),
            footer=round_half_up(fold * 4),
        ),
    )


def analyze_viewport(events: Sequence[Event]) -> ViewportAnalysis:
    """Average the reported viewports; the fold is the average height."""
    sizes = [(e.viewport.width, e.viewport.height) for e in events
             if e.viewport and e.viewport.width and e.viewport.height]
    if not sizes:
        return _viewport_from_fold(DEFAULT_WIDTH, DEFAULT_HEIGHT)
    arr = np.asarray(sizes, dtype=float)
    return _viewport_from_fold(float(arr[:, 0].mean()), float(arr[:, 1].mean()))


def zone_for_y(y: float, viewport: ViewportAnalysis) -> PageZone:
    bp = viewport.zone_breakpoints
    if y <= bp.above_fold:
        return PageZone.ABOVE_FOLD
    if y <= bp.mid_page:
        return PageZone.MID_PAGE
    if y <= bp.below_fold:
        return PageZone.BELOW_FOLD
    return PageZone.FOOTER


def _horizontal_description(percent_x: float) -> str:
    if percent_x <= 25:
        return "left side"
    if percent_x <= 40:
        return "left-center area"
    if percent_x <= 60:
        return "center"
    if percent_x <= 75:
        return "right-center area"
    return "right side"


def _vertical_description(zone: PageZone, y: float) -> str:
    if zone is PageZone.ABOVE_FOLD:
        if y <= 100:
            return "at the top"
        if y <= 300:
            return "in the upper area"
        return "in the lower hero section"
    if zone is PageZone.MID_PAGE:
        return "in the main content area"
    if zone is PageZone.BELOW_FOLD:
        return "in the lower content area"
    return "in the footer"


def analyze_spatial_location(coords: Coordinates, viewport: ViewportAnalysis) -> SpatialLocation:
    zone = zone_for_y(coords.y, viewport)
    pct_x = round_half_up(coords.x / viewport.average_width * 100) if viewport.average_width else 0
    pct_y = round_half_up(coords.y / viewport.fold_line * 100) if viewport.fold_line else 0
    y_label = int(coords.y) if float(coords.y).is_integer() else coords.y
    description = (
        f"{_vertical_description(zone, coords.y)}, {_horizontal_description(pct_x)}, "
        f"{_ZONE_DESCRIPTIONS[zone]} (Y={y_label}px)"
    )
    return SpatialLocation(
        zone=zone,
        coordinates=coords,
        description=description,
        viewport_percentage_x=pct_x,
        viewport_percentage_y=pct_y,
        fold_line=viewport.fold_line,
        is_above_fold=zone is PageZone.ABOVE_FOLD,
    )


def above_fold_target(viewport: ViewportAnalysis) -> TargetLocation:
    suggested_y = round_half_up(viewport.fold_line * 0.5)
    return TargetLocation(
        zone=PageZone.ABOVE_FOLD,
        description=f"Move to Y={suggested_y}px (visible without scrolling, in the upper content area)",
        suggested_y=suggested_y,
    )


def calculate_centroid(coords: Sequence[Coordinates]) -> Coordinates:
    if not coords:
        return Coordinates(0, 0)
    arr = np.asarray([(c.x, c.y) for c in coords], dtype=float)
    mean = arr.mean(axis=0)
    return Coordinates(round_half_up(mean[0]), round_half_up(mean[1]))


def calculate_cluster_radius(coords: Sequence[Coordinates], centroid: Coordinates) -> int:
    if not coords:
        return 0
    arr = np.asarray([(c.x, c.y) for c in coords], dtype=float)
    distances = np.hypot(arr[:, 0] - centroid.x, arr[:, 1] - centroid.y)
    return round_half_up(float(distances.max()))


def event_coordinates(events: Sequence[Event]) -> List[Coordinates]:
    return [Coordinates(e.x, e.y) for e in events if e.has_coordinates]


def _greedy_clusters(points: List[Event], radius: float) -> List[List[Event]]:
    # Seeds are taken in input order and only the seed's neighbourhood is absorbed.
    clusters: List[List[Event]] = []
    assigned: set[int] = set()
    for i, seed in enumerate(points):
        if i in assigned:
            continue
        cluster = [seed]
        assigned.add(i)
        for j in range(i + 1, len(points)):
            if j in assigned:
                continue
            other = points[j]
            if np.hypot(seed.x - other.x, seed.y - other.y) <= radius:
                cluster.append(other)
                assigned.add(j)
        clusters.append(cluster)
    return clusters


def _dbscan_clusters(points: List[Event], radius: float) -> List[List[Event]]:
    from sklearn.cluster import DBSCAN

    coords = np.asarray([(e.x, e.y) for e in points], dtype=float)
    labels = DBSCAN(eps=radius, min_samples=1).fit(coords).labels_
    grouped: dict[int, List[Event]] = {}
    for event, label in zip(points, labels):
        grouped.setdefault(int(label), []).append(event)
    # Stable output order: by first member's input position
    return list(grouped.values())


def cluster_events_by_proximity(
    events: Sequence[Event],
    radius: float = CLUSTER_RADIUS_PX,
    method: Literal["greedy", "dbscan"] = "greedy",
) -> List[List[Event]]:
    """Group events with coordinates by spatial proximity.

    ``greedy`` reproduces the single-pass seed clustering whose result depends
    on input order; ``dbscan`` chains neighbours transitively and is order
    independent.
    """
    points = [e for e in events if e.has_coordinates]
    if not points:
        return []
    if method == "dbscan":
        return _dbscan_clusters(points, radius)
    return _greedy_clusters(points, radius)


def format_location(location: SpatialLocation) -> str:
    c = location.coordinates
    return " | ".join([
        f"Position: ({c.x}, {c.y})",
        f"Zone: {location.zone.value.replace('_', ' ', 1)}",
        "Above fold" if location.is_above_fold else "Below fold",
    ])
