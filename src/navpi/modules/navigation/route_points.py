from __future__ import annotations

import logging
import math
from typing import List, Sequence

from .exceptions import NoRouteError
from .geo import distance_between, interpolate
from .models import LatLng, RoutePoint, RouteStep

logger = logging.getLogger(__name__)

DEFAULT_SPACING_M = 200.0


def _boundary(location: LatLng | None, instruction: str) -> RoutePoint:
    if location is None:
        return RoutePoint(lat=None, lng=None, instruction=instruction, is_navigation_point=True)
    return RoutePoint(lat=location.lat, lng=location.lng, instruction=instruction, is_navigation_point=True)


def points_for_step(step: RouteStep, spacing_m: float = DEFAULT_SPACING_M) -> List[RoutePoint]:
    """Filler points plus the end boundary for one step (start excluded)."""
    length = distance_between(step.start_location, step.end_location)
    points: List[RoutePoint] = []
    if math.isfinite(length):
        num_points = max(1, math.floor(length / spacing_m))
        for i in range(1, num_points):
            lat, lng = interpolate(step.start_location, step.end_location, i / num_points)
            points.append(RoutePoint(lat=lat, lng=lng))
    else:
        logger.warning("Step %r has unusable geometry; no filler points", step.instruction)
    points.append(_boundary(step.end_location, step.instruction))
    return points


def generate_route_points(steps: Sequence[RouteStep], spacing_m: float = DEFAULT_SPACING_M) -> List[RoutePoint]:
    """Densify a route into points roughly `spacing_m` apart.

    The points flagged is_navigation_point are, in order, the origin and the
    end of every step, whatever the interpolation density.
    """
    if not steps:
        raise NoRouteError("No route steps to generate points from")

    points = [_boundary(steps[0].start_location, steps[0].instruction)]
    for step in steps:
        points.extend(points_for_step(step, spacing_m))
    logger.debug("Generated %d route points for %d steps", len(points), len(steps))
    return points
