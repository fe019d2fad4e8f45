from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Set, Tuple

import aiohttp  # type: ignore[reportMissingImports]

from .geo import distance, offset
from .models import Position

logger = logging.getLogger(__name__)

SNAP_TO_ROADS_URL = "https://roads.googleapis.com/v1/snapToRoads"
NEARBY_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"

HAZARD_TYPES = {
    "ROAD_CLOSED": "Road Closure",
    "CONSTRUCTION": "Construction",
    "ACCIDENT": "Accident",
    "CONGESTION": "Heavy Traffic",
    "EVENT": "Special Event",
    "LANE_CLOSED": "Lane Closure",
    "WEATHER": "Weather Condition",
}

DEFAULT_DESCRIPTIONS = {
    "ROAD_CLOSED": "Road closed ahead",
    "CONSTRUCTION": "Construction zone ahead",
    "ACCIDENT": "Accident reported ahead",
    "CONGESTION": "Heavy traffic ahead",
    "EVENT": "Special event affecting traffic",
    "LANE_CLOSED": "Lane closure ahead",
    "WEATHER": "Weather-related hazard ahead",
}


def hazard_type_label(incident_type: str) -> str:
    return HAZARD_TYPES.get(incident_type, "Road Issue")


def default_description(incident_type: str) -> str:
    return DEFAULT_DESCRIPTIONS.get(incident_type, "Road hazard ahead")


def points_around(position: Position, radius_m: float, count: int = 8) -> List[Tuple[float, float]]:
    points = []
    for i in range(count):
        angle = i * 2 * math.pi / count
        points.append(offset(position.lat, position.lng, radius_m * math.sin(angle), radius_m * math.cos(angle)))
    return points


def incidents_from_places(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Temporarily closed places along routes are the only incident signal."""
    incidents = []
    for place in payload.get("results") or []:
        if place.get("business_status") != "CLOSED_TEMPORARILY":
            continue
        loc = (place.get("geometry") or {}).get("location") or {}
        incidents.append({
            "id": place.get("place_id"),
            "type": "ROAD_CLOSED",
            "severity": "HIGH",
            "location": {"lat": loc.get("lat"), "lng": loc.get("lng")},
            "description": place.get("name"),
        })
    return incidents


class GoogleHazardDetector:
    """Polls Google Roads/Places for incidents around a position.

    Only incidents missing from the previous poll are returned; the ids seen
    on the latest poll form the snapshot used for that comparison.
    """

    def __init__(self, api_key: Optional[str], radius_m: float = 2000.0, session: Optional[aiohttp.ClientSession] = None, timeout_s: float = 10.0) -> None:
        self._api_key = api_key
        self._radius_m = radius_m
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        self.last_checked_hazards: Set[str] = set()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def reset(self) -> None:
        self.last_checked_hazards.clear()

    async def _snap_to_roads(self, position: Position) -> List[Dict[str, Any]]:
        path = "|".join(f"{lat},{lng}" for lat, lng in points_around(position, self._radius_m))
        session = await self._get_session()
        params = {"path": path, "interpolate": "true", "key": self._api_key}
        async with session.get(SNAP_TO_ROADS_URL, params=params) as resp:
            resp.raise_for_status()
            data = await resp.json()
        return data.get("snappedPoints") or []

    async def _nearby_incidents(self, snapped: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not snapped:
            return []
        loc = snapped[0].get("location") or {}
        session = await self._get_session()
        params = {
            "location": f"{loc.get('latitude')},{loc.get('longitude')}",
            "radius": str(int(self._radius_m)),
            "type": "route",
            "key": self._api_key,
        }
        async with session.get(NEARBY_SEARCH_URL, params=params) as resp:
            resp.raise_for_status()
            data = await resp.json()
        return incidents_from_places(data)

    def _new_hazards(self, position: Position, incidents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        current: Set[str] = set()
        hazards = []
        for incident in incidents:
            hazard_id = str(incident.get("id"))
            current.add(hazard_id)
            if hazard_id in self.last_checked_hazards:
                continue
            loc = incident.get("location") or {}
            dist = distance(position.lat, position.lng, loc.get("lat"), loc.get("lng"))
            hazards.append({
                "id": hazard_id,
                "type": hazard_type_label(incident.get("type", "")),
                "severity": incident.get("severity"),
                "location": {"lat": loc.get("lat"), "lng": loc.get("lng")},
                "description": incident.get("description") or default_description(incident.get("type", "")),
                "distance": round(dist) if math.isfinite(dist) else None,
            })
        self.last_checked_hazards = current
        return hazards

    async def check_for_hazards(self, position: Position) -> List[Dict[str, Any]]:
        if not self._api_key:
            return []
        snapped = await self._snap_to_roads(position)
        incidents = await self._nearby_incidents(snapped)
        hazards = self._new_hazards(position, incidents)
        if hazards:
            logger.info("%d new hazard(s) within %.0f m", len(hazards), self._radius_m)
        return hazards
