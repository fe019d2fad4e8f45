from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import aiohttp  # type: ignore[reportMissingImports]

from .exceptions import DirectionsError, NoRouteError
from .models import LatLng, RouteStep

logger = logging.getLogger(__name__)

DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"

_TAG_RE = re.compile(r"<[^>]*>")


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text or "")


def parse_directions(payload: Dict[str, Any]) -> List[RouteStep]:
    """Map a Directions API response to RouteSteps (first route, first leg)."""
    status = payload.get("status", "OK")
    routes = payload.get("routes") or []
    if status != "OK" or not routes:
        raise NoRouteError(f"Directions returned {status} with {len(routes)} routes")
    legs = routes[0].get("legs") or []
    steps = legs[0].get("steps") if legs else None
    if not steps:
        raise NoRouteError("Route has no steps")
    return [
        RouteStep(
            instruction=strip_html(step.get("html_instructions", "")),
            distance=(step.get("distance") or {}).get("text"),
            duration=(step.get("duration") or {}).get("text"),
            maneuver=step.get("maneuver") or None,
            start_location=LatLng.from_dict(step.get("start_location")),
            end_location=LatLng.from_dict(step.get("end_location")),
        )
        for step in steps
    ]


class GoogleDirectionsClient:
    def __init__(self, api_key: Optional[str], session: Optional[aiohttp.ClientSession] = None, timeout_s: float = 10.0, url: str = DIRECTIONS_URL) -> None:
        self._api_key = api_key
        self._url = url
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def get_directions(self, origin: str, destination: str) -> List[RouteStep]:
        if not self._api_key:
            raise DirectionsError("GOOGLE_MAPS_API_KEY not configured")
        logger.info("Fetching directions %r -> %r", origin, destination)
        session = await self._get_session()
        params = {"origin": origin, "destination": destination, "key": self._api_key}
        try:
            async with session.get(self._url, params=params) as resp:
                resp.raise_for_status()
                payload = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise DirectionsError(f"Directions request failed: {exc}") from exc
        steps = parse_directions(payload)
        logger.info("Processed %d navigation steps", len(steps))
        return steps
