from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ...event_bus import EventBus
from .collaborators import HazardDetector
from .events import ERROR, NAVIGATION_TOPIC, envelope
from .models import Position

logger = logging.getLogger(__name__)


class HazardPollAdapter:
    """Best-effort hazard lookup for one position update.

    Collaborator failures are logged and reported as an ``error`` event; they
    never reach the caller.
    """

    def __init__(self, detector: Optional[HazardDetector], events: EventBus) -> None:
        self._detector = detector
        self._events = events

    async def check(self, position: Position) -> List[Dict[str, Any]]:
        if self._detector is None:
            return []
        try:
            hazards = await self._detector.check_for_hazards(position)
        except Exception as exc:
            logger.warning("Hazard check failed at %.6f,%.6f: %s", position.lat, position.lng, exc)
            await self._events.publish(NAVIGATION_TOPIC, envelope(ERROR, {"type": "hazard_check", "error": str(exc)}))
            return []
        return list(hazards or [])
