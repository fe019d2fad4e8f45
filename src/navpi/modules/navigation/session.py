from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Dict, Optional, Protocol

from ...config import NavConfig
from .models import Position
from .tracker import ProgressTracker

logger = logging.getLogger(__name__)


class PositionSource(Protocol):
    def latest_position(self) -> Optional[Position]:
        ...


class TripLog(Protocol):
    async def trip_started(self, origin: str, destination: str, total_steps: int) -> None:
        ...


def _valid_coordinate(value: Any, limit: float) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and -limit <= value <= limit


class NavigationSessionManager:
    """Drives one ProgressTracker: route setup, position sourcing, teardown.

    Live mode polls ``gps`` every ``poll_interval_s``; a tick that finds the
    previous update still running is skipped. Simulation mode takes positions
    only from update_simulated_position().
    """

    def __init__(
        self,
        tracker: ProgressTracker,
        gps: Optional[PositionSource] = None,
        config: Optional[NavConfig] = None,
        trips: Optional[TripLog] = None,
    ) -> None:
        self._tracker = tracker
        self._gps = gps
        self._config = config or NavConfig()
        self._trips = trips
        self._simulation = False
        self._last_simulated: Optional[Position] = None

    @property
    def tracker(self) -> ProgressTracker:
        return self._tracker

    @property
    def simulation_enabled(self) -> bool:
        return self._simulation

    async def start_navigation(self, origin: str, destination: str) -> Dict[str, Any]:
        result = await self._tracker.start_navigation(origin, destination)
        if "error" in result:
            return result
        if self._trips is not None:
            try:
                await self._trips.trip_started(origin, destination, result["total_steps"])
            except Exception as exc:
                logger.warning("Could not record trip start: %s", exc)
        if not self._simulation:
            self._start_poller()
        return result

    async def stop_navigation(self) -> Optional[Dict[str, int]]:
        return await self._tracker.stop_navigation()

    async def update_position(self, position: Position) -> bool:
        if not (_valid_coordinate(position.lat, 90) and _valid_coordinate(position.lng, 180)):
            logger.warning("Rejected position with invalid coordinates: %r", position)
            return False
        await self._tracker.check_progress(position)
        return True

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def enable_simulation(self) -> None:
        self._simulation = True
        self._tracker.attach_poller(None)
        logger.info("Simulation mode enabled")

    def disable_simulation(self) -> None:
        self._simulation = False
        self._last_simulated = None
        if self._tracker.is_navigating:
            self._start_poller()
        logger.info("Simulation mode disabled")

    async def update_simulated_position(self, lat: Any, lng: Any, accuracy: Optional[float] = None) -> bool:
        if not self._simulation:
            logger.warning("Simulated position ignored: simulation mode is off")
            return False
        if not (_valid_coordinate(lat, 90) and _valid_coordinate(lng, 180)):
            logger.warning("Simulated position ignored: invalid coordinates %r, %r", lat, lng)
            return False
        # Fixed precision keeps serialized payloads free of exponent notation
        position = Position(float(f"{lat:.6f}"), float(f"{lng:.6f}"), accuracy)
        self._last_simulated = position
        await self._tracker.check_progress(position)
        return True

    # ------------------------------------------------------------------
    # Live polling
    # ------------------------------------------------------------------

    def _start_poller(self) -> None:
        task = asyncio.create_task(self._poll_loop(), name="navigation-poller")
        self._tracker.attach_poller(task)

    def _live_position(self) -> Optional[Position]:
        if self._gps is not None:
            position = self._gps.latest_position()
            if position is not None:
                return position
        if self._config.default_position is not None:
            lat, lng = self._config.default_position
            return Position(lat, lng)
        return None

    async def _poll_loop(self) -> None:
        logger.info("Position polling started (every %.1fs)", self._config.poll_interval_s)
        while self._tracker.is_navigating:
            await asyncio.sleep(self._config.poll_interval_s)
            if not self._tracker.is_navigating:
                break
            if self._tracker.busy:
                logger.debug("Previous position update still running; skipping tick")
                continue
            position = self._live_position()
            if position is None:
                logger.warning("No position available (no GPS fix, no default position)")
                continue
            try:
                await self._tracker.check_progress(position)
            except Exception as exc:
                logger.warning("Progress check failed: %s", exc)
        logger.info("Position polling stopped")

    def get_navigation_state(self) -> Dict[str, Any]:
        state = self._tracker.get_navigation_state()
        state["simulation"] = self._simulation
        state["last_simulated_position"] = self._last_simulated.to_dict() if self._last_simulated else None
        return state
