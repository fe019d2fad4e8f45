from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ...config import NavConfig
from ...event_bus import EventBus
from .collaborators import DirectionsProvider, InstructionFormatter
from .events import (
    APPROACHING_TURN,
    HAZARDOUS_CONDITIONS,
    NAVIGATION_COMPLETE,
    NAVIGATION_TOPIC,
    NEW_INSTRUCTION,
    envelope,
)
from .geo import distance_between
from .hazards import HazardPollAdapter
from .models import Position, RoutePoint, RouteStep
from .route_points import generate_route_points

logger = logging.getLogger(__name__)


class ProgressTracker:
    """Turn-by-turn state machine for one navigation session.

    Idle -> Navigating on start_navigation(), back to Idle when the last step
    is reached or stop_navigation() is called. Position updates are applied
    one at a time under an asyncio.Lock, in arrival order.

    Events go to the ``navigation`` topic of the bus:
    new_instruction, approaching_turn, hazardous_conditions and
    navigation_complete (the hazard adapter adds ``error``).
    """

    def __init__(
        self,
        events: EventBus,
        directions: DirectionsProvider,
        hazards: HazardPollAdapter,
        formatter: Optional[InstructionFormatter] = None,
        config: Optional[NavConfig] = None,
    ) -> None:
        self._events = events
        self._directions = directions
        self._hazards = hazards
        self._formatter = formatter
        self._config = config or NavConfig()

        self.current_route: Optional[List[RouteStep]] = None
        self.route_points: Optional[List[RoutePoint]] = None
        self.current_step_index: int = 0
        self.is_navigating: bool = False
        self.has_warned_for_current_step: bool = False

        self._lock = asyncio.Lock()
        self._poll_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start_navigation(self, origin: str, destination: str) -> Dict[str, Any]:
        try:
            steps = list(await self._directions.get_directions(origin, destination))
            points = generate_route_points(steps, self._config.point_spacing_m)
        except Exception as exc:
            logger.error("Failed to start navigation %r -> %r: %s", origin, destination, exc)
            return {"error": "Failed to start navigation", "detail": str(exc)}

        async with self._lock:
            if self.is_navigating:
                logger.info("Replacing active session (step %d/%d)", self.current_step_index, len(self.current_route or []))
                await self._stop_locked()
            self.current_route = steps
            self.route_points = points
            self.current_step_index = 0
            self.has_warned_for_current_step = False
            self.is_navigating = True

        logger.info("Navigation started: %d steps, %d route points", len(steps), len(points))
        return {
            "message": "Navigation started",
            "next_instruction": steps[0].to_dict(),
            "origin": points[0].to_dict(),
            "destination": points[-1].to_dict(),
            "route_points": [p.to_dict() for p in points],
            "total_steps": len(steps),
        }

    async def stop_navigation(self) -> Optional[Dict[str, int]]:
        async with self._lock:
            return await self._stop_locked()

    async def _stop_locked(self) -> Optional[Dict[str, int]]:
        if not self.is_navigating and self.current_route is None:
            logger.debug("stop_navigation with no active session; ignoring")
            self._cancel_poller()
            return None

        self.is_navigating = False
        self._cancel_poller()
        self.has_warned_for_current_step = False

        # Stats must come from the route before it is cleared
        stats = {
            "total_steps": len(self.current_route or []),
            "completed_steps": self.current_step_index,
        }
        logger.info("Navigation complete: %d/%d steps", stats["completed_steps"], stats["total_steps"])
        await self._emit(NAVIGATION_COMPLETE, stats)

        self.current_route = None
        self.route_points = None
        self.current_step_index = 0
        return stats

    # ------------------------------------------------------------------
    # Position updates
    # ------------------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def check_progress(self, position: Position) -> None:
        async with self._lock:
            if not self.is_navigating or not self.current_route:
                logger.debug("Navigation not active, skipping progress check")
                return
            await self._check_approach(position)
            await self._check_hazards(position)
            await self._check_arrival(position)

    async def _check_approach(self, position: Position) -> None:
        if self.has_warned_for_current_step:
            return
        step = self.current_step
        dist = distance_between(position, step.end_location)
        if dist > self._config.approach_threshold_m:
            return
        instruction = step.instruction
        if self._formatter is not None:
            try:
                formatted = await self._formatter.format_navigation_instruction(step)
                instruction = formatted.get("instruction") or instruction
            except Exception as exc:
                logger.warning("Instruction formatter failed; using raw text: %s", exc)
        await self._emit(APPROACHING_TURN, {"distance": int(round(dist)), "instruction": instruction})
        self.has_warned_for_current_step = True

    async def _check_hazards(self, position: Position) -> None:
        try:
            hazards = await self._hazards.check(position)
        except Exception as exc:
            logger.warning("Hazard adapter raised: %s", exc)
            return
        if hazards:
            await self._emit(HAZARDOUS_CONDITIONS, hazards)

    async def _check_arrival(self, position: Position) -> None:
        dist = distance_between(position, self.current_step.end_location)
        if dist > self._config.arrival_threshold_m:
            return
        self.current_step_index += 1
        logger.info("Reached end of step %d (%.1f m)", self.current_step_index, dist)
        if self.current_step_index >= len(self.current_route or []):
            await self._stop_locked()
            return
        self.has_warned_for_current_step = False
        await self._emit(NEW_INSTRUCTION, self.current_step.to_dict())

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def current_step(self) -> Optional[RouteStep]:
        route = self.current_route or []
        if 0 <= self.current_step_index < len(route):
            return route[self.current_step_index]
        return None

    def get_navigation_state(self) -> Dict[str, Any]:
        step = self.current_step
        return {
            "is_navigating": self.is_navigating,
            "current_step_index": self.current_step_index,
            "current_step": step.to_dict() if step else None,
            "total_steps": len(self.current_route or []),
        }

    # ------------------------------------------------------------------
    # Background position polling handle
    # ------------------------------------------------------------------

    def attach_poller(self, task: asyncio.Task | None) -> None:
        """Take ownership of the position-polling task; None just cancels the current one."""
        self._cancel_poller()
        self._poll_task = task

    def _cancel_poller(self) -> None:
        task, self._poll_task = self._poll_task, None
        # The poller may be the task running this stop; it exits on its own
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _emit(self, event_type: str, data: Any) -> None:
        await self._events.publish(NAVIGATION_TOPIC, envelope(event_type, data))
