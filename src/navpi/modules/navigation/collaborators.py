"""Contracts of the external services the navigation core talks to."""

from __future__ import annotations

from typing import Any, Dict, List, Protocol

from .models import Position, RouteStep


class DirectionsProvider(Protocol):
    async def get_directions(self, origin: str, destination: str) -> List[RouteStep]:
        """Ordered steps; raises NoRouteError when there is no route."""
        ...


class HazardDetector(Protocol):
    async def check_for_hazards(self, position: Position) -> List[Dict[str, Any]]:
        ...


class InstructionFormatter(Protocol):
    async def format_navigation_instruction(self, step: RouteStep) -> Dict[str, Any]:
        """step.to_dict() with a humanized 'instruction'; the original step on failure."""
        ...
