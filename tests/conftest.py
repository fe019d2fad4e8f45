"""
Shared fixtures and collaborator fakes for navpi tests.
"""

import asyncio
import math

import pytest

from navpi.modules.navigation.events import NAVIGATION_TOPIC
from navpi.modules.navigation.exceptions import NoRouteError
from navpi.modules.navigation.models import LatLng, RouteStep

# Metres per degree of longitude on the equator for R = 6,371,000 m
M_PER_DEG = 6_371_000.0 * math.pi / 180.0


def east(metres):
    """Longitude offset (degrees, on the equator) for a distance in metres."""
    return metres / M_PER_DEG


def make_step(start, end, instruction="Continue"):
    return RouteStep(
        instruction=instruction,
        distance="0.1 km",
        duration="1 min",
        start_location=LatLng(*start) if start is not None else None,
        end_location=LatLng(*end) if end is not None else None,
    )


class FakeDirections:
    def __init__(self, steps=None, error=None):
        self.steps = steps or []
        self.error = error
        self.calls = []

    async def get_directions(self, origin, destination):
        self.calls.append((origin, destination))
        if self.error is not None:
            raise self.error
        if not self.steps:
            raise NoRouteError("no route")
        return list(self.steps)


class FakeHazards:
    def __init__(self, results=None, error=None):
        self.results = list(results or [])
        self.error = error
        self.positions = []

    async def check_for_hazards(self, position):
        self.positions.append(position)
        if self.error is not None:
            raise self.error
        if self.results:
            return self.results.pop(0)
        return []


class FakeFormatter:
    def __init__(self, prefix="Soon: ", error=None):
        self.prefix = prefix
        self.error = error
        self.steps = []

    async def format_navigation_instruction(self, step):
        self.steps.append(step)
        if self.error is not None:
            raise self.error
        return {**step.to_dict(), "instruction": self.prefix + step.instruction}


async def open_navigation_queue(bus):
    return await bus.open_queue(NAVIGATION_TOPIC, max_queue_size=1000)


def drain(queue):
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


def event_types(events):
    return [e["type"] for e in events]


@pytest.fixture
def two_step_route():
    """Two steps: (0,-0.001) -> (0,0) -> (0,0.001), about 111 m each."""
    return [
        make_step((0.0, -0.001), (0.0, 0.0), "Head east on Main St"),
        make_step((0.0, 0.0), (0.0, 0.001), "Turn left onto Oak Ave"),
    ]


@pytest.fixture
def run():
    """Run a coroutine function to completion on a fresh event loop."""
    def _run(coro):
        return asyncio.run(coro)
    return _run
