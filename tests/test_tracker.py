"""
Unit tests for the navigation progress state machine.
"""

import asyncio

import pytest

from navpi.config import NavConfig
from navpi.event_bus import EventBus
from navpi.modules.navigation.exceptions import DirectionsError
from navpi.modules.navigation.hazards import HazardPollAdapter
from navpi.modules.navigation.models import Position
from navpi.modules.navigation.tracker import ProgressTracker

from conftest import (
    FakeDirections,
    FakeFormatter,
    FakeHazards,
    drain,
    east,
    event_types,
    make_step,
    open_navigation_queue,
)


class SlowHazards(FakeHazards):
    """Yields to the loop mid-update so a second update can queue up."""

    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    async def check_for_hazards(self, position):
        self.positions.append(position)
        await asyncio.sleep(self.delay)
        return []


def _tracker(bus, steps, hazards=None, formatter=None, directions=None, **cfg):
    return ProgressTracker(
        bus,
        directions or FakeDirections(steps),
        HazardPollAdapter(hazards or FakeHazards(), bus),
        formatter,
        NavConfig(**cfg),
    )


async def _started(steps, **kwargs):
    bus = EventBus()
    queue = await open_navigation_queue(bus)
    tracker = _tracker(bus, steps, **kwargs)
    result = await tracker.start_navigation("A", "B")
    assert "error" not in result
    return tracker, queue


class TestStartNavigation:

    @pytest.mark.unit
    def test_start_resets_state(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route)
            return tracker, drain(queue)

        tracker, events = run(scenario())
        assert tracker.is_navigating is True
        assert tracker.current_step_index == 0
        assert tracker.has_warned_for_current_step is False
        assert tracker.current_route == two_step_route
        assert events == []

    @pytest.mark.unit
    def test_start_returns_first_instruction_and_points(self, run, two_step_route):
        async def scenario():
            bus = EventBus()
            tracker = _tracker(bus, two_step_route)
            return await tracker.start_navigation("A", "B")

        result = run(scenario())
        assert result["next_instruction"]["instruction"] == "Head east on Main St"
        assert result["origin"] == {"lat": 0.0, "lng": -0.001, "instruction": "Head east on Main St", "is_navigation_point": True}
        assert (result["destination"]["lat"], result["destination"]["lng"]) == (0.0, 0.001)
        assert result["route_points"][0] == result["origin"]
        assert result["route_points"][-1] == result["destination"]
        assert result["total_steps"] == 2

    @pytest.mark.unit
    def test_failed_start_returns_error_and_keeps_state(self, run, two_step_route):
        async def scenario():
            bus = EventBus()
            directions = FakeDirections(two_step_route)
            tracker = _tracker(bus, two_step_route, directions=directions)
            await tracker.start_navigation("A", "B")
            await tracker.check_progress(Position(0.0, 0.0))
            directions.error = DirectionsError("offline")
            result = await tracker.start_navigation("C", "D")
            return tracker, result

        tracker, result = run(scenario())
        assert "error" in result
        assert tracker.is_navigating is True
        assert tracker.current_step_index == 1
        assert tracker.current_route is not None

    @pytest.mark.unit
    def test_failed_first_start_stays_idle(self, run):
        async def scenario():
            bus = EventBus()
            tracker = _tracker(bus, [])
            return tracker, await tracker.start_navigation("A", "B")

        tracker, result = run(scenario())
        assert result["error"] == "Failed to start navigation"
        assert tracker.is_navigating is False
        assert tracker.current_route is None

    @pytest.mark.unit
    def test_restart_completes_previous_session_first(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route)
            await tracker.check_progress(Position(0.0, 0.0))
            drain(queue)
            await tracker.start_navigation("C", "D")
            return tracker, drain(queue)

        tracker, events = run(scenario())
        assert event_types(events) == ["navigation_complete"]
        assert events[0]["data"] == {"total_steps": 2, "completed_steps": 1}
        assert tracker.is_navigating is True
        assert tracker.current_step_index == 0


class TestArrival:

    @pytest.mark.unit
    def test_arrival_advances_and_emits_new_instruction(self, run):
        steps = [
            make_step((0.0, -0.001), (0.0, 0.0), "Head east"),
            make_step((0.0, 0.0), (0.0, 0.001), "Keep straight"),
            make_step((0.0, 0.001), (0.001, 0.001), "Turn left"),
        ]

        async def scenario():
            tracker, queue = await _started(steps)
            await tracker.check_progress(Position(0.0, 0.0))
            return tracker, drain(queue)

        tracker, events = run(scenario())
        assert tracker.current_step_index == 1
        assert tracker.has_warned_for_current_step is False
        assert event_types(events)[-1] == "new_instruction"
        assert events[-1]["data"]["instruction"] == "Keep straight"

    @pytest.mark.unit
    def test_arrival_at_last_step_completes(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route)
            await tracker.check_progress(Position(0.0, 0.0))
            await tracker.check_progress(Position(0.0, 0.001))
            return tracker, drain(queue)

        tracker, events = run(scenario())
        complete = [e for e in events if e["type"] == "navigation_complete"]
        assert len(complete) == 1
        assert complete[0]["data"] == {"total_steps": 2, "completed_steps": 2}
        assert tracker.is_navigating is False
        assert tracker.current_route is None
        assert tracker.current_step_index == 0

    @pytest.mark.unit
    def test_updates_after_completion_are_ignored(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route)
            await tracker.check_progress(Position(0.0, 0.0))
            await tracker.check_progress(Position(0.0, 0.001))
            drain(queue)
            await tracker.check_progress(Position(0.0, 0.001))
            return drain(queue)

        assert run(scenario()) == []

    @pytest.mark.unit
    def test_warning_and_arrival_in_one_update(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route)
            await tracker.check_progress(Position(0.0, -east(30)))
            return drain(queue)

        events = run(scenario())
        assert event_types(events) == ["approaching_turn", "new_instruction"]
        assert events[0]["data"] == {"distance": 30, "instruction": "Head east on Main St"}

    @pytest.mark.unit
    def test_custom_arrival_threshold(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route, arrival_threshold_m=20.0)
            await tracker.check_progress(Position(0.0, -east(30)))
            return tracker, drain(queue)

        tracker, events = run(scenario())
        assert event_types(events) == ["approaching_turn"]
        assert tracker.current_step_index == 0


class TestApproachWarning:

    @pytest.mark.unit
    def test_warning_at_80m_without_advancing(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route)
            await tracker.check_progress(Position(0.0, -east(80)))
            return tracker, drain(queue)

        tracker, events = run(scenario())
        assert event_types(events) == ["approaching_turn"]
        assert events[0]["data"]["distance"] == 80
        assert tracker.current_step_index == 0
        assert tracker.has_warned_for_current_step is True

    @pytest.mark.unit
    def test_no_repeat_warning_for_same_step(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route)
            await tracker.check_progress(Position(0.0, -east(80)))
            drain(queue)
            await tracker.check_progress(Position(0.0, -east(60)))
            return tracker, drain(queue)

        tracker, events = run(scenario())
        assert events == []
        assert tracker.current_step_index == 0

    @pytest.mark.unit
    def test_no_warning_beyond_threshold(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route)
            await tracker.check_progress(Position(0.0, -east(101)))
            return tracker, drain(queue)

        tracker, events = run(scenario())
        assert events == []
        assert tracker.has_warned_for_current_step is False

    @pytest.mark.unit
    def test_warning_rearms_after_step_advance(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route)
            await tracker.check_progress(Position(0.0, 0.0))
            drain(queue)
            await tracker.check_progress(Position(0.0, 0.001 - east(70)))
            return drain(queue)

        events = run(scenario())
        assert event_types(events) == ["approaching_turn"]
        assert events[0]["data"]["instruction"] == "Turn left onto Oak Ave"

    @pytest.mark.unit
    def test_formatter_humanizes_warning(self, run, two_step_route):
        formatter = FakeFormatter(prefix="In a moment, ")

        async def scenario():
            tracker, queue = await _started(two_step_route, formatter=formatter)
            await tracker.check_progress(Position(0.0, -east(80)))
            return drain(queue)

        events = run(scenario())
        assert events[0]["data"]["instruction"] == "In a moment, Head east on Main St"
        assert formatter.steps[0].instruction == "Head east on Main St"

    @pytest.mark.unit
    def test_formatter_failure_falls_back_to_raw_text(self, run, two_step_route):
        formatter = FakeFormatter(error=RuntimeError("llm down"))

        async def scenario():
            tracker, queue = await _started(two_step_route, formatter=formatter)
            await tracker.check_progress(Position(0.0, 0.0))
            return tracker, drain(queue)

        tracker, events = run(scenario())
        assert event_types(events) == ["approaching_turn", "new_instruction"]
        assert events[0]["data"]["instruction"] == "Head east on Main St"
        assert tracker.current_step_index == 1


class TestHazards:

    @pytest.mark.unit
    def test_hazards_emitted_between_warning_and_arrival(self, run, two_step_route):
        hazard = {"id": "h1", "type": "Road Closure"}
        hazards = FakeHazards(results=[[hazard]])

        async def scenario():
            tracker, queue = await _started(two_step_route, hazards=hazards)
            await tracker.check_progress(Position(0.0, 0.0))
            return drain(queue)

        events = run(scenario())
        assert event_types(events) == ["approaching_turn", "hazardous_conditions", "new_instruction"]
        assert events[1]["data"] == [hazard]

    @pytest.mark.unit
    def test_hazard_failure_does_not_block_arrival(self, run, two_step_route):
        hazards = FakeHazards(error=ConnectionError("feed down"))

        async def scenario():
            tracker, queue = await _started(two_step_route, hazards=hazards)
            await tracker.check_progress(Position(0.0, 0.0))
            return tracker, drain(queue)

        tracker, events = run(scenario())
        assert event_types(events) == ["approaching_turn", "error", "new_instruction"]
        assert events[1]["data"] == {"type": "hazard_check", "error": "feed down"}
        assert tracker.current_step_index == 1

    @pytest.mark.unit
    def test_idle_tracker_does_not_poll_hazards(self, run):
        hazards = FakeHazards()

        async def scenario():
            bus = EventBus()
            queue = await open_navigation_queue(bus)
            tracker = _tracker(bus, [], hazards=hazards)
            await tracker.check_progress(Position(0.0, 0.0))
            return drain(queue)

        assert run(scenario()) == []
        assert hazards.positions == []


class TestStopNavigation:

    @pytest.mark.unit
    def test_stop_reports_stats_before_clearing(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route)
            await tracker.check_progress(Position(0.0, 0.0))
            drain(queue)
            stats = await tracker.stop_navigation()
            return tracker, stats, drain(queue)

        tracker, stats, events = run(scenario())
        assert stats == {"total_steps": 2, "completed_steps": 1}
        assert event_types(events) == ["navigation_complete"]
        assert events[0]["data"] == stats
        assert tracker.get_navigation_state() == {
            "is_navigating": False,
            "current_step_index": 0,
            "current_step": None,
            "total_steps": 0,
        }

    @pytest.mark.unit
    def test_second_stop_is_a_noop(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route)
            first = await tracker.stop_navigation()
            second = await tracker.stop_navigation()
            return first, second, drain(queue)

        first, second, events = run(scenario())
        assert first == {"total_steps": 2, "completed_steps": 0}
        assert second is None
        assert event_types(events) == ["navigation_complete"]

    @pytest.mark.unit
    def test_stop_when_never_started(self, run):
        async def scenario():
            bus = EventBus()
            queue = await open_navigation_queue(bus)
            tracker = _tracker(bus, [])
            return await tracker.stop_navigation(), drain(queue)

        assert run(scenario()) == (None, [])


class TestScenarios:

    @pytest.mark.unit
    def test_two_step_drive(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route, arrival_threshold_m=10.0)
            timeline = []
            for position in (Position(0.0, 0.0), Position(0.0, 0.0009), Position(0.0, 0.001)):
                await tracker.check_progress(position)
                timeline.append(drain(queue))
            return tracker, timeline

        tracker, timeline = run(scenario())
        first, second, third = timeline
        assert event_types(first) == ["approaching_turn", "new_instruction"]
        assert first[1]["data"]["instruction"] == "Turn left onto Oak Ave"
        assert event_types(second) == ["approaching_turn"]
        assert second[0]["data"]["distance"] == 11
        assert event_types(third) == ["navigation_complete"]
        assert third[0]["data"] == {"total_steps": 2, "completed_steps": 2}
        assert tracker.is_navigating is False

    @pytest.mark.unit
    def test_two_step_drive_default_thresholds(self, run, two_step_route):
        # 11 m short of the destination is inside the 50 m arrival radius
        async def scenario():
            tracker, queue = await _started(two_step_route)
            timeline = []
            for position in (Position(0.0, 0.0), Position(0.0, 0.0009)):
                await tracker.check_progress(position)
                timeline.append(drain(queue))
            return tracker, timeline

        tracker, (first, second) = run(scenario())
        assert event_types(first) == ["approaching_turn", "new_instruction"]
        assert event_types(second) == ["approaching_turn", "navigation_complete"]
        assert second[0]["data"]["distance"] == 11
        assert second[1]["data"] == {"total_steps": 2, "completed_steps": 2}
        assert tracker.is_navigating is False

    @pytest.mark.unit
    def test_concurrent_updates_applied_in_order(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route, hazards=SlowHazards(0.02))
            await asyncio.gather(
                tracker.check_progress(Position(0.0, 0.0)),
                tracker.check_progress(Position(0.0, 0.001)),
            )
            return tracker, drain(queue)

        tracker, events = run(scenario())
        assert event_types(events) == [
            "approaching_turn", "new_instruction", "approaching_turn", "navigation_complete",
        ]
        assert events[1]["data"]["instruction"] == "Turn left onto Oak Ave"
        assert events[-1]["data"] == {"total_steps": 2, "completed_steps": 2}
        assert tracker.is_navigating is False

    @pytest.mark.unit
    def test_missing_end_location_stalls(self, run):
        steps = [make_step((0.0, 0.0), None, "Somewhere"), make_step(None, (0.0, 0.001), "Arrive")]

        async def scenario():
            tracker, queue = await _started(steps)
            await tracker.check_progress(Position(0.0, 0.0))
            await tracker.check_progress(Position(0.0, 0.001))
            return tracker, drain(queue)

        tracker, events = run(scenario())
        assert events == []
        assert tracker.is_navigating is True
        assert tracker.current_step_index == 0

    @pytest.mark.unit
    def test_state_read_has_no_side_effects(self, run, two_step_route):
        async def scenario():
            tracker, queue = await _started(two_step_route)
            first = tracker.get_navigation_state()
            second = tracker.get_navigation_state()
            return first, second, drain(queue)

        first, second, events = run(scenario())
        assert first == second
        assert first["is_navigating"] is True
        assert first["current_step"]["instruction"] == "Head east on Main St"
        assert first["total_steps"] == 2
        assert events == []
