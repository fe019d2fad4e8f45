from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Dict

from ...event_bus import EventBus
from ...storage.db import Database
from .events import HAZARDOUS_CONDITIONS, NAVIGATION_COMPLETE, NAVIGATION_TOPIC

logger = logging.getLogger(__name__)


class TripRecorder:
    """Keeps the trips table in step with the navigation event stream.

    Sessions never overlap, so each navigation_complete closes the oldest
    trip still marked active.
    """

    def __init__(self, events: EventBus, db: Database) -> None:
        self._events = events
        self._db = db
        self._task: asyncio.Task | None = None
        self._queue: asyncio.Queue[Dict[str, Any]] | None = None

    async def start(self) -> None:
        if self._task is None:
            closed = await self._db.cancel_active_trips(dt.datetime.utcnow().isoformat())
            if closed:
                logger.info("Marked %d stale trip(s) as cancelled", closed)
            # Subscribe before returning so no event published afterwards is missed
            self._queue = await self._events.open_queue(NAVIGATION_TOPIC)
            self._task = asyncio.create_task(self._run(), name="trip-recorder")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._queue is not None:
            await self._events.close_queue(NAVIGATION_TOPIC, self._queue)
            # Flush what arrived before shutdown, e.g. the final navigation_complete
            while not self._queue.empty():
                event = self._queue.get_nowait()
                try:
                    await self.handle_event(event)
                except Exception as exc:
                    logger.warning("Trip recorder failed on %s: %s", event.get("type"), exc)
            self._queue = None

    async def trip_started(self, origin: str, destination: str, total_steps: int) -> None:
        trip_id = await self._db.insert_trip(origin, destination, total_steps, dt.datetime.utcnow().isoformat())
        logger.info("Trip %d started: %s -> %s", trip_id, origin, destination)

    async def handle_event(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type not in (HAZARDOUS_CONDITIONS, NAVIGATION_COMPLETE):
            return
        trip_id = await self._db.oldest_active_trip_id()
        if trip_id is None:
            return
        data = event.get("data")
        if event_type == HAZARDOUS_CONDITIONS:
            await self._db.add_trip_hazards(trip_id, len(data or []))
            return
        completed = int(data.get("completed_steps", 0))
        total = int(data.get("total_steps", 0))
        status = "completed" if total and completed >= total else "cancelled"
        await self._db.finish_trip(trip_id, status, completed, event.get("ts") or dt.datetime.utcnow().isoformat())
        logger.info("Trip %d %s (%d/%d steps)", trip_id, status, completed, total)

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            event = await self._queue.get()
            try:
                await self.handle_event(event)
            except Exception as exc:
                logger.warning("Trip recorder failed on %s: %s", event.get("type"), exc)
