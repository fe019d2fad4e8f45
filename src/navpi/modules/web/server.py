from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from aiohttp import web  # type: ignore[reportMissingImports]

from ...event_bus import EventBus
from ...storage.db import Database
from ..navigation.events import NAVIGATION_TOPIC
from ..navigation.models import Position
from ..navigation.session import NavigationSessionManager
from ..sensors.gps import GPS_TOPIC

logger = logging.getLogger(__name__)

SSE_TOPICS = (NAVIGATION_TOPIC, GPS_TOPIC)


async def _json_body(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise web.HTTPBadRequest(text="Request body must be JSON") from None
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="Request body must be a JSON object")
    return body


class WebServer:
    def __init__(
        self,
        events: EventBus,
        navigation: NavigationSessionManager,
        db: Optional[Database] = None,
        host: str = "0.0.0.0",
        port: int = 8080,
    ) -> None:
        self._events = events
        self._navigation = navigation
        self._db = db
        self._host = host
        self._port = port
        self._task: asyncio.Task | None = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._streams: set[asyncio.Task] = set()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="web-server")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.add_routes([
            web.post("/api/navigation/start", self._handle_start),
            web.post("/api/navigation/stop", self._handle_stop),
            web.get("/api/navigation/state", self._handle_state),
            web.post("/api/navigation/position", self._handle_position),
            web.post("/api/simulation/enable", self._handle_simulation_enable),
            web.post("/api/simulation/disable", self._handle_simulation_disable),
            web.post("/api/simulation/location", self._handle_simulation_location),
            web.get("/api/trips", self._handle_trips),
            web.get("/api/sse", self._handle_sse),
        ])
        app.on_shutdown.append(self._close_streams)
        return app

    async def _close_streams(self, app: web.Application) -> None:
        # Open event streams would otherwise hold shutdown until its timeout
        for task in list(self._streams):
            task.cancel()

    async def _run(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        logger.info("Web server listening on http://%s:%d", self._host, self._port)

        try:
            while True:
                await asyncio.sleep(60)
        finally:
            await self._runner.cleanup()
            self._runner = None

    async def _handle_start(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        origin = body.get("origin")
        destination = body.get("destination")
        if not isinstance(origin, str) or not isinstance(destination, str) or not origin or not destination:
            return web.json_response({"error": "origin and destination are required"}, status=400)
        result = await self._navigation.start_navigation(origin, destination)
        status = 502 if "error" in result else 200
        return web.json_response(result, status=status)

    async def _handle_stop(self, request: web.Request) -> web.Response:
        stats = await self._navigation.stop_navigation()
        return web.json_response({"ok": True, "stats": stats})

    async def _handle_state(self, request: web.Request) -> web.Response:
        return web.json_response(self._navigation.get_navigation_state())

    async def _handle_position(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        position = Position(body.get("lat"), body.get("lng"), body.get("accuracy"))
        accepted = await self._navigation.update_position(position)
        if not accepted:
            return web.json_response({"error": "Invalid position"}, status=400)
        return web.json_response({"ok": True, "state": self._navigation.get_navigation_state()})

    async def _handle_simulation_enable(self, request: web.Request) -> web.Response:
        self._navigation.enable_simulation()
        return web.json_response({"ok": True, "simulation": True})

    async def _handle_simulation_disable(self, request: web.Request) -> web.Response:
        self._navigation.disable_simulation()
        return web.json_response({"ok": True, "simulation": False})

    async def _handle_simulation_location(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        accepted = await self._navigation.update_simulated_position(body.get("lat"), body.get("lng"), body.get("accuracy"))
        if not accepted:
            return web.json_response({"error": "Simulated position rejected"}, status=400)
        return web.json_response({"ok": True, "state": self._navigation.get_navigation_state()})

    async def _handle_trips(self, request: web.Request) -> web.Response:
        if self._db is None:
            return web.json_response([])
        try:
            limit = int(request.query.get("limit", "50"))
        except ValueError:
            return web.json_response({"error": "limit must be an integer"}, status=400)
        trips = await self._db.list_trips(limit=max(1, min(limit, 500)))
        return web.json_response(trips)

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        resp = web.StreamResponse(status=200, reason="OK", headers={"Content-Type": "text/event-stream", "Cache-Control": "no-cache"})
        await resp.prepare(request)

        queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=100)

        async def forward(topic: str) -> None:
            # A new client gets the current fix straight away
            async for ev in self._events.subscribe(topic, replay_last=topic == GPS_TOPIC):
                await queue.put({"topic": topic, "data": ev})

        tasks = [asyncio.create_task(forward(topic)) for topic in SSE_TOPICS]

        async def sender() -> None:
            while True:
                item = await queue.get()
                await resp.write(f"data: {json.dumps(item)}\n\n".encode())

        send_task = asyncio.create_task(sender())
        stream = asyncio.current_task()
        if stream is not None:
            self._streams.add(stream)
        try:
            await asyncio.gather(send_task, *tasks)
        except (asyncio.CancelledError, ConnectionResetError):
            pass
        finally:
            for t in tasks:
                t.cancel()
            send_task.cancel()
            self._streams.discard(stream)
        return resp
