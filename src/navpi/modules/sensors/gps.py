from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Dict, Optional

import serial
import pynmea2

from ...event_bus import EventBus
from ..navigation.models import Position

logger = logging.getLogger(__name__)

# Rough CEP of a consumer receiver per unit of HDOP
UERE_M = 5.0

GPS_TOPIC = "sensor.gps"


def position_from_nmea(msg: Any) -> Optional[Position]:
    """Extract a fix from a parsed GGA or RMC sentence, or None without one."""
    sentence = getattr(msg, "sentence_type", None)
    if sentence == "GGA":
        try:
            if int(msg.gps_qual or 0) == 0:
                return None
        except ValueError:
            return None
        accuracy = None
        try:
            if msg.horizontal_dil:
                accuracy = round(float(msg.horizontal_dil) * UERE_M, 1)
        except ValueError:
            pass
        return _fix(msg, accuracy)
    if sentence == "RMC":
        if msg.status != "A":
            return None
        return _fix(msg)
    return None


def _fix(msg: Any, accuracy: Optional[float] = None) -> Optional[Position]:
    # A valid checksum does not guarantee well-formed DDMM.MMM fields
    try:
        return Position(round(msg.latitude, 6), round(msg.longitude, 6), accuracy)
    except ValueError:
        return None


class GPSReader:
    def __init__(self, serial_port: str, baud: int, bus_events: EventBus, max_fix_age_s: float = 10.0) -> None:
        self._port = serial_port
        self._baud = baud
        self._events = bus_events
        self._max_fix_age_s = max_fix_age_s
        self._task: asyncio.Task | None = None
        self._latest: Optional[Position] = None
        self._latest_ts: Optional[dt.datetime] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="gps-reader")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def latest_position(self) -> Optional[Position]:
        if self._latest is None or self._latest_ts is None:
            return None
        age = (dt.datetime.utcnow() - self._latest_ts).total_seconds()
        if age > self._max_fix_age_s:
            return None
        return self._latest

    def handle_sentence(self, line: str) -> Optional[Dict[str, Any]]:
        """Parse one NMEA line; returns the sensor.gps payload for a fix."""
        try:
            msg = pynmea2.parse(line, check=True)
        except pynmea2.ParseError:
            return None
        position = position_from_nmea(msg)
        if position is None:
            return None
        now = dt.datetime.utcnow()
        self._latest = position
        self._latest_ts = now
        return {"ts": now.isoformat(), "sentence": msg.sentence_type, **position.to_dict()}

    def _read_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            with serial.Serial(self._port, self._baud, timeout=1) as ser:
                logger.info("GPS opened on %s @ %s", self._port, self._baud)
                while True:
                    line = ser.readline().decode(errors="ignore").strip()
                    if not line:
                        continue
                    try:
                        payload = self.handle_sentence(line)
                    except Exception as exc:
                        logger.debug("Skipping NMEA line %r: %s", line, exc)
                        continue
                    if payload is not None:
                        asyncio.run_coroutine_threadsafe(self._events.publish(GPS_TOPIC, payload), loop)
        except Exception as exc:
            logger.warning("GPS reader error: %s", exc)

    async def _run(self) -> None:
        # Blocking serial reads live in a worker thread
        loop = asyncio.get_running_loop()
        while True:
            await loop.run_in_executor(None, self._read_loop, loop)
            await asyncio.sleep(1)
