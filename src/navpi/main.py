from __future__ import annotations

import asyncio
import logging
import signal

from navpi.config import load_config
from navpi.logging_setup import setup_logging
from navpi.event_bus import EventBus
from navpi.storage.db import Database

from navpi.modules.sensors.gps import GPSReader
from navpi.modules.navigation.directions import GoogleDirectionsClient
from navpi.modules.navigation.hazard_detector import GoogleHazardDetector
from navpi.modules.navigation.hazards import HazardPollAdapter
from navpi.modules.navigation.humanizer import DeepSeekInstructionFormatter
from navpi.modules.navigation.session import NavigationSessionManager
from navpi.modules.navigation.tracker import ProgressTracker
from navpi.modules.navigation.trips import TripRecorder
from navpi.modules.web.server import WebServer


async def main_async() -> None:
    cfg = load_config()
    setup_logging(cfg.log_dir, cfg.log_level)
    logger = logging.getLogger("navpi")
    logger.info("navpi starting up")

    events = EventBus()
    db = Database(cfg.db_path)
    await db.start()

    gps = GPSReader(cfg.gps_serial_port, cfg.gps_baud, events)
    gps.start()

    directions = GoogleDirectionsClient(cfg.google_maps_api_key)
    detector = GoogleHazardDetector(cfg.google_maps_api_key, radius_m=cfg.hazard_check_radius_m)
    formatter = DeepSeekInstructionFormatter(cfg.deepseek_api_key, cfg.deepseek_api_url, cfg.deepseek_model)
    if not cfg.google_maps_api_key:
        logger.warning("GOOGLE_MAPS_API_KEY not set; directions and hazard checks are unavailable")

    trips = TripRecorder(events, db)
    await trips.start()

    tracker = ProgressTracker(events, directions, HazardPollAdapter(detector, events), formatter, cfg.nav)
    navigation = NavigationSessionManager(tracker, gps=gps, config=cfg.nav, trips=trips)

    webserver = WebServer(events, navigation, db, host=cfg.web_host, port=cfg.web_port)
    webserver.start()

    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows fallback
            pass

    await stop_event.wait()

    # Graceful shutdown
    await webserver.stop()
    await navigation.stop_navigation()
    await trips.stop()
    await gps.stop()
    await formatter.close()
    await detector.close()
    await directions.close()
    await db.stop()
    logger.info("navpi shut down")


def main() -> None:
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
