from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv


@dataclass
class NavConfig:
    approach_threshold_m: float = 100.0
    arrival_threshold_m: float = 50.0
    point_spacing_m: float = 200.0
    poll_interval_s: float = 5.0
    # Live-mode fallback when no GPS fix is available; None skips the tick
    default_position: Optional[Tuple[float, float]] = None


@dataclass
class AppConfig:
    log_dir: str
    log_level: str
    db_path: str
    gps_serial_port: str
    gps_baud: int
    web_host: str
    web_port: int
    google_maps_api_key: Optional[str]
    hazard_check_radius_m: float
    deepseek_api_key: Optional[str]
    deepseek_api_url: str
    deepseek_model: str
    nav: NavConfig = field(default_factory=NavConfig)


def _parse_position(raw: Optional[str]) -> Optional[Tuple[float, float]]:
    if not raw:
        return None
    try:
        lat_s, lng_s = raw.split(",", 1)
        return float(lat_s), float(lng_s)
    except ValueError:
        raise ValueError(f"NAVPI_DEFAULT_POSITION must be 'lat,lng', got {raw!r}") from None


def load_config() -> AppConfig:
    load_dotenv(os.getenv("ENV_FILE", "/opt/navpi/.env"), override=False)

    log_dir = os.getenv("NAVPI_LOG_DIR", "/var/log/navpi")
    log_level = os.getenv("NAVPI_LOG_LEVEL", "INFO")
    db_path = os.getenv("NAVPI_DB_PATH", "/opt/navpi/data/navpi.sqlite")
    gps_serial_port = os.getenv("GPS_SERIAL_PORT", "/dev/ttyS0")
    gps_baud = int(os.getenv("GPS_BAUD", "9600"))
    web_host = os.getenv("WEB_HOST", "0.0.0.0")
    web_port = int(os.getenv("WEB_PORT", "8080"))
    google_maps_api_key = os.getenv("GOOGLE_MAPS_API_KEY") or None
    hazard_check_radius_m = float(os.getenv("HAZARD_CHECK_RADIUS_M", "2000"))
    deepseek_api_key = os.getenv("DEEPSEEK_API_KEY") or None
    deepseek_api_url = os.getenv("DEEPSEEK_API_URL", "https://api.deepseek.com/v1/chat/completions")
    deepseek_model = os.getenv("DEEPSEEK_MODEL", "deepseek-chat")

    nav = NavConfig(
        approach_threshold_m=float(os.getenv("NAV_APPROACH_THRESHOLD_M", "100")),
        arrival_threshold_m=float(os.getenv("NAV_ARRIVAL_THRESHOLD_M", "50")),
        point_spacing_m=float(os.getenv("NAV_POINT_SPACING_M", "200")),
        poll_interval_s=float(os.getenv("NAV_POLL_INTERVAL_S", "5")),
        default_position=_parse_position(os.getenv("NAVPI_DEFAULT_POSITION")),
    )

    return AppConfig(
        log_dir=log_dir,
        log_level=log_level,
        db_path=db_path,
        gps_serial_port=gps_serial_port,
        gps_baud=gps_baud,
        web_host=web_host,
        web_port=web_port,
        google_maps_api_key=google_maps_api_key,
        hazard_check_radius_m=hazard_check_radius_m,
        deepseek_api_key=deepseek_api_key,
        deepseek_api_url=deepseek_api_url,
        deepseek_model=deepseek_model,
        nav=nav,
    )
