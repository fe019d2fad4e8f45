from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class LatLng:
    # Values are kept as received; geo.distance() rejects anything non-numeric
    lat: Any
    lng: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"lat": self.lat, "lng": self.lng}

    @staticmethod
    def from_dict(d: Optional[Dict[str, Any]]) -> Optional["LatLng"]:
        if not isinstance(d, dict):
            return None
        return LatLng(d.get("lat"), d.get("lng"))


@dataclass(frozen=True)
class RouteStep:
    """One maneuver as handed over by the directions service."""

    instruction: str
    distance: Optional[str] = None
    duration: Optional[str] = None
    maneuver: Optional[str] = None
    start_location: Optional[LatLng] = None
    end_location: Optional[LatLng] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instruction": self.instruction,
            "distance": self.distance,
            "duration": self.duration,
            "maneuver": self.maneuver,
            "start_location": self.start_location.to_dict() if self.start_location else None,
            "end_location": self.end_location.to_dict() if self.end_location else None,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "RouteStep":
        return RouteStep(
            instruction=str(d.get("instruction") or ""),
            distance=d.get("distance"),
            duration=d.get("duration"),
            maneuver=d.get("maneuver") or None,
            start_location=LatLng.from_dict(d.get("start_location")),
            end_location=LatLng.from_dict(d.get("end_location")),
        )


@dataclass(frozen=True)
class RoutePoint:
    lat: Any
    lng: Any
    instruction: Optional[str] = None
    is_navigation_point: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "instruction": self.instruction,
            "is_navigation_point": self.is_navigation_point,
        }


@dataclass(frozen=True)
class Position:
    lat: float
    lng: float
    accuracy: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"lat": self.lat, "lng": self.lng, "accuracy": self.accuracy}
