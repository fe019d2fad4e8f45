from __future__ import annotations

import datetime as dt
from typing import Any, Dict

# All navigation events share one topic so subscribers see them in order
NAVIGATION_TOPIC = "navigation"

NEW_INSTRUCTION = "new_instruction"
APPROACHING_TURN = "approaching_turn"
HAZARDOUS_CONDITIONS = "hazardous_conditions"
NAVIGATION_COMPLETE = "navigation_complete"
ERROR = "error"


def envelope(event_type: str, data: Any) -> Dict[str, Any]:
    return {"type": event_type, "ts": dt.datetime.utcnow().isoformat(), "data": data}
