"""
JSON log lines for room and participant lifecycle events.

Each line carries ``room_id`` and, when known, ``participant_id`` at the top
level so log pipelines can group a room's history without parsing messages.
The wrapped ``logging.Logger`` keeps its handlers and formatting.
"""

import json
import logging
import time
from typing import Any, Dict, Optional


class StructuredLogger:

    def __init__(self, logger: Optional[logging.Logger] = None, component: Optional[str] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.component = component or self.logger.name

    def event(
        self,
        room_id: Optional[str],
        event_type: str,
        message: str,
        level: str = "INFO",
        participant_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry: Dict[str, Any] = {
            "ts": round(time.time(), 3),
            "component": self.component,
            "event_type": event_type,
            "message": message,
        }
        if room_id:
            entry["room_id"] = room_id
        if participant_id:
            entry["participant_id"] = participant_id
        if data:
            entry["data"] = dict(data)

        levelno = logging.getLevelName(level.upper())
        if not isinstance(levelno, int):
            levelno = logging.INFO
        # default=str: enums and datetimes end up in data
        self.logger.log(levelno, json.dumps(entry, default=str))

    def state_transition(
        self,
        room_id: Optional[str],
        old_state: str,
        new_state: str,
        trigger: str,
        participant_id: Optional[str] = None,
    ) -> None:
        self.event(
            room_id,
            "state_transition",
            f"{old_state} -> {new_state} ({trigger})",
            participant_id=participant_id,
            data={"from": old_state, "to": new_state, "trigger": trigger},
        )

    def room_joined(self, room_id: str, attempts: int, duration_ms: float, participants: int) -> None:
        """Join outcome with how many connect attempts it took."""
        self.event(
            room_id,
            "room_joined",
            f"joined after {attempts} attempt(s) in {duration_ms:.0f}ms",
            data={"attempts": attempts, "duration_ms": round(duration_ms, 1), "participants": participants},
        )
