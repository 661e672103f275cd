"""
Tests for the JSON structured logger.
"""

import json
import logging

import pytest
from shared.structured_logger import StructuredLogger


def last_entry(caplog):
    return json.loads(caplog.records[-1].getMessage())


@pytest.fixture
def slog():
    return StructuredLogger(logging.getLogger("test.structured"), component="room_bot")


class TestStructuredLogger:

    def test_event(self, slog, caplog):
        with caplog.at_level(logging.INFO, logger="test.structured"):
            slog.event("standup", "participant_added", "alice joined", participant_id="alice", data={"participants": 2})

        entry = last_entry(caplog)
        assert entry["component"] == "room_bot"
        assert entry["room_id"] == "standup"
        assert entry["participant_id"] == "alice"
        assert entry["data"] == {"participants": 2}

    def test_level_is_respected(self, slog, caplog):
        with caplog.at_level(logging.INFO, logger="test.structured"):
            slog.event(None, "engine_error", "boom", level="error")

        assert caplog.records[-1].levelno == logging.ERROR
        assert "room_id" not in last_entry(caplog)

    def test_unknown_level_logs_info(self, slog, caplog):
        with caplog.at_level(logging.INFO, logger="test.structured"):
            slog.event("standup", "custom", "hello", level="loud")

        assert caplog.records[-1].levelno == logging.INFO

    def test_state_transition(self, slog, caplog):
        with caplog.at_level(logging.INFO, logger="test.structured"):
            slog.state_transition("standup", "connecting", "connected", "session_opened", participant_id="alice")

        entry = last_entry(caplog)
        assert entry["message"] == "connecting -> connected (session_opened)"
        assert entry["data"] == {"from": "connecting", "to": "connected", "trigger": "session_opened"}
        assert entry["participant_id"] == "alice"

    def test_room_joined(self, slog, caplog):
        with caplog.at_level(logging.INFO, logger="test.structured"):
            slog.room_joined("standup", attempts=2, duration_ms=2412.37, participants=3)

        entry = last_entry(caplog)
        assert entry["event_type"] == "room_joined"
        assert entry["data"] == {"attempts": 2, "duration_ms": 2412.4, "participants": 3}

    def test_component_defaults_to_logger_name(self):
        assert StructuredLogger(logging.getLogger("x.y")).component == "x.y"
