"""
Tests for exactly-once room start/stop under concurrent triggers.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from livekit_transcriber.exceptions import RoomJoinError, SessionStoreError
from livekit_transcriber.models import RoomSettings, TranscriptEvent, TranscriptionMode
from livekit_transcriber.room_registry import RoomSessionRegistry


@pytest.fixture
def forwarder():
    fwd = AsyncMock()
    fwd.forward = AsyncMock()
    return fwd


@pytest.fixture
def registry(store, bot_factory, forwarder):
    return RoomSessionRegistry(store, bot_factory, forwarder)


class TestStartRoom:

    @pytest.mark.asyncio
    async def test_start_registers_session(self, registry, store, bot_factory):
        assert await registry.start_room("standup") is True

        assert registry.is_room_active("standup")
        assert registry.active_rooms() == ["standup"]
        store.create_session.assert_awaited_once_with("standup", TranscriptionMode.LIVE)
        assert bot_factory.bots[0].join_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_starts_join_once(self, registry, store, bot_factory):
        results = await asyncio.gather(registry.start_room("standup"), registry.start_room("standup"))

        assert results == [True, True]
        assert len(bot_factory.bots) == 1
        assert bot_factory.bots[0].join_calls == 1
        assert store.create_session.await_count == 1

    @pytest.mark.asyncio
    async def test_start_while_joining_returns_true_immediately(self, registry, bot_factory):
        gate = asyncio.Event()
        bot_factory.join_gate = gate
        first = asyncio.create_task(registry.start_room("standup"))
        await asyncio.sleep(0.01)

        assert await registry.start_room("standup") is True
        assert not registry.is_room_active("standup")

        gate.set()
        assert await first is True
        assert len(bot_factory.bots) == 1

    @pytest.mark.asyncio
    async def test_start_when_active_is_noop(self, registry, store, bot_factory):
        await registry.start_room("standup")
        assert await registry.start_room("standup") is True
        assert len(bot_factory.bots) == 1
        assert store.get_room_settings.await_count == 1

    @pytest.mark.asyncio
    async def test_mode_off_creates_nothing(self, registry, store, bot_factory):
        store.get_room_settings.return_value = RoomSettings(room_id="standup", mode=TranscriptionMode.OFF)

        assert await registry.start_room("standup") is False

        store.create_session.assert_not_awaited()
        assert bot_factory.bots == []
        assert not registry.is_room_active("standup")
        assert "standup" not in registry._joining

    @pytest.mark.asyncio
    async def test_missing_settings(self, registry, store, bot_factory):
        store.get_room_settings.return_value = None

        assert await registry.start_room("ghost") is False
        assert bot_factory.bots == []
        assert "ghost" not in registry._joining

    @pytest.mark.asyncio
    async def test_post_call_mode_is_started(self, registry, store):
        store.get_room_settings.return_value = RoomSettings(room_id="standup", mode=TranscriptionMode.POST_CALL)

        assert await registry.start_room("standup") is True
        store.create_session.assert_awaited_once_with("standup", TranscriptionMode.POST_CALL)

    @pytest.mark.asyncio
    async def test_accounting_failure_clears_joining_mark(self, registry, store, bot_factory):
        store.create_session.side_effect = SessionStoreError("create_session", ConnectionError("down"))

        assert await registry.start_room("standup") is False
        assert "standup" not in registry._joining
        assert bot_factory.bots == []

        store.create_session.side_effect = None
        assert await registry.start_room("standup") is True

    @pytest.mark.asyncio
    async def test_settings_failure_returns_false(self, registry, store):
        store.get_room_settings.side_effect = SessionStoreError("get_room_settings")

        assert await registry.start_room("standup") is False
        assert "standup" not in registry._joining

    @pytest.mark.asyncio
    async def test_join_failure_cleans_up(self, registry, store, bot_factory):
        bot_factory.join_error = RoomJoinError("standup", 3, ConnectionError("refused"))

        assert await registry.start_room("standup") is False

        bot = bot_factory.bots[0]
        assert bot.leave_calls == 1
        store.abandon_session.assert_awaited_once_with("session-1")
        assert not registry.is_room_active("standup")
        assert "standup" not in registry._joining


class TestStopRoom:

    @pytest.mark.asyncio
    async def test_stop_completes_accounting(self, registry, store, bot_factory):
        await registry.start_room("standup")

        assert await registry.stop_room("standup") is True

        assert bot_factory.bots[0].leave_calls == 1
        store.complete_session.assert_awaited_once_with("session-1", 60000, 15000)
        store.release_room.assert_awaited_once_with("standup")
        assert not registry.is_room_active("standup")

    @pytest.mark.asyncio
    async def test_stop_inactive_room_is_noop(self, registry, store):
        assert await registry.stop_room("nobody") is False
        store.complete_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_stops_leave_once(self, registry, store, bot_factory):
        await registry.start_room("standup")

        results = await asyncio.gather(registry.stop_room("standup"), registry.stop_room("standup"))

        assert sorted(results) == [False, True]
        assert bot_factory.bots[0].leave_calls == 1
        assert store.complete_session.await_count == 1

    @pytest.mark.asyncio
    async def test_session_removed_before_teardown_finishes(self, registry, bot_factory):
        await registry.start_room("standup")
        gate = asyncio.Event()
        bot_factory.bots[0].leave_gate = gate

        stop = asyncio.create_task(registry.stop_room("standup"))
        await asyncio.sleep(0.01)

        assert not registry.is_room_active("standup")
        gate.set()
        assert await stop is True

    @pytest.mark.asyncio
    async def test_restart_waits_for_previous_leave(self, registry, bot_factory):
        await registry.start_room("standup")
        gate = asyncio.Event()
        bot_factory.bots[0].leave_gate = gate

        stop = asyncio.create_task(registry.stop_room("standup"))
        await asyncio.sleep(0.01)
        start = asyncio.create_task(registry.start_room("standup"))
        await asyncio.sleep(0.01)
        assert len(bot_factory.bots) == 1

        gate.set()
        await stop
        assert await start is True

        assert bot_factory.log == [
            ("join", "standup"),
            ("leave_start", "standup"),
            ("leave_done", "standup"),
            ("join", "standup"),
        ]
        assert registry.is_room_active("standup")

    @pytest.mark.asyncio
    async def test_stop_all(self, registry, store, bot_factory):
        await registry.start_room("a")
        await registry.start_room("b")

        await registry.stop_all()

        assert registry.active_rooms() == []
        assert store.complete_session.await_count == 2
        assert all(bot.leave_calls == 1 for bot in bot_factory.bots)

    @pytest.mark.asyncio
    async def test_stop_all_waits_for_joining_rooms(self, registry, store, bot_factory):
        gate = asyncio.Event()
        bot_factory.join_gate = gate
        registry.spawn(registry.start_room("standup"))
        await asyncio.sleep(0.01)

        shutdown = asyncio.create_task(registry.stop_all())
        await asyncio.sleep(0.01)
        gate.set()
        await shutdown

        assert registry.active_rooms() == []
        assert bot_factory.bots[0].join_calls == 1
        assert bot_factory.bots[0].leave_calls == 1
        store.complete_session.assert_awaited_once_with("session-1", 60000, 15000)

    @pytest.mark.asyncio
    async def test_start_after_stop_all_is_refused(self, registry, store, bot_factory):
        await registry.stop_all()

        assert await registry.start_room("standup") is False

        assert bot_factory.bots == []
        store.create_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_leave_still_completes_accounting(self, registry, store, bot_factory):
        await registry.start_room("standup")
        bot_factory.bots[0].leave_error = RuntimeError("transport gone")

        assert await registry.stop_room("standup") is True

        store.complete_session.assert_awaited_once()
        session_id, duration_ms, speech_ms = store.complete_session.await_args.args
        assert session_id == "session-1"
        assert duration_ms >= 0
        assert speech_ms == 1500.0
        store.release_room.assert_awaited_once_with("standup")
        assert not registry.is_room_active("standup")

        # the room can be started again
        assert await registry.start_room("standup") is True


class TestBotCallbacks:

    @pytest.mark.asyncio
    async def test_transport_disconnect_triggers_stop(self, registry, store, bot_factory):
        await registry.start_room("standup")
        bot = bot_factory.bots[0]

        bot.on_disconnected("standup")
        await asyncio.gather(*registry._background)

        assert not registry.is_room_active("standup")
        assert bot.leave_calls == 1
        store.complete_session.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_final_transcript_is_published_and_forwarded(self, registry, store, bot_factory, forwarder):
        await registry.start_room("standup")
        event = TranscriptEvent("standup", "alice", "Alice", "Hello everyone.", True, 0.95)

        await bot_factory.bots[0].on_transcript(event)

        store.publish_transcript.assert_awaited_once_with(event)
        forwarder.forward.assert_awaited_once_with(event, "corr-1")

    @pytest.mark.asyncio
    async def test_room_stats(self, registry):
        await registry.start_room("standup")

        stats = registry.room_stats("standup")

        assert stats["session_id"] == "session-1"
        assert stats["mode"] == "live"
        assert stats["participants"] == 2
        assert registry.room_stats("other") is None
