"""
LiveKit room transport.

Issues the bot's subscribe-only access token, creates and connects
``rtc.Room`` instances, and turns subscribed audio tracks into an async
stream of mono PCM frames at the requested sample rate.
"""

import logging
from typing import Any, AsyncIterator, Protocol

from livekit import api, rtc

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class RoomTransport(Protocol):
    """What the room bot needs from the media transport."""

    def create_token(self, room_id: str, identity: str, name: str) -> str: ...

    def create_room(self) -> Any: ...

    async def connect(self, room: Any, token: str) -> None: ...

    def audio_frames(self, track: Any) -> AsyncIterator[Any]: ...

    def is_audio_track(self, track: Any) -> bool: ...


class LiveKitTransport:
    """RoomTransport backed by the LiveKit SDKs."""

    def __init__(self, url: str, api_key: str, api_secret: str, sample_rate: int = 16000):
        missing = [
            name for name, value in (
                ("LIVEKIT_URL", url),
                ("LIVEKIT_API_KEY", api_key),
                ("LIVEKIT_API_SECRET", api_secret),
            ) if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing LiveKit configuration: {', '.join(missing)}")

        self.url = url
        self.api_key = api_key
        self.api_secret = api_secret
        self.sample_rate = sample_rate

    def create_token(self, room_id: str, identity: str, name: str) -> str:
        """Access token that may join and subscribe but never publish."""
        token = (
            api.AccessToken(self.api_key, self.api_secret)
            .with_identity(identity)
            .with_name(name)
            .with_grants(
                api.VideoGrants(
                    room_join=True,
                    room=room_id,
                    can_subscribe=True,
                    can_publish=False,
                    can_publish_data=False,
                )
            )
        )
        return token.to_jwt()

    def create_room(self) -> rtc.Room:
        return rtc.Room()

    async def connect(self, room: rtc.Room, token: str) -> None:
        await room.connect(
            self.url,
            token,
            options=rtc.RoomOptions(auto_subscribe=True, dynacast=False),
        )

    def is_audio_track(self, track: rtc.Track) -> bool:
        return track.kind == rtc.TrackKind.KIND_AUDIO

    async def audio_frames(self, track: rtc.Track) -> AsyncIterator[rtc.AudioFrame]:
        """Yield mono frames resampled to ``sample_rate`` until the track ends."""
        stream = rtc.AudioStream(track, sample_rate=self.sample_rate, num_channels=1)
        try:
            async for event in stream:
                yield event.frame
        finally:
            await stream.aclose()
