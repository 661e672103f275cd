"""
Best-effort delivery of finalized transcripts to downstream HTTP receivers.

Two receivers are supported:
- an agent endpoint that gets every transcript of every room;
- a per-session signals endpoint, used only for sessions that carry an
  external correlation id.

Failures are logged and counted; nothing is retried or raised.
"""

import logging
from typing import Any, Dict, Optional

import aiohttp

from shared import observability

from .models import TranscriptEvent

logger = logging.getLogger(__name__)


def _transcript_body(event: TranscriptEvent) -> Dict[str, Any]:
    return {
        "text": event.text,
        "speaker": event.participant_name,
        "confidence": event.confidence,
        "isFinal": event.is_final,
    }


def build_agent_payload(event: TranscriptEvent) -> Dict[str, Any]:
    return {"roomId": event.room_id, "transcript": _transcript_body(event)}


def build_signal_payload(event: TranscriptEvent) -> Dict[str, Any]:
    return {"type": "transcript", "data": _transcript_body(event)}


class TranscriptForwarder:
    """POSTs transcript events to the configured receivers."""

    def __init__(
        self,
        agent_url: Optional[str] = None,
        signals_url: Optional[str] = None,
        timeout_s: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.agent_url = agent_url
        self.signals_url = signals_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session = session
        self._owns_session = session is None

        self.sent = 0
        self.failed = 0

    @property
    def enabled(self) -> bool:
        return bool(self.agent_url or self.signals_url)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def forward(self, event: TranscriptEvent, correlation_id: Optional[str] = None) -> None:
        """Deliver one finalized transcript to every applicable receiver."""
        if not event.is_final:
            return

        if self.agent_url:
            await self._post("agent", self.agent_url, build_agent_payload(event))

        if self.signals_url and correlation_id:
            url = self.signals_url.format(correlation_id=correlation_id)
            await self._post("signals", url, build_signal_payload(event))

    async def _post(self, target: str, url: str, payload: Dict[str, Any]) -> bool:
        try:
            session = self._get_session()
            async with session.post(url, json=payload) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    logger.warning(f"⚠️ {target} receiver rejected transcript ({resp.status}): {body[:200]}")
                    self.failed += 1
                    observability.record_forward_error(target)
                    return False
        except Exception as e:
            logger.warning(f"⚠️ Failed to forward transcript to {target} ({url}): {e}")
            self.failed += 1
            observability.record_forward_error(target)
            return False

        self.sent += 1
        return True

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
