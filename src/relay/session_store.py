from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

LOGGER = logging.getLogger(__name__)


class Speaker(str, Enum):
    USER = "User"
    AGENT = "Agent"


@dataclass(frozen=True, slots=True)
class Utterance:
    speaker: Speaker
    text: str

    def render(self) -> str:
        return f"{self.speaker.value}: {self.text}"


@dataclass
class CallSession:
    session_id: str
    stream_sid: str | None = None
    last_activity: float = field(default_factory=time.monotonic)
    _utterances: list[Utterance] = field(default_factory=list, init=False, repr=False)

    @property
    def transcript(self) -> tuple[Utterance, ...]:
        return tuple(self._utterances)

    def append_utterance(self, speaker: Speaker, text: str) -> Utterance:
        utterance = Utterance(speaker=speaker, text=text)
        self._utterances.append(utterance)
        return utterance

    def transcript_text(self) -> str:
        return "".join(f"{utt.render()}\n" for utt in self._utterances)


class SessionStore:
    """In-memory store for live call sessions.

    Note: This is a single-process store accessed only from the event loop, so
    it takes no locks. For multi-worker deployments, replace with Redis or
    another shared store.
    """

    def __init__(
        self,
        *,
        max_sessions: int | None = None,
        idle_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions: dict[str, CallSession] = {}
        self._max_sessions = max_sessions
        self._idle_timeout = idle_timeout
        self._clock = clock

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def create(self, session_id: str) -> CallSession:
        session = self._sessions.get(session_id)
        if session is not None:
            return session

        if self._max_sessions is not None and len(self._sessions) >= self._max_sessions:
            self._evict_least_recent()

        session = CallSession(session_id=session_id, last_activity=self._clock())
        self._sessions[session_id] = session
        return session

    def get(self, session_id: str) -> CallSession | None:
        return self._sessions.get(session_id)

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def discard(self, session: CallSession) -> None:
        """Remove ``session`` only if the store still maps its id to it.

        A session dropped by the cap or the reaper may have been replaced by a
        newer one under the same id; that newer session is left alone.
        """

        if self._sessions.get(session.session_id) is session:
            del self._sessions[session.session_id]

    def touch(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_activity = self._clock()

    def _evict_least_recent(self) -> None:
        # The evicted call may still be live; its controller keeps its own
        # reference and releases it through discard().
        oldest = min(self._sessions.values(), key=lambda s: s.last_activity)
        LOGGER.warning(
            "Session cap %s reached, evicting least recently active session %s",
            self._max_sessions,
            oldest.session_id,
        )
        del self._sessions[oldest.session_id]

    def reap_idle(self) -> list[str]:
        """Drop sessions idle for longer than the configured timeout."""

        if self._idle_timeout is None:
            return []
        deadline = self._clock() - self._idle_timeout
        expired = [sid for sid, s in self._sessions.items() if s.last_activity < deadline]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            LOGGER.warning("Reaped %d idle session(s): %s", len(expired), ", ".join(expired))
        return expired

    async def run_reaper(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.reap_idle()
