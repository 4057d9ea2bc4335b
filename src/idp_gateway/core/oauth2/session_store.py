"""In-process store of pending authorization sessions and one-time codes."""

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from beartype import beartype

from ...models.authorization import AuthorizationCode, AuthSession
from ..clock import Clock, utc_now
from ..logging_utils import redact_token

logger = logging.getLogger(__name__)

SweepHook = Callable[[], Awaitable[Any]]


class SessionCodeStore:
    """Sessions keyed by session token and codes keyed by code value.

    A single lock guards both mappings, so every operation is atomic with
    respect to every other, whether callers run on the event loop or in a
    worker thread. Expiry is enforced lazily on read and eagerly by the
    periodic sweep.
    """

    def __init__(
        self,
        session_ttl: timedelta = timedelta(minutes=15),
        sweep_interval: float = 60.0,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize an empty store; call :meth:`start` to begin sweeping."""
        self._sessions: dict[str, AuthSession] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._lock = threading.Lock()
        self._session_ttl = session_ttl
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._sweep_task: asyncio.Task[None] | None = None
        self._sweep_hooks: list[SweepHook] = []

    # Sessions

    @beartype
    def put_session(self, session_token: str, session: AuthSession) -> None:
        with self._lock:
            self._sessions[session_token] = session

    @beartype
    def get_session(self, session_token: str) -> AuthSession | None:
        """Return the session without removing it; stale sessions read as absent."""
        with self._lock:
            session = self._sessions.get(session_token)
            if session is None:
                return None
            if session.is_stale(self._clock(), self._session_ttl):
                del self._sessions[session_token]
                return None
            return session

    @beartype
    def delete_session(self, session_token: str) -> None:
        with self._lock:
            self._sessions.pop(session_token, None)

    @beartype
    def pop_session(self, session_token: str) -> AuthSession | None:
        """Atomically remove and return a live session."""
        with self._lock:
            session = self._sessions.pop(session_token, None)
            if session is None:
                return None
            if session.is_stale(self._clock(), self._session_ttl):
                return None
            return session

    # Codes

    @beartype
    def put_code(self, code: AuthorizationCode) -> None:
        with self._lock:
            self._codes[code.code] = code

    @beartype
    def get_code(self, code: str) -> AuthorizationCode | None:
        """Peek at a live code without consuming it."""
        with self._lock:
            entry = self._codes.get(code)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._codes[code]
                return None
            return entry

    @beartype
    def delete_code(self, code: str) -> None:
        with self._lock:
            self._codes.pop(code, None)

    @beartype
    def take_code(self, code: str) -> AuthorizationCode | None:
        """Atomically remove and return a code.

        Of any number of concurrent callers presenting the same code, at most
        one receives it. An expired code is removed and reported as absent.
        """
        with self._lock:
            entry = self._codes.pop(code, None)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            logger.info("Expired authorization code presented: %s", redact_token(code))
            return None
        return entry

    # Expiry

    @beartype
    def sweep(self, now: datetime | None = None) -> tuple[int, int]:
        """Drop expired codes and stale sessions.

        Returns:
            Number of (sessions, codes) removed
        """
        now = now or self._clock()
        with self._lock:
            stale_sessions = [
                token
                for token, session in self._sessions.items()
                if session.is_stale(now, self._session_ttl)
            ]
            for token in stale_sessions:
                del self._sessions[token]

            expired_codes = [
                value for value, entry in self._codes.items() if entry.is_expired(now)
            ]
            for value in expired_codes:
                del self._codes[value]

        if stale_sessions or expired_codes:
            logger.debug(
                "Swept %d stale sessions and %d expired codes",
                len(stale_sessions),
                len(expired_codes),
            )
        return len(stale_sessions), len(expired_codes)

    def add_sweep_hook(self, hook: SweepHook) -> None:
        """Run ``hook`` after every periodic sweep (e.g. durable purges)."""
        self._sweep_hooks.append(hook)

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    @property
    def code_count(self) -> int:
        with self._lock:
            return len(self._codes)

    @property
    def is_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def start(self) -> None:
        """Start the background sweeper."""
        if self.is_running:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the background sweeper."""
        task = self._sweep_task
        self._sweep_task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _sweep_loop(self) -> None:
        """Background task sweeping expired entries every interval."""
        while True:
            try:
                await asyncio.sleep(self._sweep_interval)
                self.sweep()
                for hook in self._sweep_hooks:
                    await hook()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in sweep loop: {e}")
