"""Conversation sessions - keyed by sender address, TTL-bounded.

NO PII in keys beyond the sender address itself; values hold the freight
draft only until the driver confirms or cancels.
"""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Protocol

import redis

from fretebot.domain.freight import REQUIRED_FIELDS, FreightDraft
from fretebot.infra.time import utc_now
from fretebot.observability.logging import get_logger
from fretebot.observability.redaction import safe_log_context

logger = get_logger(__name__)

SESSION_TIMEOUT = timedelta(minutes=10)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"
REDIS_KEY_PREFIX = "fretebot:session:"


class ConversationState(str, Enum):
    IDLE = "IDLE"
    AWAITING_TICKET = "AWAITING_TICKET"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    AWAITING_MISSING_FIELDS = "AWAITING_MISSING_FIELDS"


@dataclass
class ConversationSession:
    """One driver's in-progress conversation."""

    driver_id: str
    driver_name: str
    state: ConversationState = ConversationState.IDLE
    draft: FreightDraft = field(default_factory=FreightDraft)
    missing_fields: list[str] = field(default_factory=list)
    last_activity: datetime = field(default_factory=utc_now)

    def touch(self, now: datetime) -> None:
        self.last_activity = now

    def is_expired(self, now: datetime, timeout: timedelta = SESSION_TIMEOUT) -> bool:
        return now - self.last_activity > timeout

    def set_missing(self, names: list[str]) -> None:
        """Record missing fields: required names only, no duplicates, fixed order."""
        wanted = set(names)
        self.missing_fields = [name for name in REQUIRED_FIELDS if name in wanted]

    def to_dict(self) -> dict[str, Any]:
        return {
            "driver_id": self.driver_id,
            "driver_name": self.driver_name,
            "state": self.state.value,
            "draft": self.draft.to_dict(),
            "missing_fields": list(self.missing_fields),
            "last_activity": self.last_activity.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationSession:
        session = cls(
            driver_id=str(data["driver_id"]),
            driver_name=data.get("driver_name") or "",
            state=ConversationState(data.get("state", ConversationState.IDLE.value)),
            draft=FreightDraft.from_dict(data.get("draft") or {}),
            last_activity=datetime.fromisoformat(data["last_activity"]),
        )
        session.set_missing(data.get("missing_fields") or [])
        return session


class SessionStore(Protocol):
    def get(self, sender: str) -> ConversationSession | None: ...

    def put(self, sender: str, session: ConversationSession) -> None: ...

    def delete(self, sender: str) -> None: ...

    def sweep(self, now: datetime) -> int:
        """Remove sessions idle past the timeout. Returns how many were removed."""
        ...


class InMemorySessionStore:
    """Process-local store. Sessions do not survive a restart."""

    def __init__(self, timeout: timedelta = SESSION_TIMEOUT) -> None:
        self._timeout = timeout
        self._lock = threading.Lock()
        self._sessions: dict[str, ConversationSession] = {}

    def get(self, sender: str) -> ConversationSession | None:
        with self._lock:
            return self._sessions.get(sender)

    def put(self, sender: str, session: ConversationSession) -> None:
        with self._lock:
            self._sessions[sender] = session

    def delete(self, sender: str) -> None:
        with self._lock:
            self._sessions.pop(sender, None)

    def sweep(self, now: datetime) -> int:
        with self._lock:
            expired = [
                sender
                for sender, session in self._sessions.items()
                if session.is_expired(now, self._timeout)
            ]
            for sender in expired:
                del self._sessions[sender]
        if expired:
            logger.info(
                "expired sessions swept",
                extra={"extra_fields": safe_log_context(count=len(expired))},
            )
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class RedisSessionStore:
    """Shared store. Each key carries the idle timeout as its TTL."""

    def __init__(
        self,
        client: redis.Redis,
        timeout: timedelta = SESSION_TIMEOUT,
        key_prefix: str = REDIS_KEY_PREFIX,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._prefix = key_prefix

    def _key(self, sender: str) -> str:
        return f"{self._prefix}{sender}"

    def get(self, sender: str) -> ConversationSession | None:
        raw = self._client.get(self._key(sender))
        if raw is None:
            return None
        try:
            return ConversationSession.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(
                "discarding unreadable session",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            self.delete(sender)
            return None

    def put(self, sender: str, session: ConversationSession) -> None:
        self._client.set(
            self._key(sender),
            json.dumps(session.to_dict()),
            ex=int(self._timeout.total_seconds()),
        )

    def delete(self, sender: str) -> None:
        self._client.delete(self._key(sender))

    def sweep(self, now: datetime) -> int:
        # Redis expires idle keys on its own
        return 0


class KeyedLock:
    """One lock per key, dropped once no thread holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock, refs = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, refs + 1)

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                _, refs = self._locks[key]
                if refs <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, refs - 1)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def build_session_store() -> SessionStore:
    """Store selected by SESSION_BACKEND ('memory' default, or 'redis').

    Raises:
        ValueError: If SESSION_BACKEND names an unknown backend.
    """
    backend = os.environ.get("SESSION_BACKEND", "memory").lower()
    if backend == "memory":
        return InMemorySessionStore()
    if backend == "redis":
        url = os.environ.get("REDIS_URL", DEFAULT_REDIS_URL)
        return RedisSessionStore(redis.Redis.from_url(url, decode_responses=True))
    raise ValueError(f"Unknown SESSION_BACKEND: {backend}")
