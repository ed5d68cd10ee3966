"""
In-memory holder of the customer's current auth session.

The portal components receive a `SessionHolder` by reference and either read
`current`, register a callback with `subscribe()`, or iterate the events of
`listen()`. The holder persists nothing; the token pair is whatever the server
issued.
"""

from __future__ import annotations

import queue
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterator


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    refresh_token: str
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    @classmethod
    def from_payload(cls, payload: dict) -> "AuthSession":
        expires_at = payload.get("expires_at")
        if isinstance(expires_at, (int, float)):
            expires_at = datetime.fromtimestamp(expires_at, tz=timezone.utc)
        elif not isinstance(expires_at, datetime):
            expires_at = None
        return cls(
            access_token=str(payload.get("access_token") or payload.get("access") or ""),
            refresh_token=str(payload.get("refresh_token") or payload.get("refresh") or ""),
            expires_at=expires_at,
        )


class SessionEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    SIGNED_OUT = "SIGNED_OUT"


@dataclass(frozen=True)
class SessionChanged:
    event: SessionEvent
    session: AuthSession | None


class SessionHolderClosed(RuntimeError):
    pass


class Subscription:
    def __init__(self, holder: "SessionHolder", callback: Callable[[SessionChanged], None]) -> None:
        self._holder = holder
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._holder._remove(self)


class SessionHolder:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._session: AuthSession | None = None
        self._subscriptions: list[Subscription] = []
        self._started = False
        self._closed = False

    def __enter__(self) -> "SessionHolder":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start(self, initial: AuthSession | None = None) -> "SessionHolder":
        with self._lock:
            if self._closed:
                raise SessionHolderClosed("Session holder was closed.")
            self._started = True
            if initial is not None:
                self._session = initial
        return self

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscriptions, self._subscriptions = self._subscriptions, []
            self._session = None
        for sub in subscriptions:
            sub.active = False

    @property
    def started(self) -> bool:
        return self._started and not self._closed

    @property
    def current(self) -> AuthSession | None:
        return self._session

    @property
    def access_token(self) -> str | None:
        session = self._session
        return session.access_token if session else None

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionHolderClosed("Session holder was closed.")
        if not self._started:
            raise RuntimeError("Session holder must be started before use.")

    def set_session(self, session: AuthSession, *, event: SessionEvent = SessionEvent.SIGNED_IN) -> None:
        with self._lock:
            self._ensure_open()
            self._session = session
        self._publish(SessionChanged(event=event, session=session))

    def clear(self) -> None:
        with self._lock:
            self._ensure_open()
            had_session = self._session is not None
            self._session = None
        if had_session:
            self._publish(SessionChanged(event=SessionEvent.SIGNED_OUT, session=None))

    def subscribe(self, callback: Callable[[SessionChanged], None]) -> Subscription:
        with self._lock:
            self._ensure_open()
            sub = Subscription(self, callback)
            self._subscriptions.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def _publish(self, change: SessionChanged) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for sub in subscriptions:
            if sub.active:
                sub.callback(change)

    @contextmanager
    def listen(self) -> Iterator[Iterator[SessionChanged]]:
        """Yield an endless iterator of session changes, unsubscribed on exit.

        Iterating blocks until the next change. `stream.next(timeout=...)`
        returns None when nothing arrives in time.
        """
        stream = SessionEventStream()
        sub = self.subscribe(stream.push)
        try:
            yield stream
        finally:
            sub.unsubscribe()


class SessionEventStream:
    def __init__(self) -> None:
        self._queue: "queue.Queue[SessionChanged]" = queue.Queue()

    def push(self, change: SessionChanged) -> None:
        self._queue.put(change)

    def __iter__(self) -> "SessionEventStream":
        return self

    def __next__(self) -> SessionChanged:
        return self._queue.get()

    def next(self, timeout: float | None = None) -> SessionChanged | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
