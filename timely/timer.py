from __future__ import annotations

import logging
import threading
from datetime import datetime

from .clock import Clock, SystemClock
from .db import SessionRepository
from .errors import AlreadyActive, NotActive, NotPaused, NotRunning, StorageError
from .models import Session, TimerEvent, TimerEventKind, TimerState


class Timer:
    """Single open-session state machine: Idle -> Running <-> Paused -> Idle.

    All transitions and state reads go through one lock, so a reader never sees
    a half-applied transition. Each successful transition returns a
    ``TimerEvent`` for whoever wants to announce it.

    The open session is snapshotted through the repository on every transition
    and picked up again when a new ``Timer`` is built over the same repository.
    """

    def __init__(
        self,
        repository: SessionRepository,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.repository = repository
        self.clock = clock or SystemClock()
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._session: Session | None = self._recover()

    @property
    def current_session(self) -> Session | None:
        with self._lock:
            return self._session

    def start(self) -> TimerEvent:
        with self._lock:
            if self._session is not None:
                self.logger.debug("Rejecting start: session %s already active", self._session.id)
                raise AlreadyActive()

            now = self.clock.now()
            self._session = self._checkpoint(Session.begin(now))
            self.logger.info("Session started: id=%s", self._session.id)
            return TimerEvent(TimerEventKind.STARTED, self._session, now)

    def pause(self) -> TimerEvent:
        with self._lock:
            session = self._session
            if session is None or session.is_paused:
                self.logger.debug("Rejecting pause: timer is not running")
                raise NotRunning()

            now = self._now_after(session)
            self._session = self._checkpoint(session.paused(now))
            self.logger.info("Session paused: id=%s", session.id)
            return TimerEvent(TimerEventKind.PAUSED, self._session, now)

    def resume(self) -> TimerEvent:
        with self._lock:
            session = self._session
            if session is None or not session.is_paused:
                self.logger.debug("Rejecting resume: timer is not paused")
                raise NotPaused()

            now = self._now_after(session)
            self._session = self._checkpoint(session.resumed(now))
            self.logger.info("Session resumed: id=%s", session.id)
            return TimerEvent(TimerEventKind.RESUMED, self._session, now)

    def end(self) -> TimerEvent:
        with self._lock:
            session = self._session
            if session is None:
                self.logger.debug("Rejecting end: no active session")
                raise NotActive()

            now = self._now_after(session)
            finished = session.finalized(now)
            # The session is logically over even if the save below fails.
            self._session = None
            self.logger.info("Session ended: id=%s tracked=%ss", finished.id, finished.total_seconds)

        try:
            self.repository.save(finished)
        except StorageError as exc:
            self.logger.error("Failed to save ended session %s: %s", finished.id, exc)
            self._park(finished)
            if exc.session is None:
                exc.session = finished
            raise

        try:
            self.repository.clear_open_session()
        except StorageError:
            # A stale snapshot is discarded on recovery because the session is already saved.
            self.logger.exception("Failed to clear open session snapshot for %s", finished.id)

        return TimerEvent(TimerEventKind.ENDED, finished, now)

    def current_state(self) -> TimerState:
        with self._lock:
            session = self._session
            if session is None:
                return TimerState()

            now = self._now_after(session)
            return TimerState(
                is_running=True,
                is_paused=session.is_paused,
                current_session_id=session.id,
                elapsed_seconds=session.running_seconds(now),
            )

    def _checkpoint(self, session: Session) -> Session:
        try:
            self.repository.save_open_session(session)
        except StorageError:
            self.logger.error("Failed to snapshot open session %s; transition not applied", session.id)
            raise
        return session

    def _park(self, finished: Session) -> None:
        # Leave the finalized session in the snapshot slot so a restart can still save it.
        try:
            self.repository.save_open_session(finished)
        except StorageError:
            self.logger.exception("Failed to park ended session %s", finished.id)

    def _recover(self) -> Session | None:
        session = self.repository.load_open_session()
        if session is None:
            return None

        if self.repository.get(session.id) is not None:
            self.logger.info("Discarding stale open session snapshot: id=%s", session.id)
            self.repository.clear_open_session()
            return None

        if session.end is not None:
            try:
                self.repository.save(session)
            except StorageError:
                self.logger.exception("Failed to save parked session %s; keeping snapshot", session.id)
                return None
            self.logger.info("Saved parked session: id=%s tracked=%ss", session.id, session.total_seconds)
            self.repository.clear_open_session()
            return None

        self.logger.info("Recovered open session: id=%s paused=%s", session.id, session.is_paused)
        return session

    def _now_after(self, session: Session) -> datetime:
        # A wall clock that stepped backwards must not break timestamp ordering.
        return max(self.clock.now(), session.last_mark)
