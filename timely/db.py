from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

from .aggregator import month_bounds
from .errors import StorageError
from .models import Session


class SessionRepository(Protocol):
    def save(self, session: Session) -> None: ...

    def get(self, session_id: str) -> Session | None: ...

    def list_between(self, start_utc: datetime, end_utc: datetime) -> Sequence[Session]: ...

    def list_by_month(self, year: int, month: int) -> Sequence[Session]: ...

    def list_all(self) -> Sequence[Session]: ...

    def delete(self, session_id: str) -> bool: ...

    def delete_all(self) -> int: ...

    def save_open_session(self, session: Session) -> None: ...

    def load_open_session(self) -> Session | None: ...

    def clear_open_session(self) -> None: ...


_SESSION_COLUMNS = 'id, start, pauses, resumes, "end", total_seconds'
OPEN_SESSION_META_KEY = "open_session"


class Database:
    """Thin SQLite access layer for session records and scheduler markers."""

    def __init__(self, db_path: str | Path, tz: tzinfo = timezone.utc) -> None:
        try:
            self._conn = sqlite3.connect(str(db_path))
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to open database {db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._closed = False
        self.tz = tz

    def close(self) -> None:
        if self._closed:
            return
        self._conn.close()
        self._closed = True

    def initialize(self) -> None:
        # sessions: finalized work sessions, timestamps as UTC ISO-8601 text.
        # meta: small key/value store for scheduler markers and the open session snapshot.
        self._executescript(
            """
            CREATE TABLE IF NOT EXISTS sessions (
              id TEXT PRIMARY KEY,
              start TEXT NOT NULL,
              pauses TEXT NOT NULL,
              resumes TEXT NOT NULL,
              "end" TEXT,
              total_seconds INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS sessions_start ON sessions (start);

            CREATE TABLE IF NOT EXISTS meta (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL
            );
            """
        )

    def save(self, session: Session) -> None:
        record = _session_record(session)
        self._write(
            """
            INSERT INTO sessions (id, start, pauses, resumes, "end", total_seconds)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id)
            DO UPDATE SET
              start=excluded.start,
              pauses=excluded.pauses,
              resumes=excluded.resumes,
              "end"=excluded."end",
              total_seconds=excluded.total_seconds
            """,
            (
                record["id"],
                record["start"],
                record["pauses"],
                record["resumes"],
                record["end"],
                record["total_seconds"],
            ),
        )

    def get(self, session_id: str) -> Session | None:
        rows = self._query(f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,))
        if not rows:
            return None
        return _row_to_session(rows[0])

    def list_between(self, start_utc: datetime, end_utc: datetime) -> list[Session]:
        """Sessions whose start lies in ``[start_utc, end_utc)``, oldest first."""
        rows = self._query(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM sessions
            WHERE start >= ? AND start < ?
            ORDER BY start ASC, id ASC
            """,
            (_to_utc(start_utc).isoformat(), _to_utc(end_utc).isoformat()),
        )
        return [_row_to_session(row) for row in rows]

    def list_by_month(self, year: int, month: int) -> list[Session]:
        start, end = month_bounds(year, month, self.tz)
        return self.list_between(start, end)

    def list_all(self) -> list[Session]:
        rows = self._query(f"SELECT {_SESSION_COLUMNS} FROM sessions ORDER BY start DESC, id ASC")
        return [_row_to_session(row) for row in rows]

    def delete(self, session_id: str) -> bool:
        return self._write("DELETE FROM sessions WHERE id = ?", (session_id,)) > 0

    def delete_all(self) -> int:
        return self._write("DELETE FROM sessions")

    def get_meta(self, key: str) -> str | None:
        rows = self._query("SELECT value FROM meta WHERE key = ?", (key,))
        if not rows:
            return None
        return str(rows[0]["value"])

    def set_meta(self, key: str, value: str) -> None:
        self._write(
            """
            INSERT INTO meta (key, value)
            VALUES (?, ?)
            ON CONFLICT(key)
            DO UPDATE SET value=excluded.value
            """,
            (key, value),
        )

    def delete_meta(self, key: str) -> None:
        self._write("DELETE FROM meta WHERE key = ?", (key,))

    def save_open_session(self, session: Session) -> None:
        """Snapshot the in-progress session so a restart can pick it up again."""
        self.set_meta(OPEN_SESSION_META_KEY, json.dumps(_session_record(session)))

    def load_open_session(self) -> Session | None:
        raw = self.get_meta(OPEN_SESSION_META_KEY)
        if raw is None:
            return None
        try:
            record = json.loads(raw)
        except ValueError as exc:
            raise StorageError(f"Corrupt open session snapshot: {exc}") from exc
        return _row_to_session(record)

    def clear_open_session(self) -> None:
        self.delete_meta(OPEN_SESSION_META_KEY)

    def _query(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Session query failed: {exc}") from exc

    def _write(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        try:
            with self._conn:
                cursor = self._conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise StorageError(f"Session write failed: {exc}") from exc
        return cursor.rowcount

    def _executescript(self, script: str) -> None:
        try:
            self._conn.executescript(script)
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Database initialization failed: {exc}") from exc


def _to_utc(value: datetime) -> datetime:
    """Normalize a timezone-aware datetime to UTC for storage."""
    if value.tzinfo is None:
        raise ValueError("Datetime must be timezone-aware")
    return value.astimezone(timezone.utc)


def _parse_utc(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        # Stored values should be timezone-aware; treat naive values as UTC for resilience.
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _dump_timestamps(values: Sequence[datetime]) -> str:
    return json.dumps([_to_utc(value).isoformat() for value in values])


def _load_timestamps(raw: str) -> list[datetime]:
    return [_parse_utc(value) for value in json.loads(raw)]


def _session_record(session: Session) -> dict[str, Any]:
    """Flatten a session into the stored column values."""
    return {
        "id": session.id,
        "start": _to_utc(session.start).isoformat(),
        "pauses": _dump_timestamps(session.pauses),
        "resumes": _dump_timestamps(session.resumes),
        "end": _to_utc(session.end).isoformat() if session.end is not None else None,
        "total_seconds": session.total_seconds,
    }


def _row_to_session(row: sqlite3.Row | Mapping[str, Any]) -> Session:
    try:
        return Session.from_timestamps(
            session_id=row["id"],
            start=_parse_utc(row["start"]),
            pauses=_load_timestamps(row["pauses"]),
            resumes=_load_timestamps(row["resumes"]),
            end=_parse_utc(row["end"]) if row["end"] is not None else None,
            total_seconds=row["total_seconds"],
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise StorageError(f"Corrupt session record {row['id']}: {exc}") from exc
