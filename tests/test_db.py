from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from timely.db import Database
from timely.errors import StorageError
from timely.models import Session


def make_db(tz=timezone.utc) -> Database:
    db = Database(":memory:", tz=tz)
    db.initialize()
    return db


def ended_session(start: datetime, seconds: int) -> Session:
    return Session.begin(start).finalized(start + timedelta(seconds=seconds))


def test_save_and_get_round_trip_with_pauses() -> None:
    db = make_db()
    start = datetime(2025, 11, 18, 7, 30, tzinfo=timezone.utc)
    session = (
        Session.begin(start)
        .paused(datetime(2025, 11, 18, 8, 0, tzinfo=timezone.utc))
        .resumed(datetime(2025, 11, 18, 8, 15, tzinfo=timezone.utc))
        .paused(datetime(2025, 11, 18, 9, 45, tzinfo=timezone.utc))
        .finalized(datetime(2025, 11, 18, 10, 0, tzinfo=timezone.utc))
    )

    db.save(session)

    assert db.get(session.id) == session
    assert db.get("missing") is None


def test_save_is_an_upsert() -> None:
    db = make_db()
    opened = Session.begin(datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc))
    db.save(opened)
    closed = opened.finalized(datetime(2026, 2, 1, 10, 0, tzinfo=timezone.utc))
    db.save(closed)

    assert db.list_all() == [closed]


def test_list_by_month_uses_local_boundaries() -> None:
    db = make_db(ZoneInfo("America/New_York"))
    # 03:00 UTC on Mar 1 is still Feb 28 in New York.
    february = ended_session(datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc), 600)
    march = ended_session(datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc), 900)
    db.save(march)
    db.save(february)

    assert db.list_by_month(2026, 2) == [february]
    assert db.list_by_month(2026, 3) == [march]


def test_list_between_is_sorted_and_half_open() -> None:
    db = make_db()
    base = datetime(2026, 2, 1, 0, 0, tzinfo=timezone.utc)
    sessions = [ended_session(base + timedelta(hours=offset), 60) for offset in (5, 0, 24, 12)]
    for session in sessions:
        db.save(session)

    found = db.list_between(base, base + timedelta(days=1))

    assert [session.start.hour for session in found] == [0, 5, 12]


def test_delete_and_delete_all() -> None:
    db = make_db()
    first = ended_session(datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc), 60)
    second = ended_session(datetime(2026, 2, 2, 9, 0, tzinfo=timezone.utc), 60)
    third = ended_session(datetime(2026, 2, 3, 9, 0, tzinfo=timezone.utc), 60)
    for session in (first, second, third):
        db.save(session)

    assert db.delete(first.id) is True
    assert db.delete(first.id) is False
    assert db.delete_all() == 2
    assert db.list_all() == []


def test_meta_round_trip() -> None:
    db = make_db()

    assert db.get_meta("last_auto_report_day") is None
    db.set_meta("last_auto_report_day", "2026-02-01")
    db.set_meta("last_auto_report_day", "2026-02-02")
    assert db.get_meta("last_auto_report_day") == "2026-02-02"


def test_closed_database_raises_storage_error() -> None:
    db = make_db()
    db.close()

    with pytest.raises(StorageError):
        db.save(ended_session(datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc), 60))
    with pytest.raises(StorageError):
        db.list_by_month(2026, 2)


def test_open_session_snapshot_round_trip_and_clear() -> None:
    db = make_db()
    assert db.load_open_session() is None

    opened = Session.begin(datetime(2026, 4, 7, 8, 0, tzinfo=timezone.utc))
    paused = opened.paused(datetime(2026, 4, 7, 9, 0, tzinfo=timezone.utc))
    db.save_open_session(opened)
    db.save_open_session(paused)

    assert db.load_open_session() == paused
    # The snapshot is not a finished session record.
    assert db.list_all() == []

    db.clear_open_session()
    assert db.load_open_session() is None


def test_corrupt_open_session_snapshot_raises_storage_error() -> None:
    db = make_db()
    db.set_meta("open_session", "{not json")

    with pytest.raises(StorageError, match="Corrupt open session snapshot"):
        db.load_open_session()
