import json
import sqlite3
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dailymeetup import models  # noqa: F401
from dailymeetup.database import Base

sqlite3.register_adapter(datetime, lambda v: v.isoformat(" "))
sqlite3.register_adapter(date, lambda v: v.isoformat())

# 2026-03-10 18:00 UTC is 11:00 in Los Angeles, well before the 22:00 expiry.
NOW = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)
TODAY = date(2026, 3, 10)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    # pysqlite manages transactions itself and breaks SAVEPOINT; hand control back.
    @event.listens_for(eng, "connect")
    def _no_autobegin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def db(session_factory):
    with session_factory() as session:
        yield session


def add_participant(
    db,
    participant_id: str,
    *,
    username: str | None = None,
    display_name: str | None = None,
    is_active: bool = True,
    last_active: datetime | None = None,
    connections: list[str] | None = None,
    blocked_ids: list[str] | None = None,
    flake_count: int = 0,
    flake_streak: int = 0,
    max_flake_streak: int = 0,
    waitlisted_today: bool = False,
    priority_next_pairing: bool = False,
    waitlisted_at: datetime | None = None,
    push_token: str | None = None,
    notification_settings: dict | None = None,
) -> str:
    db.execute(
        text(
            """
            INSERT INTO participant
            (id, username, display_name, is_active, is_placeholder, last_active, created_at,
             connections, blocked_ids, flake_count, flake_streak, max_flake_streak,
             waitlisted_today, priority_next_pairing, waitlisted_at, push_token, notification_settings)
            VALUES
            (:id, :username, :display_name, :is_active, :no, :last_active, :created_at,
             :connections, :blocked_ids, :flake_count, :flake_streak, :max_flake_streak,
             :waitlisted_today, :priority_next_pairing, :waitlisted_at, :push_token, :notification_settings)
            """
        ),
        {
            "id": participant_id,
            "username": username or participant_id,
            "display_name": display_name,
            "is_active": is_active,
            "no": False,
            "last_active": last_active or (NOW - timedelta(hours=1)),
            "created_at": NOW - timedelta(days=30),
            "connections": json.dumps(connections or []),
            "blocked_ids": json.dumps(blocked_ids or []),
            "flake_count": flake_count,
            "flake_streak": flake_streak,
            "max_flake_streak": max_flake_streak,
            "waitlisted_today": waitlisted_today,
            "priority_next_pairing": priority_next_pairing,
            "waitlisted_at": waitlisted_at,
            "push_token": push_token,
            "notification_settings": json.dumps(notification_settings) if notification_settings is not None else None,
        },
    )
    return participant_id


def participant_row(db, participant_id: str) -> dict:
    row = db.execute(text("SELECT * FROM participant WHERE id = :id"), {"id": participant_id}).mappings().first()
    return dict(row) if row else {}


def pairing_row(db, pairing_id: str) -> dict:
    row = db.execute(text("SELECT * FROM pairing WHERE id = :id"), {"id": pairing_id}).mappings().first()
    return dict(row) if row else {}

