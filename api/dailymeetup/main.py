import logging
import random
import time
from datetime import date, datetime
from typing import Any

from fastapi import FastAPI, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from .config import (
    ACTIVE_WITHIN_DAYS,
    ADMIN_TOKEN,
    HISTORY_LOOKBACK_DAYS,
    MATCH_SHUFFLE_SEED,
    MAX_FLAKE_STREAK,
    PAIRING_EXPIRY_HOUR,
    PAIRING_TIMEZONE,
)
from .database import Base, SessionLocal, engine
from .deps import validate_admin_token as _validate_admin_token_impl
from . import models  # noqa: F401  (registers tables on Base)
from .routes import include_modular_routers
from .services.eligibility import fetch_eligibility_debug_counts, fetch_eligible_participants
from .services.fallback import AlreadyPaired, PartnerProvisioningError, participant_exists, provision_partner
from .services.history import fetch_pairing_history
from .services.lifecycle import (
    NotPairingMember,
    PairingClosed,
    PairingNotFound,
    count_daily_pairings,
    create_pairing_documents,
    delete_pending_daily_pairings,
    enqueue_reminders,
    expiry_for,
    fetch_day_pairings,
    fetch_participant_pairing_on,
    local_day,
    record_submission,
    sweep_flaked_pairings,
)
from .services.matching import create_pairings
from .services.notifications import Sender, deliver_pending_notifications

logger = logging.getLogger(__name__)

app = FastAPI(title="Daily Meetup Pairing API")
include_modular_routers(app)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
                db.commit()
            return
        except OperationalError as exc:
            last_err = exc
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


@app.on_event("startup")
def on_startup() -> None:
    wait_for_db()
    init_db()


def _validate_admin_token(token: str | None) -> None:
    _validate_admin_token_impl(token, ADMIN_TOKEN)


def repo_run_daily_pairing(now: datetime, force: bool = False, seed: int | None = None) -> dict[str, Any]:
    day = local_day(now, PAIRING_TIMEZONE)
    expires_at = expiry_for(day, PAIRING_EXPIRY_HOUR, PAIRING_TIMEZONE)
    deleted_counts = {"pairing": 0, "notification_outbox": 0}

    with SessionLocal() as db:
        if count_daily_pairings(db, day) > 0:
            if not force:
                return {"pairing_date": str(day), "created_pairings": 0, "message": "Pairings already exist"}
            deleted_counts = delete_pending_daily_pairings(db, day)

        eligibility_debug = fetch_eligibility_debug_counts(
            db, now, active_within_days=ACTIVE_WITHIN_DAYS, max_flake_streak=MAX_FLAKE_STREAK
        )
        participants = fetch_eligible_participants(
            db, now, active_within_days=ACTIVE_WITHIN_DAYS, max_flake_streak=MAX_FLAKE_STREAK
        )
        already_paired = {
            str(uid)
            for row in fetch_day_pairings(db, day)
            for uid in (row["user1_id"], row["user2_id"])
        }
        participants = [p for p in participants if p.id not in already_paired]
        history = fetch_pairing_history(db, day, HISTORY_LOOKBACK_DAYS)

        rng = random.Random(seed if seed is not None else MATCH_SHUFFLE_SEED)
        result = create_pairings(participants, history, rng=rng)
        created = create_pairing_documents(db, result, pairing_date=day, now=now, expires_at=expires_at)
        db.commit()

    logger.info(
        "Daily pairing %s: eligible=%s pairs=%s waitlisted=%s",
        day,
        len(participants),
        len(result.pairs),
        len(result.waitlist),
    )
    return {
        "pairing_date": str(day),
        "eligible_participants": len(participants),
        "created_pairings": len(created["pairing_ids"]),
        "waitlisted": len(created["waitlisted_ids"]),
        "pairing_ids": created["pairing_ids"],
        "waitlisted_ids": created["waitlisted_ids"],
        "expires_at": expires_at.isoformat(),
        "history_lookback_days": HISTORY_LOOKBACK_DAYS,
        "eligibility_debug": eligibility_debug,
        "deleted_counts": deleted_counts,
    }


def repo_run_flake_sweep(now: datetime, day: date | None = None, force: bool = False) -> dict[str, Any]:
    day = day or local_day(now, PAIRING_TIMEZONE)
    cutoff = expiry_for(day, PAIRING_EXPIRY_HOUR, PAIRING_TIMEZONE)
    if now < cutoff and not force:
        raise HTTPException(status_code=409, detail=f"Pairings for {day} expire at {cutoff.isoformat()}")

    with SessionLocal() as db:
        summary = sweep_flaked_pairings(db, day, now, force=force)
        db.commit()
    return summary


def repo_enqueue_reminders(now: datetime, final: bool = False) -> dict[str, Any]:
    day = local_day(now, PAIRING_TIMEZONE)
    with SessionLocal() as db:
        created = enqueue_reminders(db, day, now, final=final)
        db.commit()
    return {"pairing_date": str(day), "final": final, "queued": created}


def repo_process_notifications(now: datetime, limit: int = 1000, sender: Sender | None = None) -> dict[str, Any]:
    with SessionLocal() as db:
        out = deliver_pending_notifications(db, sender=sender, now=now, limit=limit)
        db.commit()
    return out


def repo_submit_photo(pairing_id: str, participant_id: str, photo_url: str, now: datetime) -> dict[str, Any]:
    with SessionLocal() as db:
        try:
            pairing = record_submission(db, pairing_id, participant_id, photo_url, now)
        except PairingNotFound:
            raise HTTPException(status_code=404, detail="Pairing not found")
        except NotPairingMember:
            raise HTTPException(status_code=403, detail="Forbidden")
        except PairingClosed as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        db.commit()
    return {"pairing_id": pairing_id, "status": pairing["status"]}


def repo_auto_pair(requester_id: str, now: datetime) -> dict[str, Any]:
    with SessionLocal() as db:
        if not participant_exists(db, requester_id):
            raise HTTPException(status_code=404, detail="Participant not found")
        try:
            out = provision_partner(db, requester_id, now)
        except AlreadyPaired as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except PartnerProvisioningError as exc:
            db.rollback()
            logger.error("Auto-pair failed for %s: %s", requester_id, exc)
            raise HTTPException(status_code=500, detail=str(exc))
        db.commit()
    return out


def repo_get_today_pairing(participant_id: str, now: datetime) -> dict[str, Any] | None:
    day = local_day(now, PAIRING_TIMEZONE)
    with SessionLocal() as db:
        return fetch_participant_pairing_on(db, participant_id, day)


def repo_day_summary(day: date) -> dict[str, Any]:
    with SessionLocal() as db:
        rows = fetch_day_pairings(db, day)

    status_counts: dict[str, int] = {}
    for row in rows:
        st = row["status"]
        status_counts[st] = status_counts.get(st, 0) + 1

    return {
        "pairing_date": str(day),
        "total_pairings": len(rows),
        "status_counts": status_counts,
        "pairings": rows,
    }


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
