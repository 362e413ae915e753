from datetime import date, datetime, timezone
from typing import Any

from fastapi import APIRouter, Header, HTTPException
from fastapi.encoders import jsonable_encoder

router = APIRouter()


def _parse_day(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="day must be YYYY-MM-DD")


@router.post("/pairings/run-daily")
def run_daily_pairing(
    force: bool = False,
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> dict[str, Any]:
    from .. import main as m

    m._validate_admin_token(x_admin_token)
    return m.repo_run_daily_pairing(now=datetime.now(timezone.utc), force=force)


@router.post("/pairings/sweep-flakes")
def sweep_flakes(
    day: str | None = None,
    force: bool = False,
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> dict[str, Any]:
    from .. import main as m

    m._validate_admin_token(x_admin_token)
    target = _parse_day(day) if day else None
    return m.repo_run_flake_sweep(now=datetime.now(timezone.utc), day=target, force=force)


@router.post("/pairings/reminders")
def send_reminders(
    final: bool = False,
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> dict[str, Any]:
    from .. import main as m

    m._validate_admin_token(x_admin_token)
    return m.repo_enqueue_reminders(now=datetime.now(timezone.utc), final=final)


@router.post("/notifications/process")
def process_notifications(
    limit: int = 1000,
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> dict[str, Any]:
    from .. import main as m

    m._validate_admin_token(x_admin_token)
    return m.repo_process_notifications(now=datetime.now(timezone.utc), limit=limit)


@router.get("/pairings/day/{day}")
def day_summary(day: str, x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")) -> dict[str, Any]:
    from .. import main as m

    m._validate_admin_token(x_admin_token)
    return jsonable_encoder(m.repo_day_summary(_parse_day(day)))
