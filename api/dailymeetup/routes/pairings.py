from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Header
from fastapi.encoders import jsonable_encoder

from ..deps import parse_actor_participant_id
from ..schemas import AutoPairResponse, SubmitPhotoRequest

router = APIRouter()


@router.get("/pairings/today")
def get_today_pairing(x_actor_user_id: str | None = Header(default=None, alias="X-Actor-User-Id")) -> dict[str, Any]:
    from .. import main as m

    participant_id = parse_actor_participant_id(x_actor_user_id)
    row = m.repo_get_today_pairing(participant_id, datetime.now(timezone.utc))
    if not row:
        return {"pairing": None, "message": "No pairing has been assigned for today yet"}
    return {"pairing": jsonable_encoder(row)}


@router.post("/pairings/{pairing_id}/submit")
def submit_photo(
    pairing_id: str,
    payload: SubmitPhotoRequest,
    x_actor_user_id: str | None = Header(default=None, alias="X-Actor-User-Id"),
) -> dict[str, Any]:
    from .. import main as m

    participant_id = parse_actor_participant_id(x_actor_user_id)
    return m.repo_submit_photo(pairing_id, participant_id, payload.photo_url, datetime.now(timezone.utc))


@router.post("/pairings/auto-pair", response_model=AutoPairResponse)
def auto_pair(x_actor_user_id: str | None = Header(default=None, alias="X-Actor-User-Id")) -> dict[str, Any]:
    from .. import main as m

    participant_id = parse_actor_participant_id(x_actor_user_id)
    return m.repo_auto_pair(participant_id, datetime.now(timezone.utc))
