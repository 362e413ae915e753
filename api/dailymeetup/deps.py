from fastapi import HTTPException


def validate_admin_token(token: str | None, admin_token: str | None) -> None:
    if not admin_token or not token or token != admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def parse_actor_participant_id(raw_actor_id: str | None) -> str:
    value = (raw_actor_id or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail="X-Actor-User-Id header is required")
    if len(value) > 64:
        raise HTTPException(status_code=400, detail="X-Actor-User-Id is too long")
    return value
