from datetime import datetime

PENDING = "pending"
PARTIALLY_SUBMITTED = "partially_submitted"
COMPLETED = "completed"
FLAKED = "flaked"

TERMINAL_STATUSES = frozenset({COMPLETED, FLAKED})
OPEN_STATUSES = frozenset({PENDING, PARTIALLY_SUBMITTED})


def transition_status(
    current: str,
    action: str,
    *,
    user1_submitted: bool = False,
    user2_submitted: bool = False,
    now: datetime | None = None,
    expires_at: datetime | None = None,
) -> str:
    if current in TERMINAL_STATUSES:
        return current

    if action == "submit":
        if now is not None and expires_at is not None and now >= expires_at:
            return current
        if user1_submitted and user2_submitted:
            return COMPLETED
        if user1_submitted or user2_submitted:
            return PARTIALLY_SUBMITTED
        return current

    if action == "flake":
        if current in OPEN_STATUSES:
            return FLAKED
        return current

    return current
