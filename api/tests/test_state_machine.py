from datetime import datetime, timedelta, timezone

from dailymeetup.services.state_machine import transition_status


def test_submissions_move_pending_to_partial_then_completed():
    now = datetime.now(timezone.utc)
    expires = now + timedelta(hours=2)

    assert transition_status("pending", "submit", user1_submitted=True, now=now, expires_at=expires) == "partially_submitted"
    assert transition_status("pending", "submit", user2_submitted=True, now=now, expires_at=expires) == "partially_submitted"
    assert (
        transition_status("partially_submitted", "submit", user1_submitted=True, user2_submitted=True, now=now, expires_at=expires)
        == "completed"
    )


def test_submit_after_expiry_keeps_status():
    now = datetime.now(timezone.utc)
    past = now - timedelta(minutes=1)
    assert transition_status("pending", "submit", user1_submitted=True, now=now, expires_at=past) == "pending"


def test_terminal_statuses_never_change():
    for status in ("completed", "flaked"):
        assert transition_status(status, "submit", user1_submitted=True, user2_submitted=True) == status
        assert transition_status(status, "flake") == status


def test_flake_only_from_open_statuses():
    assert transition_status("pending", "flake") == "flaked"
    assert transition_status("partially_submitted", "flake") == "flaked"
    assert transition_status("pending", "dance") == "pending"
