from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Index, Integer, String, Text, false, func, true
from .database import Base


class Participant(Base):
    __tablename__ = "participant"

    id = Column(String(64), primary_key=True)
    username = Column(String, nullable=False, unique=True)
    display_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    photo_url = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    is_placeholder = Column(Boolean, nullable=False, default=False, server_default=false())
    last_active = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    connections = Column(JSON, nullable=False, default=list)
    blocked_ids = Column(JSON, nullable=False, default=list)
    flake_count = Column(Integer, nullable=False, default=0, server_default="0")
    flake_streak = Column(Integer, nullable=False, default=0, server_default="0")
    max_flake_streak = Column(Integer, nullable=False, default=0, server_default="0")
    waitlisted_today = Column(Boolean, nullable=False, default=False, server_default=false())
    priority_next_pairing = Column(Boolean, nullable=False, default=False, server_default=false())
    waitlisted_at = Column(DateTime(timezone=True), nullable=True)
    push_token = Column(String, nullable=True)
    notification_settings = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_participant_eligibility", "is_active", "flake_streak"),
        Index("idx_participant_waitlisted", "waitlisted_today"),
    )


class Pairing(Base):
    __tablename__ = "pairing"

    id = Column(String(64), primary_key=True)
    pairing_date = Column(Date, nullable=False)
    user1_id = Column(String(64), nullable=False)
    user2_id = Column(String(64), nullable=False)
    status = Column(String, nullable=False, default="pending", server_default="pending")
    source = Column(String, nullable=False, default="daily", server_default="daily")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)
    user1_photo_url = Column(String, nullable=True)
    user2_photo_url = Column(String, nullable=True)
    user1_submitted_at = Column(DateTime(timezone=True), nullable=True)
    user2_submitted_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    flaked_at = Column(DateTime(timezone=True), nullable=True)
    likes_count = Column(Integer, nullable=False, default=0, server_default="0")
    comments_count = Column(Integer, nullable=False, default=0, server_default="0")
    is_private = Column(Boolean, nullable=False, default=False, server_default=false())
    chat_id = Column(String, nullable=True)
    virtual_meeting_link = Column(String, nullable=True)

    __table_args__ = (
        Index("idx_pairing_date_status", "pairing_date", "status"),
        Index("idx_pairing_user1", "user1_id"),
        Index("idx_pairing_user2", "user2_id"),
    )


class PairingEvent(Base):
    __tablename__ = "pairing_event"

    id = Column(String(64), primary_key=True)
    participant_id = Column(String(64), nullable=False, index=True)
    pairing_date = Column(Date, nullable=True)
    event_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class NotificationOutbox(Base):
    __tablename__ = "notification_outbox"

    id = Column(String(64), primary_key=True)
    participant_id = Column(String(64), nullable=False)
    pairing_id = Column(String(64), nullable=True)
    event_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String, nullable=False, default="pending", server_default="pending")
    attempt_count = Column(Integer, nullable=False, default=0, server_default="0")
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_notification_outbox_status", "status", "created_at"),
    )
