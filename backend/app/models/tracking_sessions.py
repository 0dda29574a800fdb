from sqlalchemy import Column, DateTime, Index, Integer, String, UniqueConstraint

from app.core.db import Base
from app.models.mixins import TimestampMixin


# Newest non-null value wins on every pageview.
DEVICE_FIELDS = (
    "device_type",
    "browser",
    "os",
    "screen_width",
    "screen_height",
    "viewport_width",
    "viewport_height",
    "language",
)

# First non-null value ever recorded is kept.
ENTRY_FIELDS = (
    "entry_url",
    "entry_path",
    "entry_title",
    "referrer",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
)


class TrackingSession(TimestampMixin, Base):
    __tablename__ = "tracking_sessions"
    __table_args__ = (
        UniqueConstraint("session_id", name="uq_tracking_sessions_session_id"),
        Index("ix_tracking_sessions_last_activity_at", "last_activity_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(128), nullable=False)
    first_seen_at = Column(DateTime, nullable=False)
    last_activity_at = Column(DateTime, nullable=False)

    device_type = Column(String(16), nullable=True)
    browser = Column(String(32), nullable=True)
    os = Column(String(32), nullable=True)
    screen_width = Column(Integer, nullable=True)
    screen_height = Column(Integer, nullable=True)
    viewport_width = Column(Integer, nullable=True)
    viewport_height = Column(Integer, nullable=True)
    language = Column(String(32), nullable=True)

    entry_url = Column(String(2048), nullable=True)
    entry_path = Column(String(2048), nullable=True)
    entry_title = Column(String(512), nullable=True)
    referrer = Column(String(2048), nullable=True)
    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)
    utm_term = Column(String(255), nullable=True)
    utm_content = Column(String(255), nullable=True)
