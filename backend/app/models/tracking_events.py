from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Float,
    Index,
    Integer,
    String,
)

from app.core.db import Base
from app.models.mixins import CreatedAtMixin


class TrackingEvent(CreatedAtMixin, Base):
    """Append-only interaction record.

    ``timestamp`` is the client clock in epoch millis and is the only field
    that orders events within a session. Events may be stored before the
    pageview that creates their session, so ``session_id`` carries no foreign key.
    """

    __tablename__ = "tracking_events"
    __table_args__ = (
        Index("ix_tracking_events_session_timestamp", "session_id", "timestamp"),
        Index(
            "ix_tracking_events_funnel_type_session_timestamp",
            "funnel_id",
            "event_type",
            "session_id",
            "timestamp",
        ),
        Index("ix_tracking_events_path_type", "path", "event_type"),
    )

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        index=True,
        autoincrement=True,
    )
    session_id = Column(String(128), nullable=False)
    event_type = Column(String(32), nullable=False)
    timestamp = Column(BigInteger, nullable=False)

    url = Column(String(2048), nullable=True)
    path = Column(String(2048), nullable=True)
    title = Column(String(512), nullable=True)

    click_x = Column(Integer, nullable=True)
    click_y = Column(Integer, nullable=True)
    element_tag = Column(String(64), nullable=True)
    element_id = Column(String(255), nullable=True)
    element_class = Column(String(255), nullable=True)
    element_text = Column(String(200), nullable=True)
    is_cta_click = Column(Boolean, nullable=True)
    click_count = Column(Integer, nullable=True)

    scroll_depth = Column(Integer, nullable=True)
    scroll_percentage = Column(Float, nullable=True)
    max_scroll_depth = Column(Float, nullable=True)

    mouse_x = Column(Integer, nullable=True)
    mouse_y = Column(Integer, nullable=True)
    movement_speed = Column(Float, nullable=True)

    form_id = Column(String(255), nullable=True)
    form_name = Column(String(255), nullable=True)
    field_name = Column(String(255), nullable=True)
    field_type = Column(String(64), nullable=True)
    form_action = Column(String(64), nullable=True)

    funnel_id = Column(String(64), nullable=True)
    funnel_step_name = Column(String(255), nullable=True)
    step_order = Column(Integer, nullable=True)

    time_on_page = Column(Integer, nullable=True)
    engaged = Column(Boolean, nullable=True)

    device_type = Column(String(16), nullable=True)
    browser = Column(String(32), nullable=True)
    os = Column(String(32), nullable=True)
