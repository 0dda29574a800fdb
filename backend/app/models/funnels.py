from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.core.db import Base
from app.models.mixins import TimestampMixin


def _funnel_id() -> str:
    return f"funnel_{uuid4().hex}"


class Funnel(TimestampMixin, Base):
    __tablename__ = "funnels"

    id = Column(String(64), primary_key=True, default=_funnel_id)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    # Cache written only by the persisted funnel stats refresh.
    conversion_rate = Column(Float, nullable=False, default=0.0)
    stats_refreshed_at = Column(DateTime, nullable=True)

    steps = relationship(
        "FunnelStep",
        back_populates="funnel",
        order_by="FunnelStep.step_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class FunnelStep(Base):
    __tablename__ = "funnel_steps"
    __table_args__ = (
        UniqueConstraint("funnel_id", "step_order", name="uq_funnel_steps_funnel_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    funnel_id = Column(
        String(64),
        ForeignKey("funnels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    url = Column(String(2048), nullable=True)
    step_order = Column(Integer, nullable=False)
    # Cache fields, same single writer as Funnel.conversion_rate.
    visitors = Column(Integer, nullable=False, default=0)
    dropoff = Column(Float, nullable=False, default=0.0)

    funnel = relationship("Funnel", back_populates="steps")
