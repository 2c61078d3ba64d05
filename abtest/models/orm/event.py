from sqlalchemy import (
    Column,
    String,
    Float,
    ForeignKey,
    DateTime,
    Index,
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class SuccessEventORM(Base):
    __tablename__ = "success_events"

    event_id = Column(String, primary_key=True)

    experiment_id = Column(
        String, ForeignKey("experiments.experiment_id"), nullable=False
    )

    user_id = Column(String, nullable=False)

    # e.g. 'button_click', 'conversion', 'custom_event'
    event = Column(String, nullable=False)

    value = Column(Float, nullable=True)

    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("ix_success_events_experiment_user", "experiment_id", "user_id"),
        Index("ix_success_events_experiment_event", "experiment_id", "event"),
    )

    experiment = relationship("ExperimentORM")
