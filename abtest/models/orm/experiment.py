from sqlalchemy import (
    Column,
    String,
    Float,
    Boolean,
    ForeignKey,
    DateTime,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base, JSON_TYPE, utcnow


# --- Experiment Model ---
class ExperimentORM(Base):
    __tablename__ = "experiments"

    # --- Core Identifiers ---
    experiment_id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    version = Column(String, nullable=True)

    # --- Activity Window ---
    # Either bound may be open; both open means always live.
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    # Manual kill switch, combined with the window when serving descriptors
    is_active = Column(Boolean, default=True, nullable=False)

    # {"type": "click" | "conversion" | "custom", "target": ..., "value": ...}
    success_metric = Column(JSON_TYPE, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # One Experiment has Many Variants, kept in configured order
    variants = relationship(
        "VariantORM",
        back_populates="experiment",
        order_by="VariantORM.position",
        cascade="all, delete-orphan",
    )


# --- Variant Model ---
class VariantORM(Base):
    __tablename__ = "variants"

    variant_id = Column(String, primary_key=True)
    experiment_id = Column(
        String, ForeignKey("experiments.experiment_id"), nullable=False, index=True
    )
    name = Column(String, nullable=False)
    weight = Column(Float, nullable=False, default=1.0)
    is_baseline = Column(Boolean, default=False, nullable=False)
    # Sampling walks variants in this order
    position = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("experiment_id", "name", name="variant_name_per_experiment"),
    )

    experiment = relationship("ExperimentORM", back_populates="variants")
