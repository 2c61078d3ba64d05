import enum

from sqlalchemy import (
    Column,
    String,
    ForeignKey,
    DateTime,
    Enum,
    PrimaryKeyConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class IdentityKind(enum.Enum):
    USER = "user"
    SESSION = "session"


class AssignmentORM(Base):
    __tablename__ = "assignments"

    experiment_id = Column(
        String, ForeignKey("experiments.experiment_id"), nullable=False, index=True
    )
    identity_kind = Column(Enum(IdentityKind), nullable=False)
    identity_value = Column(String, nullable=False, index=True)
    variant_id = Column(String, ForeignKey("variants.variant_id"), nullable=False)

    assignment_timestamp = Column(DateTime, default=utcnow, nullable=False)

    # At most one assignment per (experiment, visitor identity)
    __table_args__ = (
        PrimaryKeyConstraint(
            "experiment_id", "identity_kind", "identity_value", name="assignment_pk"
        ),
    )

    variant = relationship("VariantORM")

    experiment = relationship("ExperimentORM")
