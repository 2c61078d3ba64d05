# repositories/assignment_repo.py
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from abtest.models.orm.assignment import AssignmentORM, IdentityKind
from abtest.models.orm.base import utcnow

logger = logging.getLogger(__name__)


class AssignmentExistsError(ValueError):
    """An assignment for this (experiment, identity) was already stored."""


class AssignmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_assignment(
        self, experiment_id: str, kind: IdentityKind, value: str
    ) -> Optional[AssignmentORM]:
        """Retrieves the persistent assignment for one visitor in one experiment."""
        stmt = select(AssignmentORM).where(
            AssignmentORM.experiment_id == experiment_id,
            AssignmentORM.identity_kind == kind,
            AssignmentORM.identity_value == value,
        )
        return self.db.scalars(stmt).one_or_none()

    def create_assignment(
        self, experiment_id: str, kind: IdentityKind, value: str, variant_id: str
    ) -> AssignmentORM:
        """
        Creates a new assignment record.

        The primary key on (experiment, identity) rejects a second row, so a
        writer that lost a race gets AssignmentExistsError rather than a
        duplicate.
        """
        db_assignment = AssignmentORM(
            experiment_id=experiment_id,
            identity_kind=kind,
            identity_value=value,
            variant_id=variant_id,
            assignment_timestamp=utcnow(),
        )
        try:
            self.db.add(db_assignment)
            self.db.commit()
            self.db.refresh(db_assignment)

            return db_assignment

        except IntegrityError:
            key = db_assignment.primary_key()
            self.db.rollback()
            logger.info("Assignment %s already stored, keeping the first write", key)
            raise AssignmentExistsError(
                "Assignment already exists for this visitor and experiment."
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Exception occurred creating assignment: %s", e)
            raise RuntimeError("Exception occurred during assignment creation")
