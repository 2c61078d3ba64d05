# services/assignment_service.py
import logging
from typing import List, Optional, Tuple, Union

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from abtest.models.orm.assignment import AssignmentORM, IdentityKind
from abtest.models.schemas.assignment import (
    AssignmentCreatedModel,
    AssignmentExistsModel,
    AssignmentRecord,
    AssignmentWriteModel,
)
from abtest.repositories.assignment_repo import AssignmentExistsError, AssignmentRepository
from abtest.repositories.experiment_repo import ExperimentRepository

logger = logging.getLogger(__name__)


def identity_from_query(
    user_id: Optional[str], session_id: Optional[str]
) -> Tuple[IdentityKind, str]:
    """Exactly one of userId / sessionId must be supplied."""
    if user_id and session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Supply either userId or sessionId, not both.",
        )
    if user_id:
        return IdentityKind.USER, user_id
    if session_id:
        return IdentityKind.SESSION, session_id
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="userId or sessionId is required.",
    )


class AssignmentService:
    """First-write-wins store of (experiment, visitor) -> variant."""

    def __init__(self, db: Session):
        self.assignment_repo = AssignmentRepository(db)
        self.experiment_repo = ExperimentRepository(db)
        self.db = db

    @staticmethod
    def _to_record(assignment: AssignmentORM) -> AssignmentRecord:
        return AssignmentRecord(
            experiment=assignment.experiment_id,
            variation=assignment.variant.name,
            timestamp=assignment.assignment_timestamp,
        )

    def get_assignment(
        self, experiment_id: str, user_id: Optional[str], session_id: Optional[str]
    ) -> List[AssignmentRecord]:
        """Zero or one stored assignments for this visitor."""
        kind, value = identity_from_query(user_id, session_id)
        existing = self.assignment_repo.get_assignment(experiment_id, kind, value)
        if existing is None:
            return []
        return [self._to_record(existing)]

    def persist_assignment(
        self,
        experiment_id: str,
        user_id: Optional[str],
        session_id: Optional[str],
        payload: AssignmentWriteModel,
    ) -> Union[AssignmentCreatedModel, AssignmentExistsModel]:
        """
        Stores the visitor's variant unless one is already stored.

        1. Check for an existing assignment and acknowledge it unchanged.
        2. Otherwise insert; a concurrent insert that beats this one is
           rejected by the primary key and acknowledged the same way.
        """
        kind, value = identity_from_query(user_id, session_id)

        if payload.experiment_id and payload.experiment_id != experiment_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="experimentId in body does not match the path.",
            )

        variant = self.experiment_repo.get_variant_by_name(experiment_id, payload.variation)
        if variant is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Variation not found",
            )

        existing = self.assignment_repo.get_assignment(experiment_id, kind, value)
        if existing is not None:
            logger.info(
                "%s %s already assigned to %s in experiment %s",
                kind.value,
                value,
                existing.variant_id,
                experiment_id,
            )
            return AssignmentExistsModel()

        try:
            created = self.assignment_repo.create_assignment(
                experiment_id=experiment_id,
                kind=kind,
                value=value,
                variant_id=variant.variant_id,
            )
        except AssignmentExistsError:
            logger.info(
                "Concurrent assignment for %s %s in experiment %s kept the first write",
                kind.value,
                value,
                experiment_id,
            )
            return AssignmentExistsModel()
        except RuntimeError as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=str(e),
            )

        logger.info(
            "Assigned %s %s to %s in experiment %s",
            kind.value,
            value,
            payload.variation,
            experiment_id,
        )
        return AssignmentCreatedModel(
            experiment=created.experiment_id,
            variation=payload.variation,
            timestamp=created.assignment_timestamp,
            user_id=value if kind is IdentityKind.USER else None,
            session_id=value if kind is IdentityKind.SESSION else None,
        )
