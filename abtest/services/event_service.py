# services/event_service.py
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from abtest.models.orm.assignment import IdentityKind
from abtest.models.schemas.event import (
    SuccessEventCreateModel,
    SuccessEventModel,
    SuccessEventResponseModel,
)
from abtest.repositories.assignment_repo import AssignmentRepository
from abtest.repositories.event_repo import EventRepository
from abtest.repositories.experiment_repo import ExperimentRepository


class EventService:
    def __init__(self, db: Session):
        """Initializes the service with repositories it needs."""
        self.event_repo = EventRepository(db)
        self.experiment_repo = ExperimentRepository(db)
        # Success only counts for users already assigned to a variant
        self.assignment_repo = AssignmentRepository(db)

    def record_success(
        self, experiment_id: str, event_data: SuccessEventCreateModel
    ) -> SuccessEventResponseModel:
        """
        1. Checks the experiment exists.
        2. Checks the user holds an assignment in it.
        3. Records the event.
        """
        if self.experiment_repo.get_experiment_with_variants(experiment_id) is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Experiment not found",
            )

        assignment = self.assignment_repo.get_assignment(
            experiment_id, IdentityKind.USER, event_data.user_id
        )
        if assignment is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="User not found in experiment. User must be assigned to a variation first.",
            )

        recorded = self.event_repo.create_success_event(experiment_id, event_data)

        return SuccessEventResponseModel(
            success_event=SuccessEventModel(
                id=recorded.event_id,
                experiment_id=recorded.experiment_id,
                user_id=recorded.user_id,
                event=recorded.event,
                value=recorded.value,
                timestamp=recorded.timestamp,
            )
        )
