# services/experiment_service.py
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from abtest.engine.activity import is_within_window
from abtest.models.orm.experiment import ExperimentORM
from abtest.models.schemas.experiment import (
    Experiment,
    ExperimentCreateModel,
    SuccessMetric,
    Variant,
)
from abtest.repositories.experiment_repo import ExperimentRepository

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()


class ExperimentService:
    def __init__(self, db: Session):
        self.experiment_repo = ExperimentRepository(db)
        self.db = db

    def to_descriptor(self, experiment_orm: ExperimentORM) -> Experiment:
        """Builds the wire descriptor, folding the activity window into isActive."""
        start_date = _iso(experiment_orm.start_date)
        end_date = _iso(experiment_orm.end_date)
        is_active = bool(experiment_orm.is_active) and is_within_window(
            start_date, end_date, experiment_id=experiment_orm.experiment_id
        )
        return Experiment(
            id=experiment_orm.experiment_id,
            name=experiment_orm.name,
            description=experiment_orm.description,
            version=experiment_orm.version,
            start_date=start_date,
            end_date=end_date,
            is_active=is_active,
            variants=[
                Variant(name=v.name, weight=v.weight, is_baseline=bool(v.is_baseline))
                for v in experiment_orm.variants
            ],
            success_metric=(
                SuccessMetric.model_validate(experiment_orm.success_metric)
                if experiment_orm.success_metric
                else None
            ),
        )

    def create_experiment(self, experiment_data: ExperimentCreateModel) -> Experiment:
        """
        Creates an experiment with its variants.

        Weight and naming rules are enforced by the repository; violations
        come back as 400.
        """
        try:
            experiment_orm = self.experiment_repo.create_experiment(experiment_data)
        except ValueError as e:
            logger.warning("Rejected experiment %r: %s", experiment_data.name, e)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except RuntimeError as e:
            logger.error("Failed to create experiment %r: %s", experiment_data.name, e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to create experiment",
            )

        logger.info("Created experiment %s (%s)", experiment_orm.experiment_id, experiment_orm.name)
        return self.to_descriptor(experiment_orm)

    def get_experiment(self, experiment_id: str) -> Experiment:
        experiment_orm = self.experiment_repo.get_experiment_with_variants(experiment_id)
        if not experiment_orm:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Experiment {experiment_id} not found.",
            )
        return self.to_descriptor(experiment_orm)
