import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from abtest.models.orm.experiment import ExperimentORM, VariantORM
from abtest.models.schemas.experiment import ExperimentCreateModel

WEIGHT_TOLERANCE = 1e-4


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class ExperimentRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def create_experiment(self, experiment_data: ExperimentCreateModel) -> ExperimentORM:
        """
        Creates an experiment and its variants in one transaction.

        Raises ValueError when there are no variants, when variant names
        repeat, or when the weights do not sum to 1.0.
        """
        if not experiment_data.variants:
            raise ValueError("An experiment needs at least one variation.")

        names = [v.name for v in experiment_data.variants]
        if len(names) != len(set(names)):
            raise ValueError("Variation names must be unique within an experiment.")

        total_weight = sum(v.weight for v in experiment_data.variants)
        if abs(total_weight - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(
                f"Variation weights must sum to 100% (1.0). Got: {total_weight}"
            )

        try:

            with self.db.begin():

                experiment_id = str(uuid.uuid4())

                experiment_data_dict = experiment_data.model_dump(
                    exclude={"variants", "success_metric"}, exclude_unset=True
                )
                experiment_data_dict["experiment_id"] = experiment_id
                for key in ("start_date", "end_date"):
                    if experiment_data_dict.get(key) is not None:
                        experiment_data_dict[key] = to_naive_utc(experiment_data_dict[key])
                if experiment_data.success_metric is not None:
                    experiment_data_dict["success_metric"] = (
                        experiment_data.success_metric.model_dump(exclude_none=True)
                    )

                db_experiment = ExperimentORM(**experiment_data_dict)
                self.db.add(db_experiment)

                for position, variant_data in enumerate(experiment_data.variants):
                    self.db.add(
                        VariantORM(
                            variant_id=str(uuid.uuid4()),
                            experiment_id=experiment_id,
                            name=variant_data.name,
                            weight=variant_data.weight,
                            is_baseline=variant_data.is_baseline,
                            position=position,
                        )
                    )

            self.db.refresh(db_experiment)

            return db_experiment

        except IntegrityError as e:
            raise ValueError(f"Database integrity error (e.g., duplicate name): {e}")

        except SQLAlchemyError as e:
            raise RuntimeError(
                f"A database error occurred during experiment creation: {e}"
            )

    def get_experiment_with_variants(self, experiment_id: str) -> ExperimentORM | None:
        """
        Fetches a single Experiment by experiment_id and eagerly loads all
        associated VariantORM objects in a single query.
        """
        stmt = select(ExperimentORM).where(ExperimentORM.experiment_id == experiment_id)

        # joinedload avoids one extra query per variant
        stmt = stmt.options(joinedload(ExperimentORM.variants))

        return self.db.scalars(stmt).unique().one_or_none()

    def get_variant_by_name(self, experiment_id: str, name: str) -> VariantORM | None:
        stmt = select(VariantORM).where(
            VariantORM.experiment_id == experiment_id, VariantORM.name == name
        )
        return self.db.scalars(stmt).one_or_none()
