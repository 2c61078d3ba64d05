import logging
import uuid

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from abtest.models.orm.base import utcnow
from abtest.models.orm.event import SuccessEventORM
from abtest.models.schemas.event import SuccessEventCreateModel

logger = logging.getLogger(__name__)


class EventRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def create_success_event(
        self, experiment_id: str, event_data: SuccessEventCreateModel
    ) -> SuccessEventORM:
        """
        Creates a new success event record.

        Args:
            experiment_id: The experiment the event counts towards.
            event_data: The Pydantic model containing event details.

        Returns:
            The created SuccessEventORM object.
        """
        db_event = SuccessEventORM(
            event_id=str(uuid.uuid4()),
            experiment_id=experiment_id,
            user_id=event_data.user_id,
            event=event_data.event,
            value=event_data.value,
            timestamp=utcnow(),
        )
        try:
            self.db.add(db_event)
            self.db.commit()
            self.db.refresh(db_event)

        except IntegrityError as e:
            self.db.rollback()
            logger.warning("Database Integrity Error during event creation: %s", e)

            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid event data: {str(e).splitlines()[0]}",
            )

        except OperationalError as e:
            self.db.rollback()
            logger.error("Database Operational Error: %s", e)

            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Database connection failed. Please try again shortly.",
            )

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Unexpected SQLAlchemy Error: %s", e)

            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="An unexpected database error occurred.",
            )

        return db_event
