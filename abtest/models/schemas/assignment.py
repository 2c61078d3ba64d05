from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import CamelModel


class AssignmentRecord(CamelModel):
    """One persisted assignment, as returned by the variation lookup."""

    experiment: str
    variation: str
    timestamp: datetime


class AssignmentWriteModel(CamelModel):
    """Body of POST /internal/experiments/{id}/variation."""

    experiment_id: Optional[str] = None
    variation: str = Field(..., description="Name of the variant to persist.")


class AssignmentCreatedModel(AssignmentRecord):
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class AssignmentExistsModel(CamelModel):
    message: str = "already exists"
