from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import CamelModel


class SuccessEventCreateModel(CamelModel):
    """Schema for tracking a success event (API Input)."""

    user_id: str
    event: str = Field(..., description="e.g., 'click', 'purchase', 'signup'")
    value: Optional[float] = None


class SuccessEventModel(CamelModel):
    id: str
    experiment_id: str
    user_id: str
    event: str
    value: Optional[float] = None
    timestamp: datetime


class SuccessEventResponseModel(CamelModel):
    message: str = "Success event tracked"
    success_event: SuccessEventModel
