from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from .base import CamelModel


class SuccessMetric(CamelModel):
    """Describes what counts as success for an experiment."""

    type: Literal["click", "conversion", "custom"]
    target: Optional[str] = None
    value: Optional[str] = None


class Variant(CamelModel):
    """One arm of an experiment."""

    name: str
    weight: float = Field(
        ...,
        ge=0.0,
        le=1.0,
        description="Share of traffic sampled into this variant.",
    )
    is_baseline: bool = False


class Experiment(CamelModel):
    """Experiment descriptor as served by GET /experiments/{id}.

    Dates stay ISO-8601 strings so that the activity check can tell a
    malformed value apart from a missing one.
    """

    id: str
    name: str
    variants: List[Variant] = Field(default_factory=list, alias="variations")
    description: Optional[str] = None
    version: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_active: Optional[bool] = None
    success_metric: Optional[SuccessMetric] = None


class ExperimentCreateModel(CamelModel):
    """Payload for POST /experiments."""

    name: str
    description: Optional[str] = None
    version: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    variants: List[Variant] = Field(..., alias="variations")
    success_metric: Optional[SuccessMetric] = None
