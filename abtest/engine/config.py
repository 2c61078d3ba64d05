import logging
import random
from typing import Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .identity import VisitorIdentity

ENGINE_LOGGER = "abtest.engine"


class EngineConfig(BaseModel):
    """Settings a caller hands to the assignment engine."""

    model_config = ConfigDict(frozen=True)

    api_url: str = Field(..., description="Base API URL, e.g. http://localhost:8000/api")
    api_key: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    timeout_ms: int = Field(default=5000, gt=0)
    # Served when resolution fails; errors surface when unset
    fallback: Optional[str] = None
    # Served for inactive experiments without a baseline variant
    default_variant: Optional[str] = "control"
    random_fn: Callable[[], float] = Field(default=random.random, exclude=True)
    debug: bool = False
    custom_headers: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _single_identity(self):
        if self.user_id and self.session_id:
            raise ValueError("Supply either user_id or session_id, not both.")
        return self

    @property
    def identity(self) -> VisitorIdentity:
        return VisitorIdentity(user_id=self.user_id, session_id=self.session_id)

    @property
    def inactive_variant(self) -> Optional[str]:
        return self.fallback or self.default_variant

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    def apply_logging(self) -> None:
        """
        Sets the ``abtest.engine`` logger from ``debug``: DEBUG when on,
        otherwise back to NOTSET so the level is inherited again.
        """
        level = logging.DEBUG if self.debug else logging.NOTSET
        logging.getLogger(ENGINE_LOGGER).setLevel(level)
