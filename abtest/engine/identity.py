from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class VisitorIdentity:
    """Who an assignment belongs to.

    ``user_id`` is durable and follows the visitor across devices,
    ``session_id`` is local to one device. At most one may be set; an
    identity with neither is anonymous and never reaches the backend.
    """

    user_id: Optional[str] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        if self.user_id and self.session_id:
            raise ValueError("Supply either user_id or session_id, not both.")

    @property
    def is_anonymous(self) -> bool:
        return not (self.user_id or self.session_id)

    def as_params(self) -> Dict[str, str]:
        """Query parameters understood by the variation endpoints."""
        if self.user_id:
            return {"userId": self.user_id}
        if self.session_id:
            return {"sessionId": self.session_id}
        return {}


ANONYMOUS = VisitorIdentity()
