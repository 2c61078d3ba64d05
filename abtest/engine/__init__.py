"""Client-side experiment assignment engine."""
from .client import PersistenceClient, WriteOutcome
from .config import EngineConfig
from .errors import CacheError, EngineError, NetworkError, NoBaselineError, ValidationError
from .identity import ANONYMOUS, VisitorIdentity
from .resolver import AssignmentResolver, Resolution, Source
from .sampling import pick_weighted_variant
from .state import AssignmentState, AssignmentStateMachine, Phase
from .storage import ClientCache, JsonFileStore, MemoryCookieStore, MemoryDurableStore

__all__ = [
    "ANONYMOUS",
    "AssignmentResolver",
    "AssignmentState",
    "AssignmentStateMachine",
    "CacheError",
    "ClientCache",
    "EngineConfig",
    "EngineError",
    "JsonFileStore",
    "MemoryCookieStore",
    "MemoryDurableStore",
    "NetworkError",
    "NoBaselineError",
    "PersistenceClient",
    "Phase",
    "Resolution",
    "Source",
    "ValidationError",
    "VisitorIdentity",
    "WriteOutcome",
    "pick_weighted_variant",
]
