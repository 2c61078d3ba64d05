from .base import Base
from .experiment import ExperimentORM, VariantORM
from .assignment import AssignmentORM, IdentityKind
from .event import SuccessEventORM

__all__ = [
    "Base",
    "ExperimentORM",
    "VariantORM",
    "AssignmentORM",
    "IdentityKind",
    "SuccessEventORM",
]
