from datetime import datetime, timezone

from sqlalchemy import JSON, inspect
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests)
JSON_TYPE = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StoreBase:
    """Shared behaviour for assignment store rows."""

    def primary_key(self) -> tuple:
        """Primary key values in column order, e.g. an assignment's identity triple."""
        mapper = inspect(type(self))
        return tuple(
            getattr(self, mapper.get_property_by_column(column).key)
            for column in mapper.primary_key
        )

    def __repr__(self) -> str:
        # Key columns only; assignment rows are identified by their composite key
        mapper = inspect(type(self))
        keys = ", ".join(
            f"{prop.key}={getattr(self, prop.key)!r}"
            for prop in (mapper.get_property_by_column(c) for c in mapper.primary_key)
        )
        return f"<{type(self).__name__} {keys}>"


Base = declarative_base(cls=StoreBase)
