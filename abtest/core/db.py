import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .settings import config_settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """
    Creates the assignment store engine for ``database_url``.

    SQLite connections are shared across FastAPI's worker threads, and an
    in-memory SQLite database is pinned to a single connection so every
    session sees the same tables.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True)

    options = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    return create_engine(url, **options)


engine = build_engine(config_settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = None) -> None:
    """Creates the experiment, variant, assignment and event tables if missing."""
    from abtest.models.orm import Base

    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info("Assignment store tables ready on %s", target.url.render_as_string(hide_password=True))


def get_db():
    """Request-scoped session; closed once the response is sent."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
