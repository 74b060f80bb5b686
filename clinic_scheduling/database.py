import logging

from sqlmodel import SQLModel, create_engine, Session

from .core.config import settings
from .db import models  # noqa: F401  registers the tables on SQLModel.metadata

logger = logging.getLogger(__name__)


def engine_options(db_url: str) -> dict:
    if db_url.startswith("sqlite"):
        # request handlers run in a threadpool
        return {"connect_args": {"check_same_thread": False}}
    # managed Postgres drops idle connections
    return {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": 5,
        "max_overflow": 10,
    }


engine = create_engine(settings.DATABASE_URL, echo=settings.DEBUG, **engine_options(settings.DATABASE_URL))


def create_db_and_tables():
    SQLModel.metadata.create_all(engine)
    logger.info(f"Database tables ensured ({', '.join(sorted(SQLModel.metadata.tables))})")


def get_session():
    with Session(engine) as session:
        yield session
