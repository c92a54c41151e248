import logging
import time
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from voxport.config import get_settings
from voxport.models.base import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create a sync engine; SQLite URLs skip the server pool options."""
    if database_url.startswith("sqlite"):
        # Writers wait on the file lock instead of failing fast
        return create_engine(
            database_url, echo=echo, future=True, connect_args={"timeout": 30}
        )
    return create_engine(
        database_url,
        echo=echo,
        future=True,
        pool_size=5,
        max_overflow=0,
        pool_pre_ping=True,  # Check connection health before use
        pool_recycle=1800,
        pool_timeout=30,
    )


def create_session_maker(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, class_=Session, expire_on_commit=False)


_engine: Engine | None = None
_session_maker: sessionmaker[Session] | None = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_db_engine(settings.database_url, settings.database_echo)
    return _engine


def get_session_maker() -> sessionmaker[Session]:
    global _session_maker
    if _session_maker is None:
        _session_maker = create_session_maker(get_engine())
    return _session_maker


def init_db(engine: Engine | None = None, max_retries: int = 5) -> None:
    """Create tables, retrying while the database comes up."""
    engine = engine or get_engine()
    retry_delay = 2  # seconds

    for attempt in range(max_retries):
        try:
            Base.metadata.create_all(engine)
            return
        except OperationalError as e:
            if attempt < max_retries - 1:
                logger.warning(
                    f"DB connection attempt {attempt + 1}/{max_retries} failed: {e}. "
                    f"Retrying in {retry_delay} seconds..."
                )
                time.sleep(retry_delay)
                retry_delay *= 2  # Exponential backoff
            else:
                logger.error(f"Failed to connect to database after {max_retries} attempts")
                raise


@contextmanager
def get_sync_db(
    session_maker: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Get a synchronous database session for worker code."""
    session = (session_maker or get_session_maker())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
