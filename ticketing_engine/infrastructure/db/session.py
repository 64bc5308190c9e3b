# ticketing_engine/infrastructure/db/session.py

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from ticketing_engine.config import get_settings


DATABASE_URL = get_settings().database_url


def _engine_options(url: str) -> dict:
    options = {"echo": False, "future": True, "pool_pre_ping": True}
    if make_url(url).get_backend_name() == "sqlite":
        # FastAPI runs sync endpoints on a threadpool.
        options["connect_args"] = {"check_same_thread": False}
    return options


engine: Engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))


class Base(DeclarativeBase):
    pass


# Services keep using returned rows after they commit.
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)


@contextmanager
def get_db_session():
    """Transactional scope for scripts and operator jobs."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
