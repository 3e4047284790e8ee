from contextlib import contextmanager

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Load .env file (DATABASE_URL may live there)
load_dotenv()

Base = declarative_base()


def create_session_factory(database_url: str, echo: bool = False) -> sessionmaker:
    """
    Build an engine and session factory for the given URL.

    In-memory SQLite gets a single shared connection so every session sees the
    same database.
    """
    kwargs: dict = {"future": True, "echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True, expire_on_commit=False)


def _default_url() -> str:
    from prunarr.config import get_settings

    return get_settings().DATABASE_URL


# SQLAlchemy engine & session factory
SessionLocal = create_session_factory(_default_url())
engine = SessionLocal.kw["bind"]


def init_db(session_factory: sessionmaker | None = None) -> None:
    """
    Import models and create tables if they don't exist.
    """
    from prunarr import models  # noqa: F401

    bind = (session_factory or SessionLocal).kw["bind"]
    Base.metadata.create_all(bind=bind)


@contextmanager
def session_scope(session_factory: sessionmaker | None = None):
    """
    Provide a transactional scope: commit on success, roll back on error.
    """
    db: Session = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
