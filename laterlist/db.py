import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker


DB_PATH = os.environ.get(
    "LATERLIST_DB",
    os.path.join(os.path.dirname(__file__), "..", "laterlist.sqlite3"),
)
# A full SQLAlchemy URL is used as is; anything else is a SQLite file path.
DB_URL = DB_PATH if "://" in DB_PATH else f"sqlite:///{os.path.abspath(DB_PATH)}"

engine = create_engine(
    DB_URL,
    connect_args={"check_same_thread": False} if DB_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def init_db(drop: bool = False) -> None:
    """Create the store table; ``drop=True`` starts over from an empty store."""
    from . import models  # noqa: F401  registers StoreEntry on Base

    if drop:
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def get_session():
    """Request-scoped session: commit when the route returns, roll back if it raises."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
