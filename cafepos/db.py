from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .core.config import settings

# declarative base shared by every model
Base = declarative_base()

SQLALCHEMY_DATABASE_URL = settings.database_url
_IS_SQLITE = SQLALCHEMY_DATABASE_URL.startswith("sqlite")

if SQLALCHEMY_DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
    # in-memory database shared by every session
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
elif _IS_SQLITE:
    # high busy timeout: several registers may write at once
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False, "timeout": 60},
        pool_pre_ping=True,
    )
else:
    engine = create_engine(SQLALCHEMY_DATABASE_URL, pool_pre_ping=True)


if _IS_SQLITE:

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):
        cur = dbapi_conn.cursor()
        try:
            cur.execute("PRAGMA busy_timeout=60000;")
            cur.execute("PRAGMA foreign_keys=ON;")
        finally:
            cur.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    # import models before create_all
    from .models import customer, order, shift, table  # noqa: F401

    Base.metadata.create_all(bind=engine)


# FastAPI dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
