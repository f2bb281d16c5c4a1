from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.engine.url import make_url

from app.core.settings import settings

SQLALCHEMY_DATABASE_URL = settings.database_url


def build_engine(database_url: str):
    connect_args: dict = {}
    if database_url.startswith("sqlite"):
        # Concurrent ledger writers wait on sqlite's write lock instead of failing fast.
        connect_args = {"check_same_thread": False, "timeout": 15}
    else:
        try:
            url = make_url(database_url)
            if (url.drivername or "").startswith("postgresql") and settings.is_production:
                connect_args = {"sslmode": "require"}
        except Exception:
            connect_args = {}

    return create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)


engine = build_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
