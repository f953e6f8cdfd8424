from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from controlai.core.config import settings
from controlai.models.base import Base


connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(env: Optional[str] = None) -> None:
    # Create tables in dev/test without running Alembic
    import controlai.models  # noqa: F401

    if (env or settings.env) in {"dev", "test"}:
        Base.metadata.create_all(bind=engine)
