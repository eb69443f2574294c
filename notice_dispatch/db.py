import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from notice_dispatch.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str):
    """Create an engine with dialect-aware configuration."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},  # Required for SQLite
            echo=False
        )
    # PostgreSQL
    return create_engine(
        database_url,
        pool_pre_ping=True,
        echo=False
    )


engine = build_engine(settings.database_url)

# Log database dialect for debugging
logger.info(f"Database engine created: dialect={engine.dialect.name}, url={settings.database_url.split('@')[-1] if '@' in settings.database_url else 'local'}")

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

class Base(DeclarativeBase):
    pass

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
