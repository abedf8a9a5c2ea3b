import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings

logger = logging.getLogger(__name__)


def resolve_database_url() -> str:
    """
    Resolve the database URL.

    DATABASE_URL wins; otherwise the PG* variables are assembled into a
    PostgreSQL URL; development falls back to SQLite.
    """
    database_url = settings.database_url

    if not os.environ.get("DATABASE_URL"):
        pg_host = os.environ.get("PGHOST")
        pg_port = os.environ.get("PGPORT", "5432")
        pg_user = os.environ.get("PGUSER") or os.environ.get("POSTGRES_USER")
        pg_password = os.environ.get("PGPASSWORD") or os.environ.get("POSTGRES_PASSWORD")
        pg_database = os.environ.get("PGDATABASE") or os.environ.get("POSTGRES_DB")

        if pg_host and pg_user and pg_password and pg_database:
            database_url = f"postgresql://{pg_user}:{pg_password}@{pg_host}:{pg_port}/{pg_database}"

    # Hosted Postgres often hands out postgres://, SQLAlchemy needs postgresql://
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    if settings.is_production and database_url.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point to PostgreSQL in production")

    return database_url


database_url = resolve_database_url()

# Handle SQLite special case for check_same_thread
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(
    database_url,
    connect_args=connect_args,
    echo=settings.log_level.upper() == "DEBUG",
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Create all tables in the database"""
    from . import models  # noqa: F401  (register mappers)

    Base.metadata.create_all(bind=engine)
    logger.info(f"Database ready: {database_url.split('@')[-1][:40]}")
