from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from contextlib import contextmanager
from typing import Generator
import logging
import redis
from .config import settings
from .exceptions import UnavailableError

logger = logging.getLogger(__name__)

def build_engine(database_url: str):
    """Create an engine with pool settings suited to the backend."""
    if database_url.startswith("sqlite"):
        # SQLite connections are shared between request threads
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_pre_ping=True,
    )

engine = build_engine(settings.get_database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

_redis_client = None

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def persistence_guard(db: Session, action: str):
    """Roll back and report storage outages as a retryable UnavailableError.

    Constraint violations are left to the caller, which knows what they mean.
    """
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as e:
        db.rollback()
        logger.error(f"Storage unavailable while trying to {action}: {str(e)}")
        raise UnavailableError() from e

# Redis dependency
def get_redis():
    """Get Redis client, connecting lazily on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client

# Database initialization
def init_db():
    """Initialize database tables."""
    # Import models so they register with the metadata
    from ..models import appointment, availability, user  # noqa: F401

    Base.metadata.create_all(bind=engine)
