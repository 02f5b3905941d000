from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from examprep.core.config import Settings
from examprep.models.orm import Base

def build_engine(settings: Settings) -> Engine:
    if settings.is_sqlite():
        kwargs = {"connect_args": {"check_same_thread": False}}
        if settings.DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO, future=True, **kwargs)
    return create_engine(
        settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO,
        future=True,
        pool_pre_ping=True,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=settings.DATABASE_POOL_TIMEOUT,
    )

def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, future=True)

def init_db(engine: Engine) -> None:
    """Create tables if they don't exist. Production deployments migrate instead."""
    Base.metadata.create_all(engine)
