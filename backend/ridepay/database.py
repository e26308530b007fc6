# backend/ridepay/database.py
from datetime import datetime
import logging
from typing import Any, Dict

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_db_engine(database_url: str, *, application_name: str = "ridepay_backend") -> Engine:
    """
    Create the SQLAlchemy engine for the ledger store.

    Postgres gets a pooled engine; SQLite (local runs and tests) gets the
    settings it needs to be shared across threads.
    """
    kwargs: Dict[str, Any] = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        connect_args: Dict[str, Any] = {"check_same_thread": False, "timeout": 30}
        kwargs["connect_args"] = connect_args
        if ":memory:" in database_url or database_url in {"sqlite://", "sqlite:///"}:
            kwargs["poolclass"] = StaticPool
    else:
        kwargs.update(
            pool_size=20,  # Number of persistent connections
            max_overflow=10,  # Maximum overflow connections
            pool_timeout=30,  # Timeout for getting connection
            pool_recycle=3600,  # Recycle connections after 1 hour
            connect_args={"connect_timeout": 10, "application_name": application_name},
        )

    engine = create_engine(database_url, **kwargs)

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
        connection_record.info["connect_time"] = datetime.now()
        logger.debug("Database connection established")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def create_all_tables(engine: Engine) -> None:
    """Create every ledger table. Imports models so they register on Base."""
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
