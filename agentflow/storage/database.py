"""Database connection and session management."""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for all database models
Base = declarative_base()


class Database:
    """Owns one SQLAlchemy engine and its session factory."""

    def __init__(self, database_url: str = "sqlite:///./agentflow.db", echo: bool = False,
                 connect_args: Optional[dict] = None):
        self.database_url = database_url

        if connect_args is None:
            if database_url.startswith("sqlite"):
                connect_args = {"check_same_thread": False}
            else:
                connect_args = {}

        if database_url.startswith("sqlite"):
            self.engine: Engine = create_engine(
                database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
                echo=echo
            )
        else:
            self.engine = create_engine(
                database_url,
                echo=echo,
                connect_args=connect_args
            )

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session scope that commits on success and rolls back on error."""
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def create_tables(self) -> None:
        """Create all database tables."""
        from . import models  # noqa: F401  registers the tables on Base
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables."""
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()
