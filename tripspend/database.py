from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

Base = declarative_base()


def make_engine(database_url: str, **kwargs) -> Engine:
    return create_engine(database_url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_schema(engine: Engine) -> None:
    # Importing models registers the tables on Base.metadata
    from tripspend import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Run ledger operations as one transaction.

    Commits when the block exits cleanly; on any exception the whole
    transaction is rolled back and the exception propagates unchanged.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
