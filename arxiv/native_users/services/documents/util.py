"""Engine and transaction helpers for the document store."""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.session import Session
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

IN_MEMORY = ('sqlite://', 'sqlite:///:memory:')


def get_engine(database_uri: str) -> Engine:
    """
    Create an engine for ``database_uri``.

    SQLite connections are shared with the worker threads of the store; an
    in-memory database is kept on a single connection so that every thread
    sees the same data.
    """
    if database_uri.startswith('sqlite'):
        if database_uri in IN_MEMORY:
            return create_engine(database_uri, poolclass=StaticPool,
                                 connect_args={'check_same_thread': False})
        return create_engine(database_uri,
                             connect_args={'check_same_thread': False})
    return create_engine(database_uri, pool_pre_ping=True)


@contextmanager
def transaction(sessions: sessionmaker) -> Generator[Session, None, None]:
    """Context manager for a database transaction."""
    session = sessions()
    try:
        yield session
        session.commit()
    except Exception as e:
        logger.debug('Transaction failed, rolling back: %s', str(e))
        session.rollback()
        raise
    finally:
        session.close()
