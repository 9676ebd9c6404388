from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from spotin.config import settings


def _engine_options(url: str) -> dict:
    if not url.startswith('sqlite'):
        return {'pool_pre_ping': True, 'pool_recycle': 3600}
    options: dict = {'connect_args': {'check_same_thread': False}}
    if url in {'sqlite://', 'sqlite:///:memory:'}:
        # In-memory databases live inside one connection.
        options['poolclass'] = StaticPool
    return options


engine = create_engine(
    settings.database_url_normalized,
    echo=settings.database_echo,
    **_engine_options(settings.database_url_normalized),
)

if settings.database_url_normalized.startswith('sqlite'):

    @event.listens_for(engine, 'connect')
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
