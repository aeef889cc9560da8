from functools import lru_cache
from threading import Lock
from typing import Dict

from loguru import logger
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from core.config import Settings, get_settings
from core.errors import DatabaseNotAllowed


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str, settings: Settings) -> Engine:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
        _enable_sqlite_foreign_keys(engine)
        return engine

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
    )


class DataSourceManager:
    """One pooled engine per target database, opened lazily from the URL template.

    Only databases in the allow-list can ever be opened, so the application
    database never becomes reachable through the generic surface.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._engines: Dict[str, Engine] = {}
        self._lock = Lock()

    def get_engine(self, database_name: str) -> Engine:
        if not self.settings.is_database_allowed(database_name):
            raise DatabaseNotAllowed(database_name)

        with self._lock:
            engine = self._engines.get(database_name)
            if engine is None:
                engine = build_engine(self.settings.database_url(database_name), self.settings)
                self._engines[database_name] = engine
                logger.info(f"Opened connection pool for database '{database_name}'")
            return engine

    def dispose(self) -> None:
        with self._lock:
            for engine in self._engines.values():
                engine.dispose()
            self._engines.clear()


@lru_cache
def get_app_engine() -> Engine:
    settings = get_settings()
    return build_engine(settings.app_database_url, settings)


@lru_cache
def get_session_factory() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_app_engine())


@lru_cache
def get_data_sources() -> DataSourceManager:
    return DataSourceManager(get_settings())


def get_db() -> Session:
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
