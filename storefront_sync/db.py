from collections.abc import Iterator
from functools import lru_cache
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from storefront_sync.settings import settings


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    settings.require_storage_config()
    return create_engine(settings.database_url, pool_pre_ping=True)


@lru_cache(maxsize=1)
def get_sessionmaker() -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


def SessionLocal() -> Session:
    return get_sessionmaker()()


def get_session() -> Iterator[Session]:
    with SessionLocal() as session:
        yield session


def upsert(session: Session, model: Any):
    """
    dialect에 맞는 INSERT 구문 (on_conflict_do_update 지원).
    운영은 PostgreSQL, 테스트는 SQLite.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)
