"""Async engine and session factory."""

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from shuttle.config import settings


def _engine_options() -> dict:
    options: dict = {"pool_pre_ping": True}
    if settings.db_isolation_level:
        options["isolation_level"] = settings.db_isolation_level
    return options


engine = create_async_engine(settings.database_url, **_engine_options())
async_session = async_sessionmaker(engine, expire_on_commit=False)
