# order_pipeline/config/database.py
import logging
from typing import Optional, Union

from sqlalchemy import event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from order_pipeline.config.settings import Settings

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def resolve_database_url(settings: Settings, secrets_client=None) -> Union[str, URL]:
    """DATABASE_URL wins, then the Secrets Manager secret, then the DB_* variables."""
    if settings.DATABASE_URL:
        return settings.DATABASE_URL

    if settings.DB_SECRET_NAME:
        from order_pipeline.config.secrets import create_secrets_client, get_db_credentials

        client = secrets_client or create_secrets_client(settings)
        creds = get_db_credentials(settings.DB_SECRET_NAME, client)
        return settings.mysql_url(creds["host"], creds["port"], creds["username"], creds["password"], creds["dbname"])

    return settings.mysql_url(settings.DB_HOST, settings.DB_PORT, settings.DB_USER, settings.DB_PASSWORD, settings.DB_NAME)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine(url: Union[str, URL], pool_size: int = 10, echo: bool = False) -> AsyncEngine:
    global _engine, _session_factory

    backend = make_url(url).get_backend_name()
    engine_kwargs = {"echo": echo, "pool_pre_ping": True}
    if backend != "sqlite":
        engine_kwargs.update(pool_size=pool_size, pool_recycle=3600)

    _engine = create_async_engine(url, **engine_kwargs)
    if backend == "sqlite":
        event.listen(_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    logger.info("Database engine initialized", extra={"db_backend": backend, "pool_size": pool_size})
    return _engine


def get_session_factory() -> async_sessionmaker:
    if _session_factory is None:
        raise RuntimeError("Database session factory not initialized. Call init_engine() first.")
    return _session_factory


async def create_tables(engine: AsyncEngine):
    # Model modules must be imported so their tables are registered on Base.metadata
    import order_pipeline.models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, checkfirst=True)
        logger.info("Tables created or already exist")
    except Exception as e:
        logger.error("Error during table check/creation", extra={"error": str(e)}, exc_info=True)
        raise


async def dispose_engine():
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_factory = None
