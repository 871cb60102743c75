"""
Retention Store Engine Factory
SQLAlchemy engine with connection pooling for the tank_logs store

Server databases (MySQL via PyMySQL in production) get a QueuePool with
pre-ping and recycling. In-memory SQLite (tests, dry runs) gets a StaticPool
so every connection sees the same database.
"""

import logging
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import QueuePool, StaticPool

from tank_monitor.settings import StoreSettings

logger = logging.getLogger(__name__)


def build_url(settings: StoreSettings):
    """STORE_URL with STORE_SERVICE_KEY injected as the password."""
    url = make_url(settings.url)
    if settings.service_key and not url.drivername.startswith("sqlite"):
        url = url.set(password=settings.service_key)
    if url.drivername.startswith("mysql") and "charset" not in url.query:
        url = url.update_query_dict({"charset": "utf8mb4"})
    return url


def create_store_engine(settings: Optional[StoreSettings] = None) -> Engine:
    """
    Create the retention store engine

    Pool Configuration (server databases):
    - pool_size / max_overflow: STORE_POOL_SIZE / STORE_MAX_OVERFLOW
    - pool_timeout: wait for a free connection before failing
    - pool_recycle: recycle connections before the server drops them
    - pool_pre_ping: Test connection before use (detect stale connections)
    """
    settings = settings or StoreSettings()
    url = build_url(settings)

    if url.drivername.startswith("sqlite"):
        database = url.database or ""
        if database in ("", ":memory:") or database.startswith("file::memory:"):
            logger.info("🔌 Creating in-memory SQLite store engine")
            return create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        logger.info(f"🔌 Creating SQLite store engine ({database})")
        return create_engine(url, connect_args={"check_same_thread": False})

    logger.info(
        f"🔌 Creating store engine for {url.render_as_string(hide_password=True)} "
        f"(pool {settings.pool_size} + {settings.max_overflow})"
    )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        pool_recycle=settings.pool_recycle,
        pool_pre_ping=True,
        pool_use_lifo=True,
        echo=False,
    )


def check_connection(engine: Engine) -> bool:
    """Run SELECT 1; raises the driver error on failure."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return True
