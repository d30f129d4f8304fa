import logging
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from config import settings, IS_PRODUCTION

logger = logging.getLogger(__name__)

# Validate production database configuration
if IS_PRODUCTION:
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL must be set in production. SQLite is not allowed in production.")
    if "sqlite" in settings.database_url.lower():
        raise RuntimeError("SQLite is forbidden in production. Use a PostgreSQL DATABASE_URL.")

# Default to SQLite with aiosqlite, but allow override via DATABASE_URL env var
DATABASE_URL = settings.database_url or "sqlite+aiosqlite:///./sql_app.db"


def to_async_url(url: str) -> str:
    """Map plain postgres URLs onto the asyncpg driver."""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


def _ssl_mode():
    """
    SSL for external PostgreSQL (RDS, Neon, Supabase, VPS).
    DATABASE_SSL=false disables it, DATABASE_SSL=prefer is passed through,
    otherwise SSL is required in production and off in development.
    """
    ssl_env = (settings.database_ssl or "").lower()
    if ssl_env == "false":
        return False
    if ssl_env == "prefer":
        return "prefer"
    return "require" if IS_PRODUCTION else False


def _engine_kwargs(url: str) -> dict:
    kwargs = {"echo": False, "future": True}
    if not url.startswith("postgresql+asyncpg://"):
        return kwargs

    connect_args = {"ssl": _ssl_mode(), "timeout": 10}
    # Prepared statements break behind PgBouncer / RDS Proxy in transaction mode
    if (settings.database_prepare or "").lower() == "false":
        connect_args["statement_cache_size"] = 0

    kwargs.update(
        pool_size=settings.database_max_connections or (10 if IS_PRODUCTION else 1),
        pool_recycle=20,
        pool_pre_ping=True,
        connect_args=connect_args,
    )
    return kwargs


async_url = to_async_url(DATABASE_URL)

# Create async engine
engine = create_async_engine(async_url, **_engine_kwargs(async_url))

# Create declarative base for models
Base = declarative_base()

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def init_db():
    """
    Initialize the database by creating all tables.
    This should be called on application startup.
    """
    async with engine.begin() as conn:
        # Import models here to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function that yields a database session.
    Commits when the request handler succeeds, rolls back otherwise.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def check_connection() -> bool:
    """Check if the primary database is reachable."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Primary database connection failed: {e}")
        return False


async def close_connection():
    """Dispose of the connection pool (called on shutdown)."""
    await engine.dispose()


# ============================================================================
# SECONDARY DATABASE (optional: read replicas, analytics, legacy data)
# ============================================================================

_secondary_engine: Optional[AsyncEngine] = None


def is_secondary_configured() -> bool:
    """Check if a secondary database is configured"""
    return bool(settings.database_secondary_url)


def get_secondary_engine() -> AsyncEngine:
    """
    Lazily create the secondary engine.
    Raises RuntimeError if DATABASE_SECONDARY_URL is not set.
    """
    global _secondary_engine
    if not is_secondary_configured():
        raise RuntimeError(
            "Secondary database is not configured. "
            "Set DATABASE_SECONDARY_URL or check is_secondary_configured() first."
        )
    if _secondary_engine is None:
        url = to_async_url(settings.database_secondary_url)
        _secondary_engine = create_async_engine(url, **_engine_kwargs(url))
    return _secondary_engine


async def check_secondary_connection() -> bool:
    """Check the secondary database. Returns False when not configured."""
    if not is_secondary_configured():
        return False
    try:
        async with get_secondary_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Secondary database connection failed: {e}")
        return False


async def close_secondary_connection():
    global _secondary_engine
    if _secondary_engine is not None:
        await _secondary_engine.dispose()
        _secondary_engine = None
