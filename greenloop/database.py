"""
Database connection module
"""
import asyncio
import logging
from pathlib import Path
from alembic import command
from alembic.config import Config
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool
from greenloop.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# postgresql:// -> postgresql+asyncpg://
database_url = settings.database_url.replace(
    "postgresql://", "postgresql+asyncpg://"
)


def _engine_options(url: str) -> dict:
    # SQLite (tests, local tooling) gets one connection per session
    if url.startswith("sqlite"):
        return {"poolclass": NullPool}
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
    }


engine = create_async_engine(
    database_url,
    echo=False,
    **_engine_options(database_url),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base"""
    pass


async def get_db():
    """Request-scoped database session dependency"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """Session factory for work that opens its own transactions (expiry sweep)"""
    return AsyncSessionLocal


def run_migrations() -> None:
    """Run Alembic migrations up to head"""
    config_path = Path(__file__).resolve().parents[1] / "alembic.ini"
    alembic_cfg = Config(str(config_path))
    command.upgrade(alembic_cfg, "head")


async def init_db():
    """Apply migrations and seed defaults"""
    await asyncio.to_thread(run_migrations)
    await seed_default_rule()


async def seed_default_rule():
    """Make sure an earning rule exists so awards have rates to work with"""
    from greenloop.services.point_rule_service import ensure_default_rule

    async with AsyncSessionLocal() as session:
        created = await ensure_default_rule(session)
        await session.commit()
        if created:
            logger.info("Default point earning rule created: %s", created.rule_name)
