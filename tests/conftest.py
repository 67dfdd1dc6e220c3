import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./greenloop-test.db")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("METRICS_ENABLED", "false")

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from greenloop.database import Base
from greenloop.models import User, PointEarningRule  # noqa: F401
from greenloop.schemas.point_rule import PointEarningRuleCreate
from greenloop.services import point_rule_service


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'points.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def make_user(db):
    async def _make_user(email: str = "shopper@greenloop.test", **kwargs) -> User:
        user = User(email=email, full_name=kwargs.pop("full_name", "Test Shopper"), **kwargs)
        db.add(user)
        await db.commit()
        return user

    return _make_user


@pytest.fixture
async def user(make_user):
    return await make_user()


@pytest.fixture
async def rule(db):
    """Active rule with the default rates"""
    created = await point_rule_service.create_rule(db, PointEarningRuleCreate(rule_name="default"))
    await db.commit()
    return created


@pytest.fixture
async def make_rule(db):
    async def _make_rule(**kwargs) -> PointEarningRule:
        created = await point_rule_service.create_rule(db, PointEarningRuleCreate(**kwargs))
        await db.commit()
        return created

    return _make_rule
