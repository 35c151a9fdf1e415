"""
测试共享 Fixtures

- 每个测试使用独立的 SQLite 内存数据库（aiosqlite）
- db_session: 直接操作的异步会话
- session_factory: 绑定同一内存数据库的会话工厂（用于 RepositoryFactory）
- 常用实体构造 fixtures
"""
import os

# 必须在导入 sitecms 之前设置，保证 session 模块使用 SQLite
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")

from datetime import timedelta
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

# 导入模型模块以注册所有表
import sitecms.models.database  # noqa: F401
from sitecms.models.database import SiteEvent, beijing_now


# ============================================================
# 数据库 Fixtures
# ============================================================

@pytest.fixture
async def db_engine():
    """创建内存数据库引擎并建表"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(session_factory):
    """创建内存数据库会话"""
    async with session_factory() as session:
        yield session


# ============================================================
# 基础数据 Fixtures
# ============================================================

@pytest.fixture
def make_event():
    """构造活动：offset_days 为开始时间相对当前的天数"""

    def _make(title: str, offset_days: int = 1, duration_days: int = 1, **kwargs) -> SiteEvent:
        start = beijing_now() + timedelta(days=offset_days)
        return SiteEvent(
            title=title,
            start_date=start,
            end_date=start + timedelta(days=duration_days),
            **kwargs,
        )

    return _make
