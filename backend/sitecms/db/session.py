"""
数据库会话管理（SQLModel + AsyncPG）

- 连接池大小、溢出、回收、超时均来自配置
- 连接健康检查（pool_pre_ping）
- Prometheus 指标：查询耗时直方图、慢查询计数
- 慢查询追踪（阈值 SLOW_QUERY_THRESHOLD_MS）
- 事件循环感知：每个事件循环使用独立 engine
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy import event, text
from sqlmodel import SQLModel
from prometheus_client import Counter, Histogram
import structlog
import time
import asyncio

from sitecms.config.settings import settings

logger = structlog.get_logger()

# ============================================================
# Prometheus 指标定义
# ============================================================

db_query_duration = Histogram(
    "sitecms_db_query_duration_seconds",
    "Database query execution time",
    labelnames=["operation"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10],
)

db_slow_query_count = Counter(
    "sitecms_db_slow_query_total",
    "Number of slow queries detected",
    labelnames=["operation"],
)

_SQL_OPERATIONS = ("SELECT", "INSERT", "UPDATE", "DELETE", "BEGIN", "COMMIT", "ROLLBACK", "SAVEPOINT")

# ============================================================
# 事件循环感知的引擎管理
# ============================================================
#
# asyncpg 连接池创建的 Future 绑定到创建时的事件循环，
# 因此按 event_loop_id -> engine 缓存，每个循环使用自己的 engine。
#
_engine_cache: dict[int, AsyncEngine] = {}


def _sql_operation(statement: Optional[str]) -> str:
    if not statement:
        return "UNKNOWN"
    head = statement.lstrip().split(None, 1)
    if not head:
        return "UNKNOWN"
    keyword = head[0].upper()
    return keyword if keyword in _SQL_OPERATIONS else "UNKNOWN"


def _register_query_tracking(engine: AsyncEngine) -> None:
    """在 engine 上注册查询耗时与慢查询追踪"""
    threshold_seconds = settings.SLOW_QUERY_THRESHOLD_MS / 1000

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        start_times = conn.info.get("query_start_time")
        if not start_times:
            return

        duration = time.perf_counter() - start_times.pop()
        operation = _sql_operation(statement)
        db_query_duration.labels(operation=operation).observe(duration)

        if duration > threshold_seconds:
            logger.warning(
                "slow_query_detected",
                duration_ms=round(duration * 1000, 2),
                operation=operation,
                statement=statement[:500] if statement else "N/A",
                threshold_ms=settings.SLOW_QUERY_THRESHOLD_MS,
            )
            db_slow_query_count.labels(operation=operation).inc()


def _create_engine() -> AsyncEngine:
    """
    创建数据库引擎（内部函数）

    SQLite（开发 / 测试）不支持连接池参数，只在 PostgreSQL 下设置。
    """
    if settings.is_sqlite:
        engine = create_async_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
    else:
        engine = create_async_engine(
            settings.DATABASE_URL,
            echo=settings.DB_ECHO,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            connect_args={
                "server_settings": {
                    "application_name": settings.SERVICE_NAME,
                },
            },
        )

    _register_query_tracking(engine)
    return engine


def get_engine() -> AsyncEngine:
    """
    获取当前事件循环对应的数据库引擎

    Returns:
        AsyncEngine: 绑定到当前事件循环的数据库引擎
    """
    try:
        loop_id = id(asyncio.get_running_loop())
    except RuntimeError:
        loop_id = 0

    if loop_id not in _engine_cache:
        _engine_cache[loop_id] = _create_engine()
        logger.info(
            "db_engine_created_for_event_loop",
            loop_id=loop_id,
            engine_id=id(_engine_cache[loop_id]),
        )

    return _engine_cache[loop_id]


async def dispose_engines() -> None:
    """释放所有缓存的 engine（进程退出 / 测试清理时调用）"""
    engines = list(_engine_cache.values())
    _engine_cache.clear()
    for engine in engines:
        await engine.dispose()
    logger.info("db_engines_disposed", count=len(engines))


# ============================================================
# 会话工厂
# ============================================================

def get_session_maker() -> async_sessionmaker:
    """
    获取当前事件循环对应的会话工厂

    Returns:
        async_sessionmaker: 绑定到当前事件循环 engine 的会话工厂
    """
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def AsyncSessionLocal() -> AsyncSession:
    """创建数据库会话（事件循环感知）"""
    return get_session_maker()()


async def init_db():
    """初始化数据库（创建表）"""
    current_engine = get_engine()
    async with current_engine.begin() as conn:
        # 生产环境应使用 Alembic 迁移
        if settings.ENVIRONMENT == "development" or settings.is_sqlite:
            await conn.run_sync(SQLModel.metadata.create_all)
            logger.info("database_tables_created", table_count=len(SQLModel.metadata.tables))


async def get_pool_status() -> dict:
    """
    获取连接池状态（用于健康检查和监控）

    Returns:
        包含连接池状态信息的字典
    """
    pool = get_engine().pool
    status = {"pool_class": type(pool).__name__}
    for key in ("size", "checkedout", "overflow", "checkedin"):
        method = getattr(pool, key, None)
        if callable(method):
            status[key] = method()
    return status


async def check_db_health() -> dict:
    """
    检查数据库连接健康状态

    执行简单查询验证连接是否可用。

    Returns:
        健康状态信息
    """
    start_time = time.time()
    try:
        async with AsyncSessionLocal() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()

        latency_ms = round((time.time() - start_time) * 1000, 2)
        return {
            "status": "healthy",
            "latency_ms": latency_ms,
            "pool": await get_pool_status(),
        }
    except Exception as e:
        latency_ms = round((time.time() - start_time) * 1000, 2)
        logger.error(
            "db_health_check_failed",
            error=str(e),
            error_type=type(e).__name__,
            latency_ms=latency_ms,
        )
        return {
            "status": "unhealthy",
            "error": str(e),
            "error_type": type(e).__name__,
            "latency_ms": latency_ms,
        }


@asynccontextmanager
async def safe_session() -> AsyncGenerator[AsyncSession, None]:
    """
    数据库会话上下文管理器

    保证会话关闭、连接归还连接池；提交与回滚由调用方负责。

    使用示例:
        async with safe_session() as session:
            repo = SiteEventRepository(session)
            await repo.set_current(event_id)
            await session.commit()
    """
    session = AsyncSessionLocal()
    try:
        yield session
    finally:
        await session.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    依赖注入：获取数据库会话

    正常结束自动 commit；出现异常时 rollback 后重新抛出。
    """
    async with safe_session() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(
                "db_session_rollback",
                error=str(e),
                error_type=type(e).__name__,
            )
            await session.rollback()
            raise
