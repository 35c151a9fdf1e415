"""
数据库初始化脚本

- 创建所有表（开发环境 / SQLite；生产环境使用 Alembic 迁移）
- 初始化系统内置图片分类

用法：
    cd backend && python -m scripts.init_db
"""
import asyncio

from sitecms.config.settings import settings
from sitecms.config.logging_config import setup_logging
from sitecms.db.session import init_db, dispose_engines
from sitecms.db.repository_factory import get_repository_factory
import structlog

logger = structlog.get_logger()


def _masked_database_url() -> str:
    url = settings.DATABASE_URL
    if settings.POSTGRES_PASSWORD:
        url = url.replace(settings.POSTGRES_PASSWORD, "***")
    return url


async def seed_system_categories() -> int:
    """初始化系统图片分类，返回新建数量"""
    repo_factory = get_repository_factory()
    async with repo_factory.create_session() as session:
        image_category_repo = repo_factory.create_image_category_repo(session)
        created = await image_category_repo.create_system_categories()
    return len(created)


async def main():
    """初始化数据库"""
    setup_logging()

    logger.info("database_initialization_started", database_url=_masked_database_url())

    try:
        await init_db()
        created_count = await seed_system_categories()
        logger.info("database_initialization_completed", system_categories_created=created_count)

    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise
    finally:
        await dispose_engines()


if __name__ == "__main__":
    asyncio.run(main())
