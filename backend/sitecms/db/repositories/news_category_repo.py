"""
新闻分类 Repository
"""
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import structlog

from sitecms.models.database import News, NewsCategory
from .tree import CategoryTreeRepository

logger = structlog.get_logger(__name__)


class NewsCategoryRepository(CategoryTreeRepository[NewsCategory]):
    """新闻分类数据访问层（同级按 display_order 排序）"""

    order_column_name = "display_order"

    def __init__(self, session: AsyncSession):
        super().__init__(session, NewsCategory)

    async def list_active(self) -> List[NewsCategory]:
        query = self._select().where(NewsCategory.is_active.is_(True))
        return await self._list(query, self._tree_order())

    async def list_featured(self, limit: int = 10) -> List[NewsCategory]:
        query = self._select().where(
            NewsCategory.is_active.is_(True),
            NewsCategory.is_featured.is_(True),
        )
        return await self._list(query, [NewsCategory.display_order.asc(), NewsCategory.name.asc()], limit=limit)

    async def list_with_news_count(self) -> List[NewsCategory]:
        """news_count > 0 的分类"""
        query = self._select().where(NewsCategory.news_count > 0)
        return await self._list(query, [NewsCategory.news_count.desc(), NewsCategory.name.asc()])

    async def refresh_news_count(self, category_id: str) -> int:
        """按新闻表重新计算 news_count"""
        category = await self.get_or_raise(category_id)
        news_count = await self._count(
            select(News).where(News.category_id == category_id, News.is_deleted.is_(False))
        )
        category.news_count = news_count
        await self.session.flush()

        logger.debug("news_category_count_refreshed", category_id=category_id, news_count=news_count)
        return news_count

    async def bulk_update_status(self, category_ids: List[str], is_active: bool) -> int:
        return await self.bulk_update(category_ids, is_active=is_active)

    async def bulk_delete(self, category_ids: List[str], deleted_by: Optional[str] = None) -> int:
        return await self.soft_delete_batch(category_ids, deleted_by=deleted_by)
