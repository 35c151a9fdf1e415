"""
文章分类 Repository

在分类树通用操作之上提供排序列表与文章数量统计。
"""
from typing import Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, case
import structlog

from sitecms.models.database import ArticleCategory, SiteArticle
from sitecms.models.stats import CategoryWithArticleCount
from .tree import CategoryTreeRepository

logger = structlog.get_logger(__name__)


class ArticleCategoryRepository(CategoryTreeRepository[ArticleCategory]):
    """文章分类数据访问层"""

    order_column_name = "sort_order"

    def __init__(self, session: AsyncSession):
        super().__init__(session, ArticleCategory)

    async def list_ordered(self, active_only: bool = False) -> List[ArticleCategory]:
        """按 sort_order、名称排序的全部分类"""
        query = self._select()
        if active_only:
            query = query.where(ArticleCategory.is_active.is_(True))
        return await self._list(query, [ArticleCategory.sort_order.asc(), ArticleCategory.name.asc()])

    async def count_active(self) -> int:
        return await self.count(is_active=True)

    async def _article_counts(self, category_ids: Optional[List[str]] = None) -> Dict[str, Tuple[int, int]]:
        """category_id -> (文章总数, 已发布数)"""
        query = (
            select(
                SiteArticle.category_id,
                func.count(),
                func.coalesce(func.sum(case((SiteArticle.is_published.is_(True), 1), else_=0)), 0),
            )
            .where(SiteArticle.is_deleted.is_(False), SiteArticle.category_id.is_not(None))
            .group_by(SiteArticle.category_id)
        )
        if category_ids is not None:
            query = query.where(SiteArticle.category_id.in_(category_ids))

        result = await self.session.execute(query)
        return {category_id: (total, int(published)) for category_id, total, published in result.all()}

    @staticmethod
    def _with_count(category: ArticleCategory, counts: Dict[str, Tuple[int, int]]) -> CategoryWithArticleCount:
        total, published = counts.get(category.id, (0, 0))
        return CategoryWithArticleCount(
            category=category,
            article_count=total,
            published_count=published,
            draft_count=total - published,
        )

    async def get_with_article_count(self, category_id: str) -> CategoryWithArticleCount:
        """
        分类及其文章数量

        Raises:
            NotFoundError: 分类不存在
        """
        category = await self.get_or_raise(category_id)
        counts = await self._article_counts([category_id])
        return self._with_count(category, counts)

    async def list_with_article_counts(self, active_only: bool = False) -> List[CategoryWithArticleCount]:
        categories = await self.list_ordered(active_only=active_only)
        counts = await self._article_counts()
        return [self._with_count(category, counts) for category in categories]

    async def refresh_article_count(self, category_id: str) -> int:
        """按文章表重新计算 article_count"""
        counts = await self._article_counts([category_id])
        total = counts.get(category_id, (0, 0))[0]
        await self.update_by_id(category_id, article_count=total)

        logger.debug("article_category_count_refreshed", category_id=category_id, article_count=total)
        return total
