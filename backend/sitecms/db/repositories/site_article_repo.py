"""
站点文章 Repository

负责 site_articles 表的数据访问操作。

职责范围：
- 文章 CRUD（创建时自动生成 slug 与推广码）
- 多条件分页检索
- 发布 / 取消发布
- 浏览 / 阅读计数
- 结合访问记录的文章统计
"""
from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, case
from sqlalchemy.orm import selectinload
import structlog

from sitecms.models.constants import HitType, ResourceType
from sitecms.models.database import Hit, SiteArticle, beijing_now
from sitecms.models.filters import SiteArticleFilter
from sitecms.models.stats import ArticleWithAnalytics
from sitecms.utils.text import generate_promotion_code, generate_slug
from .base import BaseRepository

logger = structlog.get_logger(__name__)


class SiteArticleRepository(BaseRepository[SiteArticle]):
    """站点文章数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, SiteArticle)

    # ============================================================
    # 创建与查询
    # ============================================================

    async def create(self, entity: SiteArticle, *, flush: bool = False) -> SiteArticle:
        """
        创建文章

        slug 为空时由标题生成，推广码为空时随机生成。
        """
        if not entity.slug:
            entity.slug = generate_slug(entity.title)
        if not entity.promotion_code:
            entity.promotion_code = generate_promotion_code()
        return await super().create(entity, flush=flush)

    async def get_by_id(
        self,
        id_value: str,
        *,
        include_deleted: bool = False,
        options=None,
        with_category: bool = False,
    ) -> Optional[SiteArticle]:
        """
        根据 ID 查询文章

        Args:
            with_category: 是否预加载分类
        """
        if with_category:
            options = list(options or []) + [selectinload(SiteArticle.category)]
        return await super().get_by_id(id_value, include_deleted=include_deleted, options=options)

    async def get_by_slug(self, slug: str) -> Optional[SiteArticle]:
        result = await self.session.execute(
            self._select().where(SiteArticle.slug == slug).options(selectinload(SiteArticle.category))
        )
        return result.scalars().first()

    async def get_by_promotion_code(self, promotion_code: str) -> Optional[SiteArticle]:
        result = await self.session.execute(
            self._select().where(SiteArticle.promotion_code == promotion_code)
        )
        return result.scalars().first()

    async def list_with_filter(self, article_filter: SiteArticleFilter) -> Tuple[List[SiteArticle], int]:
        """
        按条件分页查询文章（预加载分类）

        Args:
            article_filter: 搜索词（标题 / 摘要 / 正文）、分类、作者、发布状态、发布时间范围

        Returns:
            (文章列表, 总数)
        """
        query = self._select().options(selectinload(SiteArticle.category))

        if article_filter.search:
            query = query.where(
                self._search_clause(
                    article_filter.search,
                    SiteArticle.title,
                    SiteArticle.summary,
                    SiteArticle.content,
                )
            )
        if article_filter.category_id:
            query = query.where(SiteArticle.category_id == article_filter.category_id)
        if article_filter.author:
            query = query.where(SiteArticle.author == article_filter.author)
        if article_filter.is_published is not None:
            query = query.where(SiteArticle.is_published == article_filter.is_published)
        if article_filter.published_from:
            query = query.where(SiteArticle.published_at >= article_filter.published_from)
        if article_filter.published_to:
            query = query.where(SiteArticle.published_at <= article_filter.published_to)

        order_by = self._order_clause(
            article_filter.sort_by,
            article_filter.sort_order,
            {
                "title": SiteArticle.title,
                "published_at": SiteArticle.published_at,
                "view_count": SiteArticle.view_count,
                "read_count": SiteArticle.read_count,
                "created_at": SiteArticle.created_at,
            },
        )
        return await self._paginate(query, article_filter, order_by)

    async def list_by_category(self, category_id: str, limit: int = 50, offset: int = 0) -> List[SiteArticle]:
        query = self._select().where(SiteArticle.category_id == category_id)
        return await self._list(query, [SiteArticle.created_at.desc()], limit=limit, offset=offset)

    async def list_published(self, limit: int = 50, offset: int = 0) -> List[SiteArticle]:
        query = self._select().where(SiteArticle.is_published.is_(True))
        return await self._list(query, [SiteArticle.published_at.desc()], limit=limit, offset=offset)

    async def list_drafts(self, limit: int = 50, offset: int = 0) -> List[SiteArticle]:
        query = self._select().where(SiteArticle.is_published.is_(False))
        return await self._list(query, [SiteArticle.created_at.desc()], limit=limit, offset=offset)

    async def list_by_author(self, author: str, limit: int = 50, offset: int = 0) -> List[SiteArticle]:
        query = self._select().where(SiteArticle.author == author)
        return await self._list(query, [SiteArticle.created_at.desc()], limit=limit, offset=offset)

    def _published_since(self, days: int):
        query = self._select().where(SiteArticle.is_published.is_(True))
        if days > 0:
            query = query.where(SiteArticle.published_at >= self._days_ago(days))
        return query

    async def list_most_viewed(self, limit: int = 10, days: int = 0) -> List[SiteArticle]:
        """最近 days 天发布的文章中浏览量最高的（days=0 不限制时间）"""
        return await self._list(
            self._published_since(days),
            [SiteArticle.view_count.desc(), SiteArticle.published_at.desc()],
            limit=limit,
        )

    async def list_most_read(self, limit: int = 10, days: int = 0) -> List[SiteArticle]:
        return await self._list(
            self._published_since(days),
            [SiteArticle.read_count.desc(), SiteArticle.published_at.desc()],
            limit=limit,
        )

    async def list_popular(self, limit: int = 10, days: int = 30) -> List[SiteArticle]:
        return await self.list_most_viewed(limit=limit, days=days)

    # ============================================================
    # 统计
    # ============================================================

    async def count_by_category(self, category_id: str) -> int:
        return await self.count(category_id=category_id)

    async def count_by_author(self, author: str) -> int:
        return await self.count(author=author)

    async def count_published(self) -> int:
        return await self.count(is_published=True)

    async def count_drafts(self) -> int:
        return await self.count(is_published=False)

    async def get_with_analytics(self, article_id: str, days: int = 30) -> ArticleWithAnalytics:
        """
        文章及其最近 days 天的访问统计

        Raises:
            NotFoundError: 文章不存在
        """
        article = await self.get_or_raise(article_id, options=[selectinload(SiteArticle.category)])

        def _typed(hit_type: HitType):
            return func.coalesce(func.sum(case((Hit.hit_type == hit_type.value, 1), else_=0)), 0)

        query = select(
            func.count(),
            _typed(HitType.VIEW),
            _typed(HitType.READ),
            _typed(HitType.SHARE),
            func.count(func.distinct(Hit.user_id)),
            func.avg(case((Hit.read_duration > 0, Hit.read_duration))),
        ).where(
            Hit.resource_id == article_id,
            Hit.resource_type == ResourceType.ARTICLE.value,
            Hit.is_deleted.is_(False),
            Hit.created_at >= self._days_ago(days),
        )
        total, views, reads, shares, visitors, avg_read = (await self.session.execute(query)).one()

        return ArticleWithAnalytics(
            article=article,
            period_days=days,
            total_hits=total,
            views=int(views),
            reads=int(reads),
            shares=int(shares),
            unique_visitors=visitors,
            avg_read_time=float(avg_read or 0.0),
        )

    # ============================================================
    # 更新方法
    # ============================================================

    async def publish(self, article_ids: List[str]) -> int:
        """
        批量发布

        published_at 只在为空时写入当前时间，重复发布不改变首次发布时间。

        Returns:
            更新的行数
        """
        if not article_ids:
            return 0

        await self.session.execute(
            self._exclude_deleted(
                update(SiteArticle).where(
                    SiteArticle.id.in_(article_ids),
                    SiteArticle.published_at.is_(None),
                )
            ).values(published_at=beijing_now())
        )
        updated = await self.bulk_update(article_ids, is_published=True)

        logger.info("articles_published", requested_count=len(article_ids), updated_count=updated)
        return updated

    async def unpublish(self, article_ids: List[str]) -> int:
        updated = await self.bulk_update(article_ids, is_published=False)
        logger.info("articles_unpublished", requested_count=len(article_ids), updated_count=updated)
        return updated

    async def increment_view_count(self, article_id: str) -> bool:
        return await self._increment(article_id, "view_count")

    async def increment_read_count(self, article_id: str) -> bool:
        return await self._increment(article_id, "read_count")
