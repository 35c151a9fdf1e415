"""
新闻 Repository

负责 news 表的数据访问操作。

职责范围：
- 新闻 CRUD（创建时自动生成 slug）
- 多条件分页检索、按状态 / 优先级 / 分类 / 作者 / 标签查询
- 发布生命周期：发布、取消发布、定时、归档
- 互动计数、热门 / 趋势 / 相关新闻
- 微信图文草稿与发布状态同步
"""
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
import structlog

from sitecms.models.constants import NewsStatus
from sitecms.models.database import News, NewsCategory, beijing_now
from sitecms.models.filters import NewsFilter
from sitecms.utils.text import generate_slug, split_tags
from .base import BaseRepository

logger = structlog.get_logger(__name__)

TRENDING_WINDOW = timedelta(hours=24)


class NewsRepository(BaseRepository[News]):
    """新闻数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, News)

    async def create(self, entity: News, *, flush: bool = False) -> News:
        """创建新闻（slug 为空时由标题生成）"""
        if not entity.slug:
            entity.slug = generate_slug(entity.title)
        return await super().create(entity, flush=flush)

    # ============================================================
    # 查询方法
    # ============================================================

    async def get_by_slug(self, slug: str) -> Optional[News]:
        result = await self.session.execute(self._select().where(News.slug == slug))
        return result.scalars().first()

    async def get_by_wechat_draft_id(self, draft_id: str) -> Optional[News]:
        result = await self.session.execute(self._select().where(News.wechat_draft_id == draft_id))
        return result.scalars().first()

    async def get_by_wechat_published_id(self, published_id: str) -> Optional[News]:
        result = await self.session.execute(self._select().where(News.wechat_published_id == published_id))
        return result.scalars().first()

    async def list_with_filter(self, news_filter: NewsFilter) -> Tuple[List[News], int]:
        """
        按条件分页查询新闻

        Args:
            news_filter: 搜索词（标题 / 副标题 / 摘要 / 正文）、状态、类型、优先级、分类、作者、
                推荐 / 突发、标签（任意命中）、发布时间范围

        Returns:
            (新闻列表, 总数)
        """
        query = self._select()

        if news_filter.search:
            query = query.where(
                self._search_clause(news_filter.search, News.title, News.subtitle, News.summary, News.content)
            )
        if news_filter.status:
            query = query.where(News.status == news_filter.status)
        if news_filter.type:
            query = query.where(News.type == news_filter.type)
        if news_filter.priority:
            query = query.where(News.priority == news_filter.priority)
        if news_filter.category_id:
            query = query.where(News.category_id == news_filter.category_id)
        if news_filter.author_id:
            query = query.where(News.author_id == news_filter.author_id)
        if news_filter.is_featured is not None:
            query = query.where(News.is_featured == news_filter.is_featured)
        if news_filter.is_breaking is not None:
            query = query.where(News.is_breaking == news_filter.is_breaking)
        if news_filter.tags:
            query = query.where(self._tags_clause(News.tags, news_filter.tags))
        if news_filter.published_from:
            query = query.where(News.published_at >= news_filter.published_from)
        if news_filter.published_to:
            query = query.where(News.published_at <= news_filter.published_to)

        order_by = self._order_clause(
            news_filter.sort_by,
            news_filter.sort_order,
            {
                "title": News.title,
                "published_at": News.published_at,
                "view_count": News.view_count,
                "share_count": News.share_count,
                "like_count": News.like_count,
                "created_at": News.created_at,
            },
        )
        return await self._paginate(query, news_filter, order_by)

    def _published(self):
        return self._select().where(News.status == NewsStatus.PUBLISHED.value)

    async def list_by_status(self, status: str, limit: int = 50, offset: int = 0) -> List[News]:
        query = self._select().where(News.status == status)
        return await self._list(query, [News.created_at.desc()], limit=limit, offset=offset)

    async def list_scheduled_due(self, before: Optional[datetime] = None) -> List[News]:
        """定时时间已到、等待发布的新闻"""
        query = self._select().where(
            News.status == NewsStatus.SCHEDULED.value,
            News.scheduled_at <= (before or beijing_now()),
        )
        return await self._list(query, [News.scheduled_at.asc()])

    async def list_expired(self, before: Optional[datetime] = None) -> List[News]:
        """已过期但仍处于发布状态的新闻"""
        query = self._published().where(
            News.expires_at.is_not(None),
            News.expires_at <= (before or beijing_now()),
        )
        return await self._list(query, [News.expires_at.asc()])

    async def list_featured(self, limit: int = 10) -> List[News]:
        query = self._published().where(News.is_featured.is_(True))
        return await self._list(query, [News.published_at.desc()], limit=limit)

    async def list_breaking(self, limit: int = 10) -> List[News]:
        query = self._published().where(News.is_breaking.is_(True))
        return await self._list(query, [News.published_at.desc()], limit=limit)

    async def list_by_priority(self, priority: str, limit: int = 50) -> List[News]:
        query = self._select().where(News.priority == priority)
        return await self._list(query, [News.created_at.desc()], limit=limit)

    async def list_by_category(self, category_id: str, limit: int = 50, offset: int = 0) -> List[News]:
        query = self._select().where(News.category_id == category_id)
        return await self._list(query, [News.created_at.desc()], limit=limit, offset=offset)

    async def list_by_category_slug(self, slug: str, limit: int = 50, offset: int = 0) -> List[News]:
        category_ids = select(NewsCategory.id).where(
            NewsCategory.slug == slug,
            NewsCategory.is_deleted.is_(False),
        )
        query = self._select().where(News.category_id.in_(category_ids))
        return await self._list(query, [News.created_at.desc()], limit=limit, offset=offset)

    async def list_by_author(self, author_id: str, limit: int = 50, offset: int = 0) -> List[News]:
        query = self._select().where(News.author_id == author_id)
        return await self._list(query, [News.created_at.desc()], limit=limit, offset=offset)

    async def search(self, term: str, limit: int = 20) -> List[News]:
        query = self._select().where(
            self._search_clause(term, News.title, News.subtitle, News.summary, News.content)
        )
        return await self._list(query, [News.created_at.desc()], limit=limit)

    async def search_by_tags(self, tags: List[str], limit: int = 20) -> List[News]:
        if not tags:
            return []
        query = self._select().where(self._tags_clause(News.tags, tags))
        return await self._list(query, [News.created_at.desc()], limit=limit)

    async def list_related(self, news_id: str, limit: int = 5) -> List[News]:
        """
        相关新闻：已发布、与目标新闻同分类或共享任一标签，不含自身

        Raises:
            NotFoundError: 目标新闻不存在
        """
        news = await self.get_or_raise(news_id)

        conditions = []
        if news.category_id:
            conditions.append(News.category_id == news.category_id)
        tags = split_tags(news.tags)
        if tags:
            conditions.append(self._tags_clause(News.tags, tags))
        if not conditions:
            return []

        query = self._published().where(News.id != news_id, or_(*conditions))
        return await self._list(query, [News.published_at.desc()], limit=limit)

    async def list_popular(self, since: Optional[datetime] = None, limit: int = 10) -> List[News]:
        """按浏览、分享、点赞数降序的已发布新闻"""
        query = self._published()
        if since:
            query = query.where(News.published_at >= since)
        return await self._list(
            query,
            [News.view_count.desc(), News.share_count.desc(), News.like_count.desc()],
            limit=limit,
        )

    async def list_trending(self, limit: int = 10) -> List[News]:
        """最近 24 小时发布的热门新闻"""
        return await self.list_popular(since=beijing_now() - TRENDING_WINDOW, limit=limit)

    # ============================================================
    # 发布生命周期
    # ============================================================

    async def publish(self, news_id: str, published_at: Optional[datetime] = None) -> bool:
        return await self.update_by_id(
            news_id,
            status=NewsStatus.PUBLISHED.value,
            published_at=published_at or beijing_now(),
        )

    async def unpublish(self, news_id: str) -> bool:
        """撤回为草稿"""
        return await self.update_by_id(news_id, status=NewsStatus.DRAFT.value)

    async def schedule(self, news_id: str, scheduled_at: datetime) -> bool:
        return await self.update_by_id(
            news_id,
            status=NewsStatus.SCHEDULED.value,
            scheduled_at=scheduled_at,
        )

    async def archive(self, news_id: str) -> bool:
        return await self.update_by_id(news_id, status=NewsStatus.ARCHIVED.value)

    async def bulk_update_status(self, news_ids: List[str], status: str) -> int:
        return await self.bulk_update(news_ids, status=status)

    async def bulk_delete(self, news_ids: List[str], deleted_by: Optional[str] = None) -> int:
        return await self.soft_delete_batch(news_ids, deleted_by=deleted_by)

    # ============================================================
    # 计数
    # ============================================================

    async def increment_view_count(self, news_id: str) -> bool:
        return await self._increment(news_id, "view_count")

    async def increment_share_count(self, news_id: str) -> bool:
        return await self._increment(news_id, "share_count")

    async def increment_like_count(self, news_id: str) -> bool:
        return await self._increment(news_id, "like_count")

    async def increment_comment_count(self, news_id: str) -> bool:
        return await self._increment(news_id, "comment_count")

    # ============================================================
    # 微信同步
    # ============================================================

    async def update_wechat_status(
        self,
        news_id: str,
        status: str,
        wechat_id: Optional[str] = None,
        url: Optional[str] = None,
    ) -> bool:
        """
        更新微信图文状态

        status 为 published 时 wechat_id 写入 wechat_published_id，否则写入 wechat_draft_id。
        """
        fields = {"wechat_status": status}
        if wechat_id:
            if status == NewsStatus.PUBLISHED.value:
                fields["wechat_published_id"] = wechat_id
            else:
                fields["wechat_draft_id"] = wechat_id
        if url:
            fields["wechat_url"] = url

        updated = await self.update_by_id(news_id, **fields)
        logger.info("news_wechat_status_updated", news_id=news_id, wechat_status=status, updated=updated)
        return updated
