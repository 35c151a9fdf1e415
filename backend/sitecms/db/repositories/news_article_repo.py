"""
新闻-文章关联 Repository

一条新闻下挂多篇图文，按 display_order 排序，其中最多一篇为头条（is_main_story）。
"""
from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import update
from sqlalchemy.orm import selectinload
import structlog

from sitecms.core.exceptions import NotFoundError
from sitecms.models.database import NewsArticle, beijing_now
from .base import BaseRepository

logger = structlog.get_logger(__name__)


class NewsArticleRepository(BaseRepository[NewsArticle]):
    """新闻-文章关联数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, NewsArticle)

    # ============================================================
    # 查询方法
    # ============================================================

    async def list_by_news(self, news_id: str) -> List[NewsArticle]:
        """
        新闻下的全部图文（预加载文章，按 display_order 升序）
        """
        query = (
            self._select()
            .where(NewsArticle.news_id == news_id)
            .options(selectinload(NewsArticle.article))
        )
        return await self._list(query, [NewsArticle.display_order.asc(), NewsArticle.created_at.asc()])

    async def list_by_article(self, article_id: str) -> List[NewsArticle]:
        query = self._select().where(NewsArticle.article_id == article_id)
        return await self._list(query, [NewsArticle.created_at.desc()])

    async def get_by_news_and_article(self, news_id: str, article_id: str) -> Optional[NewsArticle]:
        result = await self.session.execute(
            self._select().where(
                NewsArticle.news_id == news_id,
                NewsArticle.article_id == article_id,
            )
        )
        return result.scalars().first()

    async def get_main_story(self, news_id: str) -> Optional[NewsArticle]:
        result = await self.session.execute(
            self._select()
            .where(NewsArticle.news_id == news_id, NewsArticle.is_main_story.is_(True))
            .options(selectinload(NewsArticle.article))
        )
        return result.scalars().first()

    async def list_featured(self, news_id: str) -> List[NewsArticle]:
        query = (
            self._select()
            .where(NewsArticle.news_id == news_id, NewsArticle.is_featured.is_(True))
            .options(selectinload(NewsArticle.article))
        )
        return await self._list(query, [NewsArticle.display_order.asc()])

    # ============================================================
    # 写入方法
    # ============================================================

    async def create_bulk(self, links: List[NewsArticle]) -> List[NewsArticle]:
        return await self.create_batch(links, flush=True)

    async def delete_by_news(self, news_id: str) -> int:
        return await self._soft_delete_where(NewsArticle.news_id == news_id)

    async def delete_by_article(self, article_id: str) -> int:
        return await self._soft_delete_where(NewsArticle.article_id == article_id)

    async def _soft_delete_where(self, condition) -> int:
        result = await self.session.execute(
            self._exclude_deleted(update(NewsArticle).where(condition)).values(
                is_deleted=True,
                deleted_at=beijing_now(),
            )
        )
        logger.info("news_article_links_deleted", count=result.rowcount)
        return result.rowcount

    async def update_display_order(self, link_id: str, display_order: int) -> bool:
        return await self.update_by_id(link_id, display_order=display_order)

    async def reorder(self, news_id: str, orders: Dict[str, int]) -> int:
        """
        批量调整新闻下图文顺序

        Args:
            news_id: 新闻 ID
            orders: article_id -> display_order

        Returns:
            更新的行数
        """
        updated = 0
        for article_id, display_order in orders.items():
            result = await self.session.execute(
                self._exclude_deleted(
                    update(NewsArticle).where(
                        NewsArticle.news_id == news_id,
                        NewsArticle.article_id == article_id,
                    )
                ).values(display_order=display_order, updated_at=beijing_now())
            )
            updated += result.rowcount

        logger.info("news_articles_reordered", news_id=news_id, updated_count=updated)
        return updated

    async def set_main_story(self, news_id: str, article_id: str) -> NewsArticle:
        """
        设置新闻头条：先清除该新闻下所有头条标记，再标记目标图文

        Raises:
            NotFoundError: 新闻下不存在该文章
            DatabaseError: 数据库执行失败
        """
        link = await self.get_by_news_and_article(news_id, article_id)
        if link is None:
            raise NotFoundError(
                self._model_name,
                f"{news_id}/{article_id}",
                message="article is not linked to news",
            )
        return await self._set_exclusive_flag("is_main_story", link.id, NewsArticle.news_id == news_id)

    async def set_featured(self, link_id: str, featured: bool) -> bool:
        return await self.update_by_id(link_id, is_featured=featured)
