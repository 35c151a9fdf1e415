"""
站点图片 Repository

负责 site_images 表的数据访问操作：检索、批量归类 / 可见性更新、容量与标签统计。
"""
from collections import Counter
from typing import Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
import structlog

from sitecms.models.database import SiteImage
from sitecms.models.filters import SiteImageFilter
from sitecms.models.stats import TagCount
from sitecms.utils.text import split_tags
from .base import BaseRepository

logger = structlog.get_logger(__name__)

UNCATEGORIZED_KEY = "uncategorized"


class SiteImageRepository(BaseRepository[SiteImage]):
    """站点图片数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, SiteImage)

    # ============================================================
    # 查询方法
    # ============================================================

    async def get_by_media_id(self, media_id: str) -> Optional[SiteImage]:
        """根据微信素材 ID 查询"""
        result = await self.session.execute(self._select().where(SiteImage.media_id == media_id))
        return result.scalars().first()

    async def list_with_filter(self, image_filter: SiteImageFilter) -> Tuple[List[SiteImage], int]:
        """
        按条件分页查询图片

        Args:
            image_filter: 搜索词、分类（或仅未分类）、标签（任意命中）、MIME 类型、
                可见性、推荐、文件大小范围、创建时间范围

        Returns:
            (图片列表, 总数)
        """
        query = self._select()

        if image_filter.search:
            query = query.where(
                self._search_clause(
                    image_filter.search,
                    SiteImage.filename,
                    SiteImage.original_name,
                    SiteImage.title,
                    SiteImage.alt_text,
                )
            )
        if image_filter.uncategorized:
            query = query.where(SiteImage.category_id.is_(None))
        elif image_filter.category_id:
            query = query.where(SiteImage.category_id == image_filter.category_id)
        if image_filter.tags:
            query = query.where(self._tags_clause(SiteImage.tags, image_filter.tags))
        if image_filter.mime_type:
            query = query.where(SiteImage.mime_type == image_filter.mime_type)
        if image_filter.is_public is not None:
            query = query.where(SiteImage.is_public == image_filter.is_public)
        if image_filter.is_featured is not None:
            query = query.where(SiteImage.is_featured == image_filter.is_featured)
        if image_filter.min_size is not None:
            query = query.where(SiteImage.file_size >= image_filter.min_size)
        if image_filter.max_size is not None:
            query = query.where(SiteImage.file_size <= image_filter.max_size)
        if image_filter.created_from:
            query = query.where(SiteImage.created_at >= image_filter.created_from)
        if image_filter.created_to:
            query = query.where(SiteImage.created_at <= image_filter.created_to)

        order_by = self._order_clause(
            image_filter.sort_by,
            image_filter.sort_order,
            {
                "filename": SiteImage.filename,
                "file_size": SiteImage.file_size,
                "view_count": SiteImage.view_count,
                "created_at": SiteImage.created_at,
            },
        )
        return await self._paginate(query, image_filter, order_by)

    async def list_by_category(self, category_id: Optional[str], limit: int = 50, offset: int = 0) -> List[SiteImage]:
        """category_id 为空时返回未分类图片"""
        if category_id:
            query = self._select().where(SiteImage.category_id == category_id)
        else:
            query = self._select().where(SiteImage.category_id.is_(None))
        return await self._list(query, [SiteImage.created_at.desc()], limit=limit, offset=offset)

    async def search_by_name(self, name: str, limit: int = 20) -> List[SiteImage]:
        query = self._select().where(
            self._search_clause(name, SiteImage.filename, SiteImage.original_name, SiteImage.title)
        )
        return await self._list(query, [SiteImage.created_at.desc()], limit=limit)

    async def search_by_tags(self, tags: List[str], limit: int = 20) -> List[SiteImage]:
        if not tags:
            return []
        query = self._select().where(self._tags_clause(SiteImage.tags, tags))
        return await self._list(query, [SiteImage.created_at.desc()], limit=limit)

    # ============================================================
    # 批量操作
    # ============================================================

    async def bulk_update_category(self, image_ids: List[str], category_id: Optional[str]) -> int:
        return await self.bulk_update(image_ids, category_id=category_id)

    async def bulk_update_visibility(self, image_ids: List[str], is_public: bool) -> int:
        return await self.bulk_update(image_ids, is_public=is_public)

    async def bulk_delete(self, image_ids: List[str], deleted_by: Optional[str] = None) -> int:
        return await self.soft_delete_batch(image_ids, deleted_by=deleted_by)

    async def increment_view_count(self, image_id: str) -> bool:
        return await self._increment(image_id, "view_count")

    async def increment_download_count(self, image_id: str) -> bool:
        return await self._increment(image_id, "download_count")

    # ============================================================
    # 统计
    # ============================================================

    async def get_total_size(self) -> int:
        """未删除图片的总字节数"""
        query = self._exclude_deleted(
            select(func.coalesce(func.sum(SiteImage.file_size), 0)).select_from(SiteImage)
        )
        return int((await self.session.execute(query)).scalar_one())

    async def get_count_by_category(self) -> Dict[str, int]:
        """
        每个分类的图片数量

        Returns:
            category_id -> 数量，未分类图片的键为 "uncategorized"
        """
        query = self._exclude_deleted(
            select(SiteImage.category_id, func.count()).select_from(SiteImage)
        ).group_by(SiteImage.category_id)

        result = await self.session.execute(query)
        return {
            (category_id or UNCATEGORIZED_KEY): count
            for category_id, count in result.all()
        }

    async def get_popular_tags(self, limit: int = 20) -> List[TagCount]:
        """按使用次数排序的标签（标签列为逗号分隔字符串，在应用侧拆分计数）"""
        query = self._exclude_deleted(
            select(SiteImage.tags).select_from(SiteImage).where(
                SiteImage.tags.is_not(None), SiteImage.tags != ""
            )
        )
        result = await self.session.execute(query)

        counter: Counter = Counter()
        for tags in result.scalars().all():
            counter.update(split_tags(tags))

        ranked = sorted(counter.items(), key=lambda item: (-item[1], item[0]))[:limit]
        return [TagCount(tag=tag, count=count) for tag, count in ranked]
