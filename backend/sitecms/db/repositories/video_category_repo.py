"""
视频分类 Repository
"""
from typing import Dict, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
import structlog

from sitecms.models.database import Video, VideoCategory
from .tree import CategoryTreeRepository

logger = structlog.get_logger(__name__)


class VideoCategoryRepository(CategoryTreeRepository[VideoCategory]):
    """视频分类数据访问层（同级按 display_order 排序）"""

    order_column_name = "display_order"

    def __init__(self, session: AsyncSession):
        super().__init__(session, VideoCategory)

    async def list_active(self) -> List[VideoCategory]:
        query = self._select().where(
            VideoCategory.is_active.is_(True),
            VideoCategory.is_visible.is_(True),
        )
        return await self._list(query, self._tree_order())

    async def list_featured(self, limit: int = 10) -> List[VideoCategory]:
        query = self._select().where(
            VideoCategory.is_active.is_(True),
            VideoCategory.is_featured.is_(True),
        )
        return await self._list(query, [VideoCategory.display_order.asc(), VideoCategory.name.asc()], limit=limit)

    async def list_with_videos(self) -> List[VideoCategory]:
        """video_count > 0 的分类"""
        query = self._select().where(VideoCategory.video_count > 0)
        return await self._list(query, [VideoCategory.video_count.desc(), VideoCategory.name.asc()])

    async def _video_counts(self, category_ids: List[str]) -> Dict[str, int]:
        result = await self.session.execute(
            select(Video.category_id, func.count())
            .where(Video.category_id.in_(category_ids), Video.is_deleted.is_(False))
            .group_by(Video.category_id)
        )
        return {category_id: count for category_id, count in result.all()}

    async def refresh_video_count(self, category_id: str) -> int:
        """
        按视频表重新计算 video_count

        Raises:
            NotFoundError: 分类不存在
        """
        category = await self.get_or_raise(category_id)
        category.video_count = (await self._video_counts([category_id])).get(category_id, 0)
        await self.session.flush()

        logger.debug("video_category_count_refreshed", category_id=category_id, video_count=category.video_count)
        return category.video_count

    async def bulk_refresh_video_count(self, category_ids: List[str]) -> int:
        """批量刷新 video_count，返回刷新的分类数量（不存在的 ID 跳过）"""
        categories = await self.get_by_ids(category_ids)
        counts = await self._video_counts([category.id for category in categories])
        for category in categories:
            category.video_count = counts.get(category.id, 0)
        await self.session.flush()

        logger.info("video_category_counts_refreshed", count=len(categories))
        return len(categories)
