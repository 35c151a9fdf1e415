"""
视频 Repository

负责 videos 表的数据访问操作。

职责范围：
- 视频 CRUD（创建时自动生成 slug）
- 多条件分页检索（搜索、标签、时间范围）
- 直播状态流转：开始直播、结束直播
- 互动计数、观看时长与参与度指标
- 分类 / 活动关联
- 热门、趋势、相关视频与汇总统计
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, case, or_
from sqlalchemy.orm import selectinload
import structlog

from sitecms.models.constants import VideoStatus
from sitecms.models.database import Video, VideoCategory, beijing_now
from sitecms.models.filters import VideoFilter
from sitecms.models.stats import VideoStatistics
from sitecms.utils.text import generate_slug, split_tags
from .base import BaseRepository

logger = structlog.get_logger(__name__)

TRENDING_WINDOW = timedelta(days=7)

ENGAGEMENT_FIELDS = ("average_watch_time", "completion_rate", "engagement_score")


class VideoRepository(BaseRepository[Video]):
    """视频数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Video)

    async def create(self, entity: Video, *, flush: bool = False) -> Video:
        """创建视频（slug 为空时由标题生成）"""
        if not entity.slug:
            entity.slug = generate_slug(entity.title)
        return await super().create(entity, flush=flush)

    # ============================================================
    # 条件查询
    # ============================================================

    def _apply_filter(self, query: Any, video_filter: Optional[VideoFilter]) -> Any:
        """把 VideoFilter 条件追加到任意以 videos 为主表的查询"""
        if video_filter is None:
            return query

        if video_filter.search:
            query = query.where(
                self._search_clause(video_filter.search, Video.title, Video.summary, Video.tags)
            )
        if video_filter.status:
            query = query.where(Video.status == video_filter.status)
        if video_filter.video_type:
            query = query.where(Video.video_type == video_filter.video_type)
        if video_filter.category_id:
            query = query.where(Video.category_id == video_filter.category_id)
        if video_filter.bound_event_id:
            query = query.where(Video.bound_event_id == video_filter.bound_event_id)
        if video_filter.is_open is not None:
            query = query.where(Video.is_open == video_filter.is_open)
        if video_filter.created_by:
            query = query.where(Video.created_by == video_filter.created_by)
        if video_filter.tags:
            query = query.where(self._tags_clause(Video.tags, video_filter.tags))
        if video_filter.created_from:
            query = query.where(Video.created_at >= video_filter.created_from)
        if video_filter.created_to:
            query = query.where(Video.created_at <= video_filter.created_to)

        return query

    def _filter_order(self, video_filter: VideoFilter) -> List[Any]:
        return self._order_clause(
            video_filter.sort_by,
            video_filter.sort_order,
            {
                "title": Video.title,
                "view_count": Video.view_count,
                "like_count": Video.like_count,
                "engagement_score": Video.engagement_score,
                "start_time": Video.start_time,
                "created_at": Video.created_at,
            },
        )

    async def list_with_filter(self, video_filter: VideoFilter) -> Tuple[List[Video], int]:
        """
        按条件分页查询视频（预加载分类）

        Returns:
            (视频列表, 总数)
        """
        query = self._apply_filter(
            self._select().options(selectinload(Video.category)),
            video_filter,
        )
        return await self._paginate(query, video_filter, self._filter_order(video_filter))

    async def search(self, term: str, video_filter: Optional[VideoFilter] = None) -> Tuple[List[Video], int]:
        video_filter = (video_filter or VideoFilter()).model_copy(update={"search": term})
        return await self.list_with_filter(video_filter)

    async def list_by_tags(self, tags: List[str], video_filter: Optional[VideoFilter] = None) -> Tuple[List[Video], int]:
        video_filter = (video_filter or VideoFilter()).model_copy(update={"tags": tags})
        return await self.list_with_filter(video_filter)

    async def list_by_date_range(
        self,
        start: datetime,
        end: datetime,
        video_filter: Optional[VideoFilter] = None,
    ) -> Tuple[List[Video], int]:
        """创建时间位于 [start, end] 的视频"""
        video_filter = (video_filter or VideoFilter()).model_copy(
            update={"created_from": start, "created_to": end}
        )
        return await self.list_with_filter(video_filter)

    # ============================================================
    # 单条 / 列表查询
    # ============================================================

    async def get_by_slug(self, slug: str) -> Optional[Video]:
        result = await self.session.execute(
            self._select().where(Video.slug == slug).options(selectinload(Video.category))
        )
        return result.scalars().first()

    async def list_by_status(self, status: str, limit: int = 50, offset: int = 0) -> List[Video]:
        query = self._select().where(Video.status == status)
        return await self._list(query, [Video.created_at.desc()], limit=limit, offset=offset)

    async def list_live(self) -> List[Video]:
        query = self._select().where(Video.status == VideoStatus.LIVE.value)
        return await self._list(query, [Video.start_time.desc()])

    async def list_scheduled(self, before: Optional[datetime] = None) -> List[Video]:
        """已排期的视频（before 不为空时只返回开始时间早于 before 的）"""
        query = self._select().where(Video.status == VideoStatus.SCHEDULED.value)
        if before:
            query = query.where(Video.start_time <= before)
        return await self._list(query, [Video.start_time.asc()])

    async def list_by_category(self, category_id: str, limit: int = 50, offset: int = 0) -> List[Video]:
        query = self._select().where(Video.category_id == category_id)
        return await self._list(query, [Video.created_at.desc()], limit=limit, offset=offset)

    async def list_by_category_slug(self, slug: str, limit: int = 50, offset: int = 0) -> List[Video]:
        category_ids = select(VideoCategory.id).where(
            VideoCategory.slug == slug,
            VideoCategory.is_deleted.is_(False),
        )
        query = self._select().where(Video.category_id.in_(category_ids))
        return await self._list(query, [Video.created_at.desc()], limit=limit, offset=offset)

    async def list_by_event(self, event_id: str) -> List[Video]:
        query = self._select().where(Video.bound_event_id == event_id)
        return await self._list(query, [Video.start_time.asc(), Video.created_at.asc()])

    async def list_popular(self, since: Optional[datetime] = None, limit: int = 10) -> List[Video]:
        """按浏览、点赞、分享数降序"""
        query = self._select()
        if since:
            query = query.where(Video.created_at >= since)
        return await self._list(
            query,
            [Video.view_count.desc(), Video.like_count.desc(), Video.share_count.desc()],
            limit=limit,
        )

    async def list_trending(self, limit: int = 10) -> List[Video]:
        """最近 7 天内按参与度排序"""
        query = self._select().where(Video.created_at >= beijing_now() - TRENDING_WINDOW)
        return await self._list(
            query,
            [Video.engagement_score.desc(), Video.view_count.desc()],
            limit=limit,
        )

    async def list_recent(self, limit: int = 10) -> List[Video]:
        return await self._list(self._select(), [Video.created_at.desc()], limit=limit)

    async def list_related(self, video_id: str, limit: int = 5) -> List[Video]:
        """
        相关视频：同分类或共享任一标签，不含自身

        Raises:
            NotFoundError: 视频不存在
        """
        video = await self.get_or_raise(video_id)

        conditions = []
        if video.category_id:
            conditions.append(Video.category_id == video.category_id)
        tags = split_tags(video.tags)
        if tags:
            conditions.append(self._tags_clause(Video.tags, tags))
        if not conditions:
            return []

        query = self._select().where(Video.id != video_id, or_(*conditions))
        return await self._list(query, [Video.view_count.desc(), Video.created_at.desc()], limit=limit)

    # ============================================================
    # 状态与关联
    # ============================================================

    async def update_status(self, video_id: str, status: str) -> bool:
        return await self.update_by_id(video_id, status=status)

    async def bulk_update_status(self, video_ids: List[str], status: str) -> int:
        return await self.bulk_update(video_ids, status=status)

    async def start_live(self, video_id: str, started_at: Optional[datetime] = None) -> bool:
        updated = await self.update_by_id(
            video_id,
            status=VideoStatus.LIVE.value,
            start_time=started_at or beijing_now(),
        )
        logger.info("video_live_started", video_id=video_id, updated=updated)
        return updated

    async def end_live(self, video_id: str, ended_at: Optional[datetime] = None) -> bool:
        updated = await self.update_by_id(
            video_id,
            status=VideoStatus.ENDED.value,
            end_time=ended_at or beijing_now(),
        )
        logger.info("video_live_ended", video_id=video_id, updated=updated)
        return updated

    async def update_category(self, video_id: str, category_id: Optional[str]) -> bool:
        return await self.update_by_id(video_id, category_id=category_id)

    async def associate_with_event(self, video_id: str, event_id: str) -> bool:
        return await self.update_by_id(video_id, bound_event_id=event_id)

    async def disassociate_from_event(self, video_id: str) -> bool:
        return await self.update_by_id(video_id, bound_event_id=None)

    # ============================================================
    # 计数与指标
    # ============================================================

    async def increment_view_count(self, video_id: str) -> bool:
        return await self._increment(video_id, "view_count")

    async def increment_like_count(self, video_id: str) -> bool:
        return await self._increment(video_id, "like_count")

    async def increment_share_count(self, video_id: str) -> bool:
        return await self._increment(video_id, "share_count")

    async def increment_comment_count(self, video_id: str) -> bool:
        return await self._increment(video_id, "comment_count")

    async def add_watch_time(self, video_id: str, seconds: int) -> bool:
        return await self._increment(video_id, "watch_time", seconds)

    async def update_engagement_metrics(self, video_id: str, metrics: Dict[str, float]) -> bool:
        """
        更新参与度指标

        Args:
            metrics: average_watch_time / completion_rate / engagement_score 中的任意项，
                其他键会被忽略
        """
        fields = {key: value for key, value in metrics.items() if key in ENGAGEMENT_FIELDS}
        if not fields:
            return False
        return await self.update_by_id(video_id, **fields)

    # ============================================================
    # 统计
    # ============================================================

    async def get_statistics(self, video_filter: Optional[VideoFilter] = None) -> VideoStatistics:
        """
        视频汇总统计（可按 VideoFilter 限定范围）

        Returns:
            总数、直播中 / 已排期 / 已结束数量、累计浏览 / 点赞 / 分享 / 观看时长、平均参与度
        """
        def _status(status: VideoStatus):
            return func.coalesce(func.sum(case((Video.status == status.value, 1), else_=0)), 0)

        query = self._exclude_deleted(
            select(
                func.count(),
                _status(VideoStatus.LIVE),
                _status(VideoStatus.SCHEDULED),
                _status(VideoStatus.ENDED),
                func.coalesce(func.sum(Video.view_count), 0),
                func.coalesce(func.sum(Video.like_count), 0),
                func.coalesce(func.sum(Video.share_count), 0),
                func.coalesce(func.sum(Video.watch_time), 0),
                func.coalesce(func.avg(Video.engagement_score), 0.0),
            ).select_from(Video)
        )
        query = self._apply_filter(query, video_filter)

        row = (await self.session.execute(query)).one()
        return VideoStatistics(
            total_videos=row[0],
            live_videos=int(row[1]),
            scheduled_videos=int(row[2]),
            ended_videos=int(row[3]),
            total_views=int(row[4]),
            total_likes=int(row[5]),
            total_shares=int(row[6]),
            total_watch_time=int(row[7]),
            avg_engagement_score=float(row[8]),
        )

    async def get_category_statistics(self, category_id: str) -> VideoStatistics:
        return await self.get_statistics(VideoFilter(category_id=category_id))
