"""
视频观看会话 Repository

负责 video_sessions 表的数据访问操作：观看进度更新、会话统计与过期清理。
观看会话没有软删除字段，清理即物理删除。
"""
from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, case
import structlog

from sitecms.config.settings import settings
from sitecms.models.constants import VideoSessionStatus
from sitecms.models.database import VideoSession, beijing_now
from sitecms.models.filters import VideoSessionFilter
from sitecms.models.stats import VideoSessionStatistics
from .base import BaseRepository

logger = structlog.get_logger(__name__)

_OPEN_STATUSES = [VideoSessionStatus.ACTIVE.value, VideoSessionStatus.PAUSED.value]


class VideoSessionRepository(BaseRepository[VideoSession]):
    """视频观看会话数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, VideoSession)

    # ============================================================
    # 查询方法
    # ============================================================

    async def get_by_session_id(self, session_id: str) -> Optional[VideoSession]:
        result = await self.session.execute(
            self._select()
            .where(VideoSession.session_id == session_id)
            .order_by(VideoSession.start_time.desc())
        )
        return result.scalars().first()

    async def get_by_video_and_session(self, video_id: str, session_id: str) -> Optional[VideoSession]:
        result = await self.session.execute(
            self._select().where(
                VideoSession.video_id == video_id,
                VideoSession.session_id == session_id,
            )
        )
        return result.scalars().first()

    async def list_by_video_and_user(self, video_id: str, user_id: str) -> List[VideoSession]:
        query = self._select().where(VideoSession.video_id == video_id, VideoSession.user_id == user_id)
        return await self._list(query, [VideoSession.start_time.desc()])

    async def list_active_for_video(self, video_id: str) -> List[VideoSession]:
        query = self._select().where(
            VideoSession.video_id == video_id,
            VideoSession.status == VideoSessionStatus.ACTIVE.value,
        )
        return await self._list(query, [VideoSession.last_activity.desc()])

    async def list_active_for_user(self, user_id: str) -> List[VideoSession]:
        query = self._select().where(
            VideoSession.user_id == user_id,
            VideoSession.status == VideoSessionStatus.ACTIVE.value,
        )
        return await self._list(query, [VideoSession.last_activity.desc()])

    def _apply_filter(self, query, session_filter: VideoSessionFilter):
        if session_filter.status:
            query = query.where(VideoSession.status == session_filter.status)
        if session_filter.is_completed is not None:
            query = query.where(VideoSession.is_completed == session_filter.is_completed)
        if session_filter.min_completion is not None:
            query = query.where(VideoSession.completion_percentage >= session_filter.min_completion)
        if session_filter.max_completion is not None:
            query = query.where(VideoSession.completion_percentage <= session_filter.max_completion)
        if session_filter.started_from:
            query = query.where(VideoSession.start_time >= session_filter.started_from)
        if session_filter.started_to:
            query = query.where(VideoSession.start_time <= session_filter.started_to)
        return query

    async def _list_filtered(self, query, session_filter: VideoSessionFilter) -> Tuple[List[VideoSession], int]:
        order_by = self._order_clause(
            session_filter.sort_by,
            session_filter.sort_order,
            {
                "start_time": VideoSession.start_time,
                "last_activity": VideoSession.last_activity,
                "watched_duration": VideoSession.watched_duration,
                "completion_percentage": VideoSession.completion_percentage,
                "created_at": VideoSession.created_at,
            },
        )
        return await self._paginate(self._apply_filter(query, session_filter), session_filter, order_by)

    async def list_by_video(self, video_id: str, session_filter: VideoSessionFilter) -> Tuple[List[VideoSession], int]:
        return await self._list_filtered(self._select().where(VideoSession.video_id == video_id), session_filter)

    async def list_by_user(self, user_id: str, session_filter: VideoSessionFilter) -> Tuple[List[VideoSession], int]:
        return await self._list_filtered(self._select().where(VideoSession.user_id == user_id), session_filter)

    # ============================================================
    # 进度更新
    # ============================================================

    async def update_progress(
        self,
        video_session_id: str,
        position: int,
        watched_seconds: int,
        percentage: float,
    ) -> VideoSession:
        """
        更新观看进度

        完成度达到 VIDEO_COMPLETION_THRESHOLD 时标记为已完成（只记录首次完成时间）。

        Raises:
            NotFoundError: 会话不存在
        """
        video_session = await self.get_or_raise(video_session_id)
        now = beijing_now()

        video_session.current_position = position
        video_session.watched_duration = watched_seconds
        video_session.completion_percentage = percentage
        video_session.last_activity = now
        video_session.updated_at = now

        if percentage >= settings.VIDEO_COMPLETION_THRESHOLD and not video_session.is_completed:
            video_session.is_completed = True
            video_session.completed_at = now
            video_session.end_time = now
            video_session.status = VideoSessionStatus.COMPLETED.value
            logger.info("video_session_completed", id=video_session_id, video_id=video_session.video_id)

        await self.session.flush()
        return video_session

    # ============================================================
    # 统计
    # ============================================================

    async def _statistics(self, *conditions) -> VideoSessionStatistics:
        query = select(
            func.count(),
            func.count(func.distinct(VideoSession.user_id)),
            func.coalesce(func.sum(case((VideoSession.is_completed.is_(True), 1), else_=0)), 0),
            func.coalesce(func.avg(VideoSession.watched_duration), 0.0),
            func.coalesce(func.avg(VideoSession.completion_percentage), 0.0),
            func.coalesce(func.sum(VideoSession.watched_duration), 0),
        ).where(*conditions)
        total, viewers, completed, avg_watched, avg_completion, watch_time = (
            await self.session.execute(query)
        ).one()

        devices = await self.session.execute(
            select(VideoSession.device_type, func.count())
            .where(*conditions, VideoSession.device_type.is_not(None))
            .group_by(VideoSession.device_type)
        )

        return VideoSessionStatistics(
            total_sessions=total,
            unique_viewers=viewers,
            completed_sessions=int(completed),
            completion_rate=self._percentage(int(completed), total),
            avg_watched_duration=float(avg_watched),
            avg_completion_percentage=float(avg_completion),
            total_watch_time=int(watch_time),
            device_breakdown={device: count for device, count in devices.all()},
        )

    async def get_statistics(self, video_id: str) -> VideoSessionStatistics:
        """某个视频的观看统计（完成率为百分比）"""
        return await self._statistics(VideoSession.video_id == video_id)

    async def get_user_statistics(self, user_id: str) -> VideoSessionStatistics:
        return await self._statistics(VideoSession.user_id == user_id)

    # ============================================================
    # 清理
    # ============================================================

    async def cleanup_abandoned(self, older_than: datetime) -> int:
        """
        物理删除最后活动早于 older_than 的已放弃会话

        Returns:
            删除的行数
        """
        result = await self.session.execute(
            delete(VideoSession).where(
                VideoSession.status == VideoSessionStatus.ABANDONED.value,
                VideoSession.last_activity < older_than,
            )
        )
        logger.info("abandoned_video_sessions_cleaned_up", deleted_count=result.rowcount)
        return result.rowcount

    async def mark_inactive(self, threshold: datetime) -> int:
        """
        把最后活动早于 threshold 的进行中 / 暂停会话标记为已放弃

        Returns:
            更新的行数
        """
        now = beijing_now()
        result = await self.session.execute(
            update(VideoSession)
            .where(
                VideoSession.status.in_(_OPEN_STATUSES),
                VideoSession.last_activity < threshold,
            )
            .values(status=VideoSessionStatus.ABANDONED.value, end_time=now, updated_at=now)
        )
        logger.info("inactive_video_sessions_marked", updated_count=result.rowcount)
        return result.rowcount
