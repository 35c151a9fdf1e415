"""
站点活动 Repository

负责 site_events 表的数据访问操作。

活动状态由时间推导（不落库）：
- upcoming: start_date > now
- active: start_date <= now <= end_date
- completed: end_date < now
- cancelled: 已软删除

同一时间只有一个当前活动（is_current），由 set_current 在同一事务内先清除再设置。
"""
from datetime import datetime
from typing import Any, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from sitecms.models.constants import EventStatus
from sitecms.models.database import SiteEvent, beijing_now
from sitecms.models.filters import SiteEventFilter
from .base import BaseRepository

logger = structlog.get_logger(__name__)


class SiteEventRepository(BaseRepository[SiteEvent]):
    """站点活动数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, SiteEvent)

    # ============================================================
    # 当前活动
    # ============================================================

    async def get_current(self) -> Optional[SiteEvent]:
        result = await self.session.execute(self._select().where(SiteEvent.is_current.is_(True)))
        return result.scalars().first()

    async def set_current(self, event_id: str) -> SiteEvent:
        """
        设置当前活动：清除所有活动的 is_current，再设置目标活动

        Raises:
            NotFoundError: 活动不存在
            DatabaseError: 数据库执行失败
        """
        return await self._set_exclusive_flag("is_current", event_id)

    async def get_by_interaction_code(self, interaction_code: str) -> Optional[SiteEvent]:
        result = await self.session.execute(
            self._select()
            .where(SiteEvent.interaction_code == interaction_code)
            .order_by(SiteEvent.start_date.desc())
        )
        return result.scalars().first()

    # ============================================================
    # 条件查询
    # ============================================================

    @staticmethod
    def _status_clause(status: str, now: datetime) -> Optional[Any]:
        if status == EventStatus.UPCOMING.value:
            return SiteEvent.start_date > now
        if status == EventStatus.ACTIVE.value:
            return (SiteEvent.start_date <= now) & (SiteEvent.end_date >= now)
        if status == EventStatus.COMPLETED.value:
            return SiteEvent.end_date < now
        if status == EventStatus.CANCELLED.value:
            return SiteEvent.is_deleted.is_(True)
        return None

    def _filtered(self, event_filter: SiteEventFilter) -> Any:
        include_deleted = event_filter.include_deleted or event_filter.status == EventStatus.CANCELLED.value
        query = self._select(include_deleted=include_deleted)

        if event_filter.search:
            query = query.where(self._search_clause(event_filter.search, SiteEvent.title, SiteEvent.tags))
        if event_filter.category_id:
            query = query.where(SiteEvent.category_id == event_filter.category_id)
        if event_filter.status:
            clause = self._status_clause(event_filter.status, beijing_now())
            if clause is not None:
                query = query.where(clause)
        if event_filter.start_date_from:
            query = query.where(SiteEvent.start_date >= event_filter.start_date_from)
        if event_filter.start_date_to:
            query = query.where(SiteEvent.start_date <= event_filter.start_date_to)

        return query

    async def list_with_filter(self, event_filter: SiteEventFilter) -> Tuple[List[SiteEvent], int]:
        """
        按条件分页查询活动

        Args:
            event_filter: 搜索词（标题或标签）、分类、状态、开始时间范围、是否包含已删除

        Returns:
            (活动列表, 总数)，默认按 created_at DESC 排序
        """
        order_by = self._order_clause(
            event_filter.sort_by,
            event_filter.sort_order,
            {
                "title": SiteEvent.title,
                "start_date": SiteEvent.start_date,
                "end_date": SiteEvent.end_date,
                "created_at": SiteEvent.created_at,
            },
        )
        return await self._paginate(self._filtered(event_filter), event_filter, order_by)

    async def count_with_filter(self, event_filter: SiteEventFilter) -> int:
        return await self._count(self._filtered(event_filter))

    async def list_by_category(self, category_id: str, limit: int = 50, offset: int = 0) -> List[SiteEvent]:
        query = self._select().where(SiteEvent.category_id == category_id)
        return await self._list(query, [SiteEvent.start_date.desc()], limit=limit, offset=offset)

    async def search_by_title(self, title: str, limit: int = 20) -> List[SiteEvent]:
        query = self._select().where(self._search_clause(title, SiteEvent.title))
        return await self._list(query, [SiteEvent.start_date.desc()], limit=limit)

    async def list_by_date_range(self, start: datetime, end: datetime) -> List[SiteEvent]:
        """完全落在 [start, end] 内的活动"""
        query = self._select().where(SiteEvent.start_date >= start, SiteEvent.end_date <= end)
        return await self._list(query, [SiteEvent.start_date.asc()])

    async def list_by_status(self, status: str, limit: int = 50, offset: int = 0) -> List[SiteEvent]:
        clause = self._status_clause(status, beijing_now())
        if clause is None:
            return []
        query = self._select(include_deleted=status == EventStatus.CANCELLED.value).where(clause)
        return await self._list(query, [SiteEvent.start_date.asc()], limit=limit, offset=offset)

    async def list_upcoming(self, limit: int = 50) -> List[SiteEvent]:
        return await self.list_by_status(EventStatus.UPCOMING.value, limit=limit)

    async def list_active(self, limit: int = 50) -> List[SiteEvent]:
        return await self.list_by_status(EventStatus.ACTIVE.value, limit=limit)

    async def list_completed(self, limit: int = 50) -> List[SiteEvent]:
        return await self.list_by_status(EventStatus.COMPLETED.value, limit=limit)
