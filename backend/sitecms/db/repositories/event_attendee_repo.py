"""
活动参会人 Repository

负责 event_attendees 表的数据访问操作：现场签到、互动码领取与签到汇总。
"""
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, case
from sqlalchemy.orm import selectinload
import structlog

from sitecms.models.constants import AttendeeStatus
from sitecms.models.database import EventAttendee, beijing_now
from sitecms.models.stats import CheckInSummary
from .base import BaseRepository

logger = structlog.get_logger(__name__)


class EventAttendeeRepository(BaseRepository[EventAttendee]):
    """活动参会人数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, EventAttendee)

    # ============================================================
    # 查询方法
    # ============================================================

    async def get_by_event_and_mobile(self, event_id: str, mobile: str) -> Optional[EventAttendee]:
        result = await self.session.execute(
            self._select().where(EventAttendee.event_id == event_id, EventAttendee.mobile == mobile)
        )
        return result.scalars().first()

    async def list_by_event(self, event_id: str, limit: int = 500, offset: int = 0) -> List[EventAttendee]:
        query = self._select().where(EventAttendee.event_id == event_id)
        return await self._list(query, [EventAttendee.created_at.asc()], limit=limit, offset=offset)

    async def list_by_mobile(self, mobile: str) -> List[EventAttendee]:
        """某个手机号报名的全部活动记录（预加载活动）"""
        query = (
            self._select()
            .where(EventAttendee.mobile == mobile)
            .options(selectinload(EventAttendee.event))
        )
        return await self._list(query, [EventAttendee.created_at.desc()])

    async def list_checked_in(self, event_id: str) -> List[EventAttendee]:
        return await self.list_by_status(event_id, AttendeeStatus.CHECKED_IN.value)

    async def list_by_status(self, event_id: str, status: str) -> List[EventAttendee]:
        """
        按签到状态查询参会人

        Args:
            status: checked_in / not_checked_in / code_received

        Raises:
            ValueError: 未知状态
        """
        query = self._select().where(EventAttendee.event_id == event_id)

        if status == AttendeeStatus.CHECKED_IN.value:
            query = query.where(EventAttendee.on_site_scanned.is_(True))
            order_by = [EventAttendee.scanned_at.desc()]
        elif status == AttendeeStatus.NOT_CHECKED_IN.value:
            query = query.where(EventAttendee.on_site_scanned.is_(False))
            order_by = [EventAttendee.created_at.asc()]
        elif status == AttendeeStatus.CODE_RECEIVED.value:
            query = query.where(EventAttendee.interaction_code_received.is_(True))
            order_by = [EventAttendee.created_at.asc()]
        else:
            raise ValueError(f"unknown attendee status: {status}")

        return await self._list(query, order_by)

    async def count_by_event(self, event_id: str) -> int:
        return await self.count(event_id=event_id)

    async def count_checked_in(self, event_id: str) -> int:
        return await self.count(event_id=event_id, on_site_scanned=True)

    # ============================================================
    # 签到
    # ============================================================

    async def check_in(self, attendee_id: str) -> bool:
        """现场签到（记录扫码时间）"""
        updated = await self.update_by_id(attendee_id, on_site_scanned=True, scanned_at=beijing_now())
        logger.info("attendee_checked_in", attendee_id=attendee_id, updated=updated)
        return updated

    async def mark_code_received(self, attendee_id: str) -> bool:
        return await self.update_by_id(attendee_id, interaction_code_received=True)

    async def get_check_in_summary(self, event_id: str) -> CheckInSummary:
        """签到汇总：总人数、已签到、已领取互动码、签到率（百分比）"""
        query = self._exclude_deleted(
            select(
                func.count(),
                func.coalesce(func.sum(case((EventAttendee.on_site_scanned.is_(True), 1), else_=0)), 0),
                func.coalesce(
                    func.sum(case((EventAttendee.interaction_code_received.is_(True), 1), else_=0)), 0
                ),
            )
            .select_from(EventAttendee)
            .where(EventAttendee.event_id == event_id)
        )
        total, checked_in, code_received = (await self.session.execute(query)).one()

        return CheckInSummary(
            event_id=event_id,
            total_attendees=total,
            checked_in=int(checked_in),
            code_received=int(code_received),
            check_in_rate=self._percentage(int(checked_in), total),
        )
