"""
微信粉丝 Repository

负责 wechat_users 表的数据访问操作。

职责范围：
- 按 open_id / union_id 查询
- 多条件分页检索
- 关注状态批量更新
- 粉丝统计（关注、新增、活跃、性别、地域分布）
"""
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_, case
import structlog

from sitecms.config.settings import settings
from sitecms.models.database import WeChatUser, beijing_now
from sitecms.models.filters import WeChatUserFilter
from sitecms.models.stats import LocationCount, WeChatUserStatistics
from .base import BaseRepository

logger = structlog.get_logger(__name__)


class WeChatUserRepository(BaseRepository[WeChatUser]):
    """微信粉丝数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, WeChatUser)

    # ============================================================
    # 单条查询
    # ============================================================

    async def get_by_open_id(self, open_id: str) -> Optional[WeChatUser]:
        """
        根据 open_id 查询粉丝

        Args:
            open_id: 公众号下的用户唯一标识

        Returns:
            粉丝记录，如果不存在则返回 None
        """
        result = await self.session.execute(self._select().where(WeChatUser.open_id == open_id))
        return result.scalar_one_or_none()

    async def get_by_union_id(self, union_id: str) -> Optional[WeChatUser]:
        result = await self.session.execute(self._select().where(WeChatUser.union_id == union_id))
        return result.scalars().first()

    # ============================================================
    # 条件查询
    # ============================================================

    def _filtered(self, user_filter: WeChatUserFilter):
        query = self._select()

        if user_filter.search:
            query = query.where(
                self._search_clause(
                    user_filter.search,
                    WeChatUser.nickname,
                    WeChatUser.real_name,
                    WeChatUser.company_name,
                    WeChatUser.email,
                )
            )
        if user_filter.subscribe is not None:
            query = query.where(WeChatUser.subscribe == user_filter.subscribe)
        if user_filter.sex is not None:
            query = query.where(WeChatUser.sex == user_filter.sex)
        if user_filter.city:
            query = query.where(WeChatUser.city == user_filter.city)
        if user_filter.province:
            query = query.where(WeChatUser.province == user_filter.province)
        if user_filter.country:
            query = query.where(WeChatUser.country == user_filter.country)
        if user_filter.subscribe_time_from:
            query = query.where(WeChatUser.subscribe_time >= user_filter.subscribe_time_from)
        if user_filter.subscribe_time_to:
            query = query.where(WeChatUser.subscribe_time <= user_filter.subscribe_time_to)
        if user_filter.created_from:
            query = query.where(WeChatUser.created_at >= user_filter.created_from)
        if user_filter.created_to:
            query = query.where(WeChatUser.created_at <= user_filter.created_to)

        return query

    async def list_with_filter(self, user_filter: WeChatUserFilter) -> Tuple[List[WeChatUser], int]:
        """
        按条件分页查询粉丝

        Returns:
            (粉丝列表, 总数)，默认按 created_at DESC 排序
        """
        order_by = self._order_clause(
            user_filter.sort_by,
            user_filter.sort_order,
            {
                "nickname": WeChatUser.nickname,
                "subscribe_time": WeChatUser.subscribe_time,
                "updated_at": WeChatUser.updated_at,
                "created_at": WeChatUser.created_at,
            },
        )
        return await self._paginate(self._filtered(user_filter), user_filter, order_by)

    async def count_with_filter(self, user_filter: WeChatUserFilter) -> int:
        return await self._count(self._filtered(user_filter))

    async def list_subscribed(self, limit: int = 100, offset: int = 0) -> List[WeChatUser]:
        query = self._select().where(WeChatUser.subscribe.is_(True))
        return await self._list(query, [WeChatUser.subscribe_time.desc()], limit=limit, offset=offset)

    async def list_unsubscribed(self, limit: int = 100, offset: int = 0) -> List[WeChatUser]:
        query = self._select().where(WeChatUser.subscribe.is_(False))
        return await self._list(query, [WeChatUser.updated_at.desc()], limit=limit, offset=offset)

    async def count_subscribed(self) -> int:
        return await self.count(subscribe=True)

    async def count_unsubscribed(self) -> int:
        return await self.count(subscribe=False)

    async def list_new_in_period(self, start: datetime, end: datetime) -> List[WeChatUser]:
        query = self._select().where(WeChatUser.created_at >= start, WeChatUser.created_at <= end)
        return await self._list(query, [WeChatUser.created_at.desc()])

    async def count_new_in_period(self, start: datetime, end: datetime) -> int:
        return await self._count(
            self._select().where(WeChatUser.created_at >= start, WeChatUser.created_at <= end)
        )

    def _active_since(self, cutoff: datetime):
        return self._select().where(
            or_(WeChatUser.updated_at >= cutoff, WeChatUser.created_at >= cutoff)
        )

    async def list_active(self, days: int = 7, limit: int = 100) -> List[WeChatUser]:
        """最近 days 天内有更新或新建的粉丝"""
        query = self._active_since(self._days_ago(days))
        return await self._list(query, [WeChatUser.updated_at.desc()], limit=limit)

    async def count_active(self, days: int = 7) -> int:
        return await self._count(self._active_since(self._days_ago(days)))

    async def search_by_nickname(self, nickname: str, limit: int = 20) -> List[WeChatUser]:
        query = self._select().where(self._search_clause(nickname, WeChatUser.nickname))
        return await self._list(query, [WeChatUser.created_at.desc()], limit=limit)

    async def search_by_real_name(self, real_name: str, limit: int = 20) -> List[WeChatUser]:
        query = self._select().where(self._search_clause(real_name, WeChatUser.real_name))
        return await self._list(query, [WeChatUser.created_at.desc()], limit=limit)

    async def search_by_company(self, company_name: str, limit: int = 20) -> List[WeChatUser]:
        query = self._select().where(self._search_clause(company_name, WeChatUser.company_name))
        return await self._list(query, [WeChatUser.created_at.desc()], limit=limit)

    # ============================================================
    # 批量操作
    # ============================================================

    async def bulk_update_subscription(self, open_ids: List[str], subscribed: bool) -> int:
        """
        批量更新关注状态

        Args:
            open_ids: open_id 列表
            subscribed: 是否关注

        Returns:
            更新的行数
        """
        if not open_ids:
            return 0

        fields = {"subscribe": subscribed}
        if subscribed:
            fields["subscribe_time"] = beijing_now()

        result = await self.session.execute(
            self._exclude_deleted(
                update(WeChatUser).where(WeChatUser.open_id.in_(open_ids))
            ).values(**self._with_updated_at(fields))
        )

        logger.info(
            "wechat_subscription_bulk_updated",
            requested_count=len(open_ids),
            updated_count=result.rowcount,
            subscribed=subscribed,
        )
        return result.rowcount

    async def bulk_delete(self, user_ids: List[str], deleted_by: Optional[str] = None) -> int:
        return await self.soft_delete_batch(user_ids, deleted_by=deleted_by)

    # ============================================================
    # 统计
    # ============================================================

    async def get_statistics(self) -> WeChatUserStatistics:
        """
        粉丝统计

        Returns:
            总数、关注 / 取关、本周 / 本月新增、今日 / 本周活跃、性别与地域分布
        """
        now = beijing_now()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = today - timedelta(days=today.weekday())
        month_start = today.replace(day=1)

        def _since(column, cutoff):
            return func.coalesce(func.sum(case((column >= cutoff, 1), else_=0)), 0)

        def _active(cutoff):
            return func.coalesce(
                func.sum(
                    case(
                        (or_(WeChatUser.updated_at >= cutoff, WeChatUser.created_at >= cutoff), 1),
                        else_=0,
                    )
                ),
                0,
            )

        def _flag(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        query = self._exclude_deleted(
            select(
                func.count(),
                _flag(WeChatUser.subscribe.is_(True)),
                _since(WeChatUser.created_at, week_start),
                _since(WeChatUser.created_at, month_start),
                _active(today),
                _active(week_start),
                _flag(WeChatUser.sex == 1),
                _flag(WeChatUser.sex == 2),
            ).select_from(WeChatUser)
        )
        row = (await self.session.execute(query)).one()
        total, subscribed, new_week, new_month, active_today, active_week, male, female = (
            int(value or 0) for value in row
        )

        statistics = WeChatUserStatistics(
            total_users=total,
            subscribed_users=subscribed,
            unsubscribed_users=total - subscribed,
            new_users_this_week=new_week,
            new_users_this_month=new_month,
            active_users_today=active_today,
            active_users_this_week=active_week,
            male_users=male,
            female_users=female,
            unknown_sex_users=total - male - female,
            top_cities=await self._top_locations(WeChatUser.city),
            top_provinces=await self._top_locations(WeChatUser.province),
            top_countries=await self._top_locations(WeChatUser.country),
        )

        logger.debug("wechat_user_statistics_computed", total_users=total, subscribed_users=subscribed)
        return statistics

    async def _top_locations(self, column) -> List[LocationCount]:
        query = self._exclude_deleted(
            select(column, func.count().label("cnt"))
            .select_from(WeChatUser)
            .where(column.is_not(None), column != "")
        ).group_by(column).order_by(func.count().desc(), column.asc()).limit(settings.TOP_LOCATIONS_LIMIT)

        result = await self.session.execute(query)
        return [LocationCount(name=name, count=count) for name, count in result.all()]
