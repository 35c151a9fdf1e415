"""
访问记录 Repository

负责 hits 表的数据访问操作与访问统计。

职责范围：
- 按资源 / 用户 / 会话 / 推广码查询访问记录
- 按 HitAnalyticsFilter 汇总：访问类型、独立用户、阅读时长、完成率、地域 / 设备 / 浏览器分布
- 按天 / 按小时统计、来源统计、阅读分析、推广码统计
- 历史访问记录清理（物理删除）

不包含：
- 周 / 月维度的汇总报表
"""
import statistics
from datetime import datetime
from typing import Any, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, case, extract
import structlog

from sitecms.config.settings import settings
from sitecms.models.constants import HitType
from sitecms.models.database import Hit
from sitecms.models.filters import HitAnalyticsFilter
from sitecms.models.stats import (
    BrowserStats,
    DailyHitStats,
    DeviceStats,
    GeographicStats,
    HitAnalytics,
    HourlyHitStats,
    PromotionStats,
    ReadingAnalytics,
    ReadTimeBucket,
    ReferrerStats,
    UserEngagementStats,
)
from .base import BaseRepository

logger = structlog.get_logger(__name__)

# (标签, 下限秒数含, 上限秒数不含)
READ_TIME_BUCKETS = [
    ("0-30s", 0, 30),
    ("30-60s", 30, 60),
    ("1-2m", 60, 120),
    ("2-5m", 120, 300),
    ("5m+", 300, None),
]


def _count_type(hit_type: HitType):
    return func.coalesce(func.sum(case((Hit.hit_type == hit_type.value, 1), else_=0)), 0)


class HitRepository(BaseRepository[Hit]):
    """访问记录数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Hit)

    # ============================================================
    # 查询方法
    # ============================================================

    async def list_by_resource(
        self,
        resource_id: str,
        resource_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Hit]:
        query = self._select().where(Hit.resource_id == resource_id)
        if resource_type:
            query = query.where(Hit.resource_type == resource_type)
        return await self._list(query, [Hit.created_at.desc()], limit=limit, offset=offset)

    async def list_by_user(self, user_id: str, limit: int = 100, offset: int = 0) -> List[Hit]:
        query = self._select().where(Hit.user_id == user_id)
        return await self._list(query, [Hit.created_at.desc()], limit=limit, offset=offset)

    async def list_by_session(self, session_id: str) -> List[Hit]:
        query = self._select().where(Hit.session_id == session_id)
        return await self._list(query, [Hit.created_at.asc()])

    async def list_by_promotion_code(self, promotion_code: str, limit: int = 100, offset: int = 0) -> List[Hit]:
        query = self._select().where(Hit.promotion_code == promotion_code)
        return await self._list(query, [Hit.created_at.desc()], limit=limit, offset=offset)

    async def count_by_resource(self, resource_id: str, resource_type: Optional[str] = None) -> int:
        if resource_type:
            return await self.count(resource_id=resource_id, resource_type=resource_type)
        return await self.count(resource_id=resource_id)

    async def count_by_user(self, user_id: str) -> int:
        return await self.count(user_id=user_id)

    async def count_by_filter(self, hit_filter: HitAnalyticsFilter) -> int:
        query = select(func.count()).select_from(Hit).where(*self._conditions(hit_filter))
        return (await self.session.execute(query)).scalar_one()

    # ============================================================
    # 汇总统计
    # ============================================================

    def _conditions(self, hit_filter: Optional[HitAnalyticsFilter]) -> List[Any]:
        """HitAnalyticsFilter -> WHERE 条件列表（始终排除软删除记录）"""
        conditions: List[Any] = [Hit.is_deleted.is_(False)]
        if hit_filter is None:
            return conditions

        if hit_filter.resource_id:
            conditions.append(Hit.resource_id == hit_filter.resource_id)
        if hit_filter.resource_type:
            conditions.append(Hit.resource_type == hit_filter.resource_type)
        if hit_filter.user_id:
            conditions.append(Hit.user_id == hit_filter.user_id)
        if hit_filter.hit_type:
            conditions.append(Hit.hit_type == hit_filter.hit_type)
        if hit_filter.days:
            conditions.append(Hit.created_at >= self._days_ago(hit_filter.days))
        if hit_filter.start_date:
            conditions.append(Hit.created_at >= hit_filter.start_date)
        if hit_filter.end_date:
            conditions.append(Hit.created_at <= hit_filter.end_date)
        if hit_filter.country:
            conditions.append(Hit.country == hit_filter.country)
        if hit_filter.city:
            conditions.append(Hit.city == hit_filter.city)
        if hit_filter.device_type:
            conditions.append(Hit.device_type == hit_filter.device_type)
        if hit_filter.platform:
            conditions.append(Hit.platform == hit_filter.platform)
        if hit_filter.browser:
            conditions.append(Hit.browser == hit_filter.browser)
        if hit_filter.promotion_code:
            conditions.append(Hit.promotion_code == hit_filter.promotion_code)

        return conditions

    async def get_analytics(self, hit_filter: Optional[HitAnalyticsFilter] = None) -> HitAnalytics:
        """
        访问汇总统计

        - unique_users: 非空 user_id 去重计数
        - avg_read_time: 阅读时长 > 0 的阅读记录平均值
        - completion_rate: 阅读进度达到 READ_COMPLETION_THRESHOLD 的阅读记录占比（百分比）
        """
        conditions = self._conditions(hit_filter)
        is_read = Hit.hit_type == HitType.READ.value

        query = select(
            func.count(),
            _count_type(HitType.VIEW),
            _count_type(HitType.READ),
            _count_type(HitType.SHARE),
            func.count(func.distinct(Hit.user_id)),
            func.count(func.distinct(Hit.session_id)),
            func.avg(case(((Hit.hit_type == HitType.READ.value) & (Hit.read_duration > 0), Hit.read_duration))),
            func.avg(Hit.scroll_depth),
            func.coalesce(
                func.sum(case((is_read & (Hit.read_percentage >= settings.READ_COMPLETION_THRESHOLD), 1), else_=0)),
                0,
            ),
            func.max(Hit.created_at),
        ).where(*conditions)

        row = (await self.session.execute(query)).one()
        total, views, reads, shares, users, sessions, avg_read, avg_scroll, completed, last_activity = row

        analytics = HitAnalytics(
            total_hits=total,
            total_views=int(views),
            total_reads=int(reads),
            total_shares=int(shares),
            unique_users=users,
            unique_sessions=sessions,
            avg_read_time=float(avg_read or 0.0),
            avg_scroll_depth=float(avg_scroll or 0.0),
            completion_rate=self._percentage(int(completed), int(reads)),
            last_activity=last_activity,
            top_countries=await self.get_geographic_stats(hit_filter, limit=10),
            top_devices=await self.get_device_stats(hit_filter, limit=10),
            top_browsers=await self._browser_stats(conditions, limit=10),
        )

        logger.debug("hit_analytics_computed", total_hits=total, unique_users=users)
        return analytics

    async def get_geographic_stats(
        self,
        hit_filter: Optional[HitAnalyticsFilter] = None,
        limit: int = 20,
    ) -> List[GeographicStats]:
        """按国家 + 城市分组的访问量"""
        query = (
            select(Hit.country, Hit.city, func.count().label("cnt"))
            .where(*self._conditions(hit_filter), Hit.country.is_not(None))
            .group_by(Hit.country, Hit.city)
            .order_by(func.count().desc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [GeographicStats(country=country, city=city, count=count) for country, city, count in result.all()]

    async def get_device_stats(
        self,
        hit_filter: Optional[HitAnalyticsFilter] = None,
        limit: int = 20,
    ) -> List[DeviceStats]:
        """按设备类型 + 平台分组的访问量"""
        query = (
            select(Hit.device_type, Hit.platform, func.count().label("cnt"))
            .where(*self._conditions(hit_filter), Hit.device_type.is_not(None))
            .group_by(Hit.device_type, Hit.platform)
            .order_by(func.count().desc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [
            DeviceStats(device_type=device_type, platform=platform, count=count)
            for device_type, platform, count in result.all()
        ]

    async def _browser_stats(self, conditions: List[Any], limit: int) -> List[BrowserStats]:
        query = (
            select(Hit.browser, func.count().label("cnt"))
            .where(*conditions, Hit.browser.is_not(None))
            .group_by(Hit.browser)
            .order_by(func.count().desc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [BrowserStats(browser=browser, count=count) for browser, count in result.all()]

    async def get_hourly_stats(self, hit_filter: Optional[HitAnalyticsFilter] = None) -> List[HourlyHitStats]:
        """
        按小时（0-23）统计访问量

        Returns:
            24 个元素的列表，没有访问的小时计数为 0
        """
        hour = extract("hour", Hit.created_at)
        query = (
            select(hour, func.count())
            .where(*self._conditions(hit_filter))
            .group_by(hour)
        )
        result = await self.session.execute(query)
        counts = {int(value): count for value, count in result.all()}
        return [HourlyHitStats(hour=h, count=counts.get(h, 0)) for h in range(24)]

    async def get_daily_stats(
        self,
        resource_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        days: int = 30,
    ) -> List[DailyHitStats]:
        """
        最近 days 天按天统计（只返回有访问的日期，按日期升序）
        """
        hit_filter = HitAnalyticsFilter(resource_id=resource_id, resource_type=resource_type, days=days)
        day = func.date(Hit.created_at)
        query = (
            select(
                day,
                _count_type(HitType.VIEW),
                _count_type(HitType.READ),
                func.count(func.distinct(Hit.user_id)),
                func.avg(case(((Hit.hit_type == HitType.READ.value) & (Hit.read_duration > 0), Hit.read_duration))),
            )
            .where(*self._conditions(hit_filter))
            .group_by(day)
            .order_by(day.asc())
        )
        result = await self.session.execute(query)
        return [
            DailyHitStats(
                day=value,
                views=int(views),
                reads=int(reads),
                unique_users=users,
                avg_read_time=float(avg_read or 0.0),
            )
            for value, views, reads, users, avg_read in result.all()
        ]

    async def get_top_referrers(
        self,
        hit_filter: Optional[HitAnalyticsFilter] = None,
        limit: int = 10,
    ) -> List[ReferrerStats]:
        query = (
            select(Hit.referrer, func.count(), func.count(func.distinct(Hit.user_id)))
            .where(*self._conditions(hit_filter), Hit.referrer.is_not(None), Hit.referrer != "")
            .group_by(Hit.referrer)
            .order_by(func.count().desc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [
            ReferrerStats(referrer=referrer, count=count, unique_users=users)
            for referrer, count, users in result.all()
        ]

    async def get_user_engagement(self, user_id: str, days: int = 30) -> UserEngagementStats:
        """用户最近 days 天的访问与阅读时长"""
        hit_filter = HitAnalyticsFilter(user_id=user_id, days=days)
        query = select(
            func.count(),
            func.coalesce(func.sum(Hit.read_duration), 0),
            func.avg(case((Hit.read_duration > 0, Hit.read_duration))),
            func.max(Hit.created_at),
        ).where(*self._conditions(hit_filter))
        total, read_time, avg_read, last_activity = (await self.session.execute(query)).one()

        return UserEngagementStats(
            user_id=user_id,
            total_hits=total,
            total_read_time=int(read_time),
            avg_read_time=float(avg_read or 0.0),
            last_activity=last_activity,
        )

    async def get_reading_analytics(self, resource_id: str, days: int = 30) -> ReadingAnalytics:
        """
        资源阅读分析

        时长类指标只统计 read_duration > 0 的阅读记录，分布区间为
        0-30s / 30-60s / 1-2m / 2-5m / 5m+。
        """
        hit_filter = HitAnalyticsFilter(resource_id=resource_id, hit_type=HitType.READ.value, days=days)
        result = await self.session.execute(
            select(Hit.read_duration, Hit.read_percentage, Hit.scroll_depth).where(*self._conditions(hit_filter))
        )
        rows = result.all()
        if not rows:
            return ReadingAnalytics()

        durations = [duration for duration, _, _ in rows if duration and duration > 0]
        completed = sum(1 for _, percentage, _ in rows if percentage >= settings.READ_COMPLETION_THRESHOLD)

        buckets = []
        for label, lower, upper in READ_TIME_BUCKETS:
            count = sum(1 for d in durations if d >= lower and (upper is None or d < upper))
            buckets.append(
                ReadTimeBucket(time_range=label, count=count, percentage=self._percentage(count, len(durations)))
            )

        return ReadingAnalytics(
            total_reads=len(rows),
            avg_read_time=statistics.fmean(durations) if durations else 0.0,
            median_read_time=float(statistics.median(durations)) if durations else 0.0,
            avg_scroll_depth=statistics.fmean(scroll for _, _, scroll in rows),
            completion_rate=self._percentage(completed, len(rows)),
            read_time_distribution=buckets,
        )

    # ============================================================
    # 推广码
    # ============================================================

    def _promotion_columns(self):
        return (
            func.count(),
            func.count(func.distinct(Hit.user_id)),
            _count_type(HitType.VIEW),
            _count_type(HitType.READ),
            _count_type(HitType.SHARE),
        )

    async def get_promotion_stats(self, promotion_code: str, days: int = 30) -> PromotionStats:
        hit_filter = HitAnalyticsFilter(promotion_code=promotion_code, days=days)
        query = select(*self._promotion_columns()).where(*self._conditions(hit_filter))
        total, users, views, reads, shares = (await self.session.execute(query)).one()

        return PromotionStats(
            promotion_code=promotion_code,
            total_hits=total,
            unique_users=users,
            views=int(views),
            reads=int(reads),
            shares=int(shares),
        )

    async def get_top_promotions(self, limit: int = 10, days: int = 30) -> List[PromotionStats]:
        hit_filter = HitAnalyticsFilter(days=days)
        query = (
            select(Hit.promotion_code, *self._promotion_columns())
            .where(*self._conditions(hit_filter), Hit.promotion_code.is_not(None), Hit.promotion_code != "")
            .group_by(Hit.promotion_code)
            .order_by(func.count().desc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [
            PromotionStats(
                promotion_code=code,
                total_hits=total,
                unique_users=users,
                views=int(views),
                reads=int(reads),
                shares=int(shares),
            )
            for code, total, users, views, reads, shares in result.all()
        ]

    # ============================================================
    # 清理
    # ============================================================

    async def delete_old_hits(self, older_than: datetime) -> int:
        """
        物理删除 older_than 之前的访问记录

        Returns:
            删除的行数
        """
        result = await self.session.execute(delete(Hit).where(Hit.created_at < older_than))
        logger.info("old_hits_deleted", older_than=older_than.isoformat(), deleted_count=result.rowcount)
        return result.rowcount
