"""
微信二维码 Repository

负责 wechat_qr_codes 表的数据访问操作。

二维码通过 params_value（资源 ID）与 param_key（资源类型）关联到文章、活动、问卷等资源。
有效二维码：expire_time 为空（永久码）或 expire_time 晚于当前时间。
"""
from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, or_, and_, case
import structlog

from sitecms.models.database import WeChatQrCode, beijing_now
from sitecms.models.stats import ResourceQrStats
from .base import BaseRepository

logger = structlog.get_logger(__name__)


def _active_clause(now: datetime):
    return or_(WeChatQrCode.expire_time.is_(None), WeChatQrCode.expire_time > now)


def _expired_clause(now: datetime):
    return and_(WeChatQrCode.expire_time.is_not(None), WeChatQrCode.expire_time <= now)


class WeChatQrCodeRepository(BaseRepository[WeChatQrCode]):
    """微信二维码数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, WeChatQrCode)

    # ============================================================
    # 查询方法
    # ============================================================

    def _by_resource(self, resource_id: str, resource_type: str):
        return self._select().where(
            WeChatQrCode.params_value == resource_id,
            WeChatQrCode.param_key == resource_type,
        )

    async def get_by_resource(self, resource_id: str, resource_type: str) -> List[WeChatQrCode]:
        """某个资源的全部二维码（最新在前）"""
        return await self._list(
            self._by_resource(resource_id, resource_type),
            [WeChatQrCode.created_at.desc()],
        )

    async def get_active_by_resource(self, resource_id: str, resource_type: str) -> Optional[WeChatQrCode]:
        """
        某个资源最新的有效二维码

        Returns:
            二维码记录，如果没有有效二维码则返回 None
        """
        query = self._by_resource(resource_id, resource_type).where(_active_clause(beijing_now()))
        items = await self._list(query, [WeChatQrCode.created_at.desc()], limit=1)
        return items[0] if items else None

    async def get_by_scene_str(self, scene_str: str) -> Optional[WeChatQrCode]:
        result = await self.session.execute(self._select().where(WeChatQrCode.scene_str == scene_str))
        return result.scalars().first()

    async def get_by_ticket(self, ticket: str) -> Optional[WeChatQrCode]:
        result = await self.session.execute(self._select().where(WeChatQrCode.ticket == ticket))
        return result.scalars().first()

    async def list_active(self, limit: int = 100, offset: int = 0) -> List[WeChatQrCode]:
        query = self._select().where(_active_clause(beijing_now()))
        return await self._list(query, [WeChatQrCode.created_at.desc()], limit=limit, offset=offset)

    async def list_expired(self, limit: int = 100, offset: int = 0) -> List[WeChatQrCode]:
        query = self._select().where(_expired_clause(beijing_now()))
        return await self._list(query, [WeChatQrCode.expire_time.desc()], limit=limit, offset=offset)

    async def list_expiring(self, within: timedelta) -> List[WeChatQrCode]:
        """在 within 时间内即将过期的二维码"""
        now = beijing_now()
        query = self._select().where(
            WeChatQrCode.expire_time > now,
            WeChatQrCode.expire_time <= now + within,
        )
        return await self._list(query, [WeChatQrCode.expire_time.asc()])

    async def list_most_scanned(self, limit: int = 10, days: int = 0) -> List[WeChatQrCode]:
        """
        扫码次数最多的二维码

        Args:
            limit: 返回数量
            days: 仅统计最近 days 天内有扫码的二维码（0 表示不限制）
        """
        query = self._select().where(WeChatQrCode.scan_count > 0)
        if days > 0:
            query = query.where(WeChatQrCode.last_scanned_at >= self._days_ago(days))
        return await self._list(query, [WeChatQrCode.scan_count.desc()], limit=limit)

    async def count_active(self) -> int:
        return await self._count(self._select().where(_active_clause(beijing_now())))

    async def count_expired(self) -> int:
        return await self._count(self._select().where(_expired_clause(beijing_now())))

    async def count_by_resource(self, resource_id: str, resource_type: str) -> int:
        return await self._count(self._by_resource(resource_id, resource_type))

    async def get_resource_qr_stats(self, resource_id: str, resource_type: str) -> ResourceQrStats:
        """资源二维码统计：总数、有效、过期、累计扫码"""
        now = beijing_now()
        query = self._exclude_deleted(
            select(
                func.count(),
                func.coalesce(func.sum(case((_active_clause(now), 1), else_=0)), 0),
                func.coalesce(func.sum(WeChatQrCode.scan_count), 0),
                func.max(WeChatQrCode.last_scanned_at),
            )
            .select_from(WeChatQrCode)
            .where(
                WeChatQrCode.params_value == resource_id,
                WeChatQrCode.param_key == resource_type,
            )
        )
        total, active, scans, last_scanned_at = (await self.session.execute(query)).one()

        return ResourceQrStats(
            resource_id=resource_id,
            resource_type=resource_type,
            total_codes=total,
            active_codes=int(active),
            expired_codes=total - int(active),
            total_scans=int(scans),
            last_scanned_at=last_scanned_at,
        )

    # ============================================================
    # 更新与清理
    # ============================================================

    async def increment_scan_count(self, qr_code_id: str) -> bool:
        """扫码次数 +1 并记录扫码时间"""
        result = await self.session.execute(
            self._exclude_deleted(
                update(WeChatQrCode).where(WeChatQrCode.id == qr_code_id)
            ).values(
                scan_count=WeChatQrCode.scan_count + 1,
                last_scanned_at=beijing_now(),
            )
        )
        return result.rowcount > 0

    async def mark_expired(self, qr_code_ids: List[str]) -> int:
        """
        立即使二维码过期（expire_time = 当前时间）

        Returns:
            更新的行数
        """
        if not qr_code_ids:
            return 0

        updated = await self.bulk_update(qr_code_ids, expire_time=beijing_now())
        logger.info("qr_codes_marked_expired", count=updated)
        return updated

    async def cleanup_expired(self, older_than: datetime) -> int:
        """
        物理删除 expire_time 早于 older_than 的二维码

        Returns:
            删除的行数
        """
        result = await self.session.execute(
            delete(WeChatQrCode).where(
                WeChatQrCode.expire_time.is_not(None),
                WeChatQrCode.expire_time < older_than,
            )
        )

        logger.info(
            "expired_qr_codes_cleaned_up",
            older_than=older_than.isoformat(),
            deleted_count=result.rowcount,
        )
        return result.rowcount
