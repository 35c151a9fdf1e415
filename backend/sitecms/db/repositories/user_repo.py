"""
后台用户 Repository

负责 users 表的数据访问操作。
"""
from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from sitecms.models.constants import UserStatus
from sitecms.models.database import User, beijing_now
from sitecms.models.filters import UserFilter
from .base import BaseRepository

logger = structlog.get_logger(__name__)


class UserRepository(BaseRepository[User]):
    """后台用户数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, User)

    # ============================================================
    # 查询方法
    # ============================================================

    async def get_by_username(self, username: str) -> Optional[User]:
        result = await self.session.execute(self._select().where(User.username == username))
        return result.scalars().first()

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(self._select().where(User.email == email))
        return result.scalars().first()

    async def get_by_wechat_open_id(self, open_id: str) -> Optional[User]:
        result = await self.session.execute(self._select().where(User.wechat_open_id == open_id))
        return result.scalars().first()

    async def get_by_wechat_union_id(self, union_id: str) -> Optional[User]:
        result = await self.session.execute(self._select().where(User.wechat_union_id == union_id))
        return result.scalars().first()

    async def list_active(self, limit: int = 50, offset: int = 0) -> List[User]:
        query = self._select().where(User.status == UserStatus.ACTIVE.value)
        return await self._list(query, [User.created_at.desc()], limit=limit, offset=offset)

    async def count_active(self) -> int:
        return await self.count(status=UserStatus.ACTIVE.value)

    async def list_with_filter(self, user_filter: UserFilter) -> Tuple[List[User], int]:
        """
        按条件分页查询用户

        Args:
            user_filter: 搜索词（用户名 / 邮箱 / 显示名）、角色、状态、排序与分页

        Returns:
            (用户列表, 总数)
        """
        query = self._select()

        if user_filter.search:
            query = query.where(
                self._search_clause(user_filter.search, User.username, User.email, User.display_name)
            )
        if user_filter.role:
            query = query.where(User.role == user_filter.role)
        if user_filter.status:
            query = query.where(User.status == user_filter.status)

        order_by = self._order_clause(
            user_filter.sort_by,
            user_filter.sort_order,
            {
                "username": User.username,
                "email": User.email,
                "last_login_at": User.last_login_at,
                "created_at": User.created_at,
            },
        )
        return await self._paginate(query, user_filter, order_by)

    # ============================================================
    # 更新方法
    # ============================================================

    async def record_login(self, user_id: str, ip_address: Optional[str] = None) -> bool:
        """记录最近一次登录时间与 IP"""
        updated = await self.update_by_id(
            user_id,
            last_login_at=beijing_now(),
            last_login_ip=ip_address,
        )
        if updated:
            logger.info("user_login_recorded", user_id=user_id)
        return updated
