"""
Repository 异常包装测试（Mock 数据库会话）
"""
from unittest.mock import AsyncMock, MagicMock
import pytest
from sqlalchemy.exc import SQLAlchemyError

from sitecms.core.exceptions import DatabaseError, ErrorCode, NotFoundError
from sitecms.db.repositories.site_event_repo import SiteEventRepository


def _empty_result():
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    return result


@pytest.mark.asyncio
class TestSetCurrentErrors:
    """set_current 失败路径"""

    async def test_sqlalchemy_error_is_wrapped(self):
        mock_session = AsyncMock()
        mock_session.execute.side_effect = SQLAlchemyError("connection reset")

        repo = SiteEventRepository(mock_session)
        repo.get_or_raise = AsyncMock(return_value=MagicMock(id="e1"))

        with pytest.raises(DatabaseError) as exc_info:
            await repo.set_current("e1")

        error = exc_info.value
        assert error.code == ErrorCode.DATABASE_ERROR
        assert error.message == "failed to set is_current"
        assert isinstance(error.__cause__, SQLAlchemyError)
        assert "connection reset" in str(error)

        # 失败时不刷新目标对象
        mock_session.refresh.assert_not_awaited()

    async def test_missing_event_skips_updates(self):
        mock_session = AsyncMock()
        mock_session.execute.return_value = _empty_result()

        repo = SiteEventRepository(mock_session)

        with pytest.raises(NotFoundError):
            await repo.set_current("missing")

        # 只执行了一次主键查询
        assert mock_session.execute.await_count == 1
        mock_session.flush.assert_not_awaited()
