"""
基础 Repository 单元测试

测试 BaseRepository 的通用 CRUD、软删除、计数器与互斥标记操作。
"""
from datetime import timedelta
import pytest
from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from sitecms.core.exceptions import NotFoundError
from sitecms.db.repositories.base import BaseRepository
from sitecms.models.database import SiteEvent, SiteImage, VideoSession, beijing_now


@pytest.fixture
def event_repo(db_session: AsyncSession) -> BaseRepository[SiteEvent]:
    return BaseRepository(db_session, SiteEvent)


@pytest.fixture
def session_repo(db_session: AsyncSession) -> BaseRepository[VideoSession]:
    """没有软删除字段的模型"""
    return BaseRepository(db_session, VideoSession)


# ============================================================
# 测试用例
# ============================================================

@pytest.mark.asyncio
class TestBaseRepository:
    """BaseRepository 测试套件"""

    async def test_create(self, event_repo, make_event, db_session: AsyncSession):
        """测试创建实体"""
        created = await event_repo.create(make_event("Launch"), flush=True)
        await db_session.commit()

        assert created.id
        assert created.title == "Launch"
        assert created.is_deleted is False
        assert created.created_at is not None

    async def test_get_by_id(self, event_repo, make_event):
        """测试根据 ID 查询"""
        event = await event_repo.create(make_event("Launch"), flush=True)

        found = await event_repo.get_by_id(event.id)
        assert found is not None
        assert found.id == event.id

        assert await event_repo.get_by_id("non-existent") is None

    async def test_get_or_raise(self, event_repo):
        """测试查询不存在的记录抛出 NotFoundError"""
        with pytest.raises(NotFoundError) as exc_info:
            await event_repo.get_or_raise("missing-id")

        assert exc_info.value.message == "record not found"
        assert exc_info.value.details == {"model": "SiteEvent", "id": "missing-id"}

    async def test_get_by_ids(self, event_repo, make_event):
        """测试批量查询"""
        events = await event_repo.create_batch(
            [make_event(f"Event {i}") for i in range(3)], flush=True
        )

        found = await event_repo.get_by_ids([events[0].id, events[2].id, "missing"])
        assert {e.id for e in found} == {events[0].id, events[2].id}
        assert await event_repo.get_by_ids([]) == []

    async def test_list_all(self, event_repo, make_event):
        """测试分页查询（默认 created_at DESC）"""
        base_time = beijing_now()
        for i in range(5):
            await event_repo.create(
                make_event(f"Event {i}", created_at=base_time + timedelta(minutes=i)),
                flush=True,
            )

        first_page = await event_repo.list_all(limit=2)
        assert [e.title for e in first_page] == ["Event 4", "Event 3"]

        second_page = await event_repo.list_all(limit=2, offset=2)
        assert [e.title for e in second_page] == ["Event 2", "Event 1"]

    async def test_count_and_exists(self, event_repo, make_event):
        """测试计数与存在性检查（列表值转 IN，None 转 IS NULL）"""
        await event_repo.create(make_event("A", category_id="c1"), flush=True)
        await event_repo.create(make_event("B", category_id="c2"), flush=True)
        await event_repo.create(make_event("C"), flush=True)

        assert await event_repo.count() == 3
        assert await event_repo.count(category_id="c1") == 1
        assert await event_repo.count(category_id=["c1", "c2"]) == 2
        assert await event_repo.count(category_id=None) == 1

        assert await event_repo.exists(title="A") is True
        assert await event_repo.exists(title="Z") is False

    async def test_update_by_id(self, event_repo, make_event, db_session: AsyncSession):
        """测试按 ID 更新字段并刷新 updated_at"""
        event = await event_repo.create(make_event("Old"), flush=True)
        assert event.updated_at is None

        assert await event_repo.update_by_id(event.id, title="New") is True
        await db_session.refresh(event)

        assert event.title == "New"
        assert event.updated_at is not None

        assert await event_repo.update_by_id("missing", title="X") is False
        assert await event_repo.update_by_id(event.id) is False

    async def test_update_entity(self, event_repo, make_event):
        """测试按对象更新"""
        event = await event_repo.create(make_event("Old"), flush=True)
        event.title = "Changed"

        updated = await event_repo.update(event, flush=True)

        assert updated.title == "Changed"
        assert updated.updated_at is not None

    async def test_bulk_update(self, event_repo, make_event):
        """测试批量更新"""
        events = await event_repo.create_batch(
            [make_event(f"Event {i}") for i in range(3)], flush=True
        )

        count = await event_repo.bulk_update([events[0].id, events[1].id], interaction_code="X1")

        assert count == 2
        assert await event_repo.count(interaction_code="X1") == 2
        assert await event_repo.bulk_update([], interaction_code="X1") == 0

    async def test_soft_delete_and_restore(self, event_repo, make_event):
        """测试软删除：默认读取排除，include_deleted 可见，可恢复"""
        event = await event_repo.create(make_event("Temp"), flush=True)

        assert await event_repo.soft_delete_by_id(event.id, deleted_by="admin") is True
        assert await event_repo.get_by_id(event.id) is None
        assert await event_repo.count() == 0

        deleted = await event_repo.get_by_id(event.id, include_deleted=True)
        assert deleted is not None
        assert deleted.is_deleted is True
        assert deleted.deleted_by == "admin"
        assert deleted.deleted_at is not None

        # 已删除的记录不会被再次删除
        assert await event_repo.soft_delete_by_id(event.id) is False

        assert await event_repo.restore_by_id(event.id) is True
        restored = await event_repo.get_by_id(event.id)
        assert restored is not None
        assert restored.deleted_at is None

    async def test_soft_deleted_records_are_not_updated(self, event_repo, make_event):
        """测试已软删除的记录不参与更新"""
        event = await event_repo.create(make_event("Temp"), flush=True)
        await event_repo.soft_delete_by_id(event.id)

        assert await event_repo.update_by_id(event.id, title="Changed") is False

    async def test_soft_delete_falls_back_to_hard_delete(self, session_repo):
        """测试没有软删除字段的模型执行物理删除"""
        video_session = await session_repo.create(
            VideoSession(video_id="v1", session_id="s1"), flush=True
        )

        assert await session_repo.soft_delete_by_id(video_session.id) is True
        assert await session_repo.get_by_id(video_session.id) is None
        assert await session_repo.restore_by_id(video_session.id) is False

    async def test_hard_delete(self, event_repo, make_event):
        """测试物理删除"""
        event = await event_repo.create(make_event("Temp"), flush=True)

        assert await event_repo.delete_by_id(event.id) is True
        assert await event_repo.get_by_id(event.id, include_deleted=True) is None
        assert await event_repo.delete_by_id(event.id) is False

    async def test_increment(self, db_session: AsyncSession):
        """测试原子自增计数"""
        repo = BaseRepository(db_session, SiteImage)
        image = await repo.create(SiteImage(filename="a.png"), flush=True)

        assert await repo._increment(image.id, "view_count") is True
        assert await repo._increment(image.id, "view_count", 2) is True
        await db_session.refresh(image)

        assert image.view_count == 3
        assert await repo._increment("missing", "view_count") is False

    async def test_set_exclusive_flag(self, event_repo, make_event, db_session: AsyncSession):
        """测试互斥标记：设置新目标时清除旧目标"""
        first = await event_repo.create(make_event("First"), flush=True)
        second = await event_repo.create(make_event("Second"), flush=True)

        await event_repo._set_exclusive_flag("is_current", first.id)
        result = await event_repo._set_exclusive_flag("is_current", second.id)
        await db_session.refresh(first)

        assert result.id == second.id
        assert result.is_current is True
        assert first.is_current is False
        assert await event_repo.count(is_current=True) == 1

    async def test_set_exclusive_flag_missing_target(self, event_repo):
        """测试目标不存在时抛出 NotFoundError"""
        with pytest.raises(NotFoundError):
            await event_repo._set_exclusive_flag("is_current", "missing")


class TestPercentage:
    """百分比辅助方法"""

    def test_percentage(self):
        assert BaseRepository._percentage(1, 4) == 25.0
        assert BaseRepository._percentage(1, 3) == 33.33

    def test_percentage_zero_total(self):
        assert BaseRepository._percentage(5, 0) == 0.0


class TestDatetimeColumns:
    """时间列映射"""

    def test_all_datetime_columns_are_naive(self):
        """所有时间列都是不带时区的 DateTime，北京时间原样写入"""
        datetime_columns = [
            column
            for table in SQLModel.metadata.tables.values()
            for column in table.columns
            if isinstance(column.type, DateTime) or isinstance(getattr(column.type, "impl", None), DateTime)
        ]

        assert len(datetime_columns) > 20
        # 不经过要求时区的 TypeDecorator 包装
        assert all(type(column.type) is DateTime for column in datetime_columns)
        assert all(column.type.timezone is False for column in datetime_columns)


@pytest.mark.asyncio
class TestNaiveDatetimeWrites:
    """写入无时区的北京时间"""

    async def test_create_update_and_soft_delete(self, event_repo, make_event, db_session: AsyncSession):
        event = await event_repo.create(make_event("Naive"), flush=True)
        assert await event_repo.update_by_id(event.id, end_date=beijing_now() + timedelta(days=3)) is True
        assert await event_repo.soft_delete_by_id(event.id) is True
        await db_session.commit()

        stored = await event_repo.get_by_id(event.id, include_deleted=True)
        await db_session.refresh(stored)

        assert stored.start_date.tzinfo is None
        assert stored.updated_at is not None
        assert stored.deleted_at.tzinfo is None
