"""
基础 Repository

提供泛型 CRUD 操作，所有具体 Repository 继承此类。

设计原则：
- Repository 只负责数据访问，不包含业务逻辑
- Repository 不提交事务，只在需要时 flush；由调用方 commit
- 带 is_deleted 字段的模型默认软删除，所有读取方法自动排除已删除记录
- 使用 SQLAlchemy 2.0 新语法
"""
from datetime import timedelta
from typing import TypeVar, Generic, Type, Optional, List, Any, Dict, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select, update, delete, func, or_
from sqlmodel import SQLModel
import structlog

from sitecms.core.exceptions import DatabaseError, NotFoundError
from sitecms.models.constants import SortOrder
from sitecms.models.database import beijing_now
from sitecms.models.filters import PageParams

logger = structlog.get_logger(__name__)

# 泛型类型变量（必须是 SQLModel 子类）
T = TypeVar('T', bound=SQLModel)


class BaseRepository(Generic[T]):
    """
    基础仓储类，提供通用 CRUD 操作

    使用示例：
    ```python
    class WeChatUserRepository(BaseRepository[WeChatUser]):
        def __init__(self, session: AsyncSession):
            super().__init__(session, WeChatUser)

        async def get_by_open_id(self, open_id: str) -> Optional[WeChatUser]:
            result = await self.session.execute(
                self._select().where(WeChatUser.open_id == open_id)
            )
            return result.scalar_one_or_none()
    ```
    """

    def __init__(self, session: AsyncSession, model: Type[T]):
        """
        初始化仓储

        Args:
            session: 异步数据库会话
            model: SQLModel 模型类
        """
        self.session = session
        self.model = model
        self._model_name = model.__name__
        self._soft_delete = hasattr(model, "is_deleted")

    # ============================================================
    # 基础查询方法
    # ============================================================

    async def get_by_id(
        self,
        id_value: Any,
        *,
        include_deleted: bool = False,
        options: Optional[Sequence[Any]] = None,
    ) -> Optional[T]:
        """
        根据主键 ID 查询单条记录

        Args:
            id_value: 主键值
            include_deleted: 是否包含已软删除的记录
            options: 预加载选项（如 selectinload(Model.relation)）

        Returns:
            实体对象，如果不存在则返回 None
        """
        query = self._select(include_deleted=include_deleted).where(
            self._get_id_column() == id_value
        )
        if options:
            query = query.options(*options)

        result = await self.session.execute(query)
        entity = result.scalar_one_or_none()

        logger.debug(
            "entity_found" if entity else "entity_not_found",
            model=self._model_name,
            id=id_value,
        )

        return entity

    async def get_or_raise(
        self,
        id_value: Any,
        *,
        include_deleted: bool = False,
        options: Optional[Sequence[Any]] = None,
    ) -> T:
        """
        根据主键 ID 查询，不存在时抛出 NotFoundError

        Raises:
            NotFoundError: 记录不存在（或已被软删除）
        """
        entity = await self.get_by_id(
            id_value, include_deleted=include_deleted, options=options
        )
        if entity is None:
            raise NotFoundError(self._model_name, id_value)
        return entity

    async def get_by_ids(self, id_values: List[Any]) -> List[T]:
        """
        根据多个主键 ID 批量查询

        Args:
            id_values: 主键值列表

        Returns:
            实体对象列表（不保证与输入顺序一致）
        """
        if not id_values:
            return []

        result = await self.session.execute(
            self._select().where(self._get_id_column().in_(id_values))
        )
        entities = list(result.scalars().all())

        logger.debug(
            "entities_found_by_ids",
            model=self._model_name,
            requested_count=len(id_values),
            found_count=len(entities),
        )

        return entities

    async def list_all(
        self,
        limit: int = 100,
        offset: int = 0,
        order_by: Optional[Any] = None,
        include_deleted: bool = False,
    ) -> List[T]:
        """
        查询所有记录（分页）

        Args:
            limit: 返回数量限制（默认 100）
            offset: 分页偏移（默认 0）
            order_by: 排序字段（默认按创建时间降序）
            include_deleted: 是否包含已软删除的记录

        Returns:
            实体对象列表
        """
        query = self._select(include_deleted=include_deleted)

        if order_by is None and hasattr(self.model, "created_at"):
            order_by = self.model.created_at.desc()
        if order_by is not None:
            query = query.order_by(order_by)

        query = query.limit(limit).offset(offset)

        result = await self.session.execute(query)
        entities = list(result.scalars().all())

        logger.debug(
            "entities_listed",
            model=self._model_name,
            count=len(entities),
            limit=limit,
            offset=offset,
        )

        return entities

    async def count(self, **filters) -> int:
        """
        统计记录数量（不含已软删除记录）

        Args:
            **filters: 过滤条件（键值对，列表值转换为 IN）

        Returns:
            记录数量
        """
        query = self._exclude_deleted(select(func.count()).select_from(self.model))

        if filters:
            query = self._apply_filters(query, filters)

        result = await self.session.execute(query)
        count = result.scalar_one()

        logger.debug(
            "entities_counted",
            model=self._model_name,
            count=count,
            filters=filters,
        )

        return count

    async def exists(self, **filters) -> bool:
        """
        检查记录是否存在

        Args:
            **filters: 过滤条件（键值对）

        Returns:
            True 如果存在，False 如果不存在
        """
        query = self._select().limit(1)
        query = self._apply_filters(query, filters)

        result = await self.session.execute(query)
        exists = result.scalar_one_or_none() is not None

        logger.debug(
            "entity_exists_check",
            model=self._model_name,
            exists=exists,
            filters=filters,
        )

        return exists

    # ============================================================
    # 创建和更新方法
    # ============================================================

    async def create(self, entity: T, *, flush: bool = False) -> T:
        """
        创建新记录

        Args:
            entity: 实体对象
            flush: 是否立即刷新到数据库（默认 False）

        Returns:
            创建后的实体对象

        注意：
        - 默认情况下，只将实体添加到会话，不会立即刷新到数据库
        - 调用者负责在适当的时候 commit 事务
        """
        self.session.add(entity)

        if flush:
            await self.session.flush()
            await self.session.refresh(entity)

        logger.info(
            "entity_created",
            model=self._model_name,
            id=self._get_entity_id(entity),
            flushed=flush,
        )

        return entity

    async def create_batch(self, entities: List[T], *, flush: bool = False) -> List[T]:
        """
        批量创建记录

        Args:
            entities: 实体对象列表
            flush: 是否立即刷新到数据库（默认 False）

        Returns:
            创建后的实体对象列表
        """
        if not entities:
            return []

        self.session.add_all(entities)

        if flush:
            await self.session.flush()
            for entity in entities:
                await self.session.refresh(entity)

        logger.info(
            "entities_created_batch",
            model=self._model_name,
            count=len(entities),
            flushed=flush,
        )

        return entities

    async def update_by_id(
        self,
        id_value: Any,
        **fields: Any,
    ) -> bool:
        """
        根据主键 ID 更新记录的指定字段（自动刷新 updated_at）

        Args:
            id_value: 主键值
            **fields: 要更新的字段（键值对）

        Returns:
            True 如果更新成功，False 如果记录不存在
        """
        if not fields:
            logger.warning(
                "update_called_without_fields",
                model=self._model_name,
                id=id_value,
            )
            return False

        query = self._exclude_deleted(
            update(self.model).where(self._get_id_column() == id_value)
        ).values(**self._with_updated_at(fields))

        result = await self.session.execute(query)
        updated = result.rowcount > 0

        if updated:
            logger.info(
                "entity_updated",
                model=self._model_name,
                id=id_value,
                updated_fields=list(fields.keys()),
            )
        else:
            logger.warning(
                "entity_update_failed_not_found",
                model=self._model_name,
                id=id_value,
            )

        return updated

    async def update(self, entity: T, *, flush: bool = False) -> T:
        """
        更新实体对象

        Args:
            entity: 已修改的实体对象
            flush: 是否立即刷新到数据库（默认 False）

        Returns:
            更新后的实体对象
        """
        if hasattr(entity, "updated_at"):
            entity.updated_at = beijing_now()
        self.session.add(entity)

        if flush:
            await self.session.flush()
            await self.session.refresh(entity)

        logger.info(
            "entity_updated_by_object",
            model=self._model_name,
            id=self._get_entity_id(entity),
            flushed=flush,
        )

        return entity

    async def bulk_update(self, id_values: List[Any], **fields: Any) -> int:
        """
        批量更新多条记录的相同字段

        Returns:
            实际更新的行数
        """
        if not id_values or not fields:
            return 0

        query = self._exclude_deleted(
            update(self.model).where(self._get_id_column().in_(id_values))
        ).values(**self._with_updated_at(fields))

        result = await self.session.execute(query)

        logger.info(
            "entities_bulk_updated",
            model=self._model_name,
            requested_count=len(id_values),
            updated_count=result.rowcount,
            updated_fields=list(fields.keys()),
        )

        return result.rowcount

    # ============================================================
    # 删除方法
    # ============================================================

    async def delete_by_id(self, id_value: Any) -> bool:
        """
        根据主键 ID 物理删除记录

        Args:
            id_value: 主键值

        Returns:
            True 如果删除成功，False 如果记录不存在
        """
        result = await self.session.execute(
            delete(self.model).where(self._get_id_column() == id_value)
        )

        deleted = result.rowcount > 0

        if deleted:
            logger.info(
                "entity_deleted",
                model=self._model_name,
                id=id_value,
            )
        else:
            logger.warning(
                "entity_delete_failed_not_found",
                model=self._model_name,
                id=id_value,
            )

        return deleted

    async def delete(self, entity: T) -> bool:
        """
        物理删除实体对象（实体必须已被会话跟踪）
        """
        await self.session.delete(entity)

        logger.info(
            "entity_deleted_by_object",
            model=self._model_name,
            id=self._get_entity_id(entity),
        )

        return True

    async def soft_delete_by_id(self, id_value: Any, deleted_by: Optional[str] = None) -> bool:
        """
        软删除记录（模型没有软删除字段时退化为物理删除）

        Args:
            id_value: 主键值
            deleted_by: 删除人 ID

        Returns:
            True 如果删除成功，False 如果记录不存在或已删除
        """
        if not self._soft_delete:
            return await self.delete_by_id(id_value)

        return await self.soft_delete_batch([id_value], deleted_by=deleted_by) > 0

    async def soft_delete_batch(self, id_values: List[Any], deleted_by: Optional[str] = None) -> int:
        """
        批量软删除

        Returns:
            删除的行数
        """
        if not id_values:
            return 0

        if not self._soft_delete:
            result = await self.session.execute(
                delete(self.model).where(self._get_id_column().in_(id_values))
            )
            logger.info("entities_deleted_batch", model=self._model_name, count=result.rowcount)
            return result.rowcount

        result = await self.session.execute(
            self._exclude_deleted(
                update(self.model).where(self._get_id_column().in_(id_values))
            ).values(is_deleted=True, deleted_at=beijing_now(), deleted_by=deleted_by)
        )

        logger.info(
            "entities_soft_deleted",
            model=self._model_name,
            requested_count=len(id_values),
            deleted_count=result.rowcount,
            deleted_by=deleted_by,
        )

        return result.rowcount

    async def restore_by_id(self, id_value: Any) -> bool:
        """
        恢复已软删除的记录

        Returns:
            True 如果恢复成功
        """
        if not self._soft_delete:
            return False

        result = await self.session.execute(
            update(self.model)
            .where(self._get_id_column() == id_value, self.model.is_deleted.is_(True))
            .values(is_deleted=False, deleted_at=None, deleted_by=None)
        )

        restored = result.rowcount > 0
        logger.info("entity_restored", model=self._model_name, id=id_value, restored=restored)
        return restored

    # ============================================================
    # 查询构建辅助方法
    # ============================================================

    def _select(self, *, include_deleted: bool = False) -> Any:
        """构建 SELECT，默认排除软删除记录"""
        query = select(self.model)
        if not include_deleted:
            query = self._exclude_deleted(query)
        return query

    def _exclude_deleted(self, query: Any) -> Any:
        if self._soft_delete:
            query = query.where(self.model.is_deleted.is_(False))
        return query

    async def _paginate(
        self,
        query: Any,
        page: PageParams,
        order_by: Sequence[Any],
    ) -> Tuple[List[T], int]:
        """
        分页查询

        先在相同过滤条件上统计总数，再应用排序与 offset/limit。

        Returns:
            (当前页记录, 总数)
        """
        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        total = (await self.session.execute(count_query)).scalar_one()

        result = await self.session.execute(
            query.order_by(*order_by).offset(page.offset).limit(page.limit)
        )
        items = list(result.scalars().all())

        logger.debug(
            "entities_paginated",
            model=self._model_name,
            page=page.page,
            page_size=page.page_size,
            count=len(items),
            total=total,
        )

        return items, total

    async def _list(self, query: Any, order_by: Sequence[Any], limit: Optional[int] = None, offset: int = 0) -> List[T]:
        query = query.order_by(*order_by)
        if offset:
            query = query.offset(offset)
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def _count(self, query: Any) -> int:
        """统计任意 SELECT 的结果行数"""
        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        return (await self.session.execute(count_query)).scalar_one()

    def _order_clause(
        self,
        sort_by: Optional[str],
        sort_order: SortOrder,
        allowed: Dict[str, Any],
        default: Optional[Sequence[Any]] = None,
    ) -> List[Any]:
        """
        把 sort_by / sort_order 转换为 ORDER BY 子句

        sort_by 不在 allowed 中时使用 default（默认 created_at DESC）。
        """
        column = allowed.get((sort_by or "").lower())
        if column is None:
            if default is not None:
                return list(default)
            return [self.model.created_at.desc()]
        return [column.asc() if sort_order == SortOrder.ASC else column.desc()]

    @staticmethod
    def _search_clause(term: str, *columns: Any) -> Any:
        pattern = f"%{term.strip()}%"
        return or_(*[column.ilike(pattern) for column in columns])

    @staticmethod
    def _tags_clause(column: Any, tags: Sequence[str]) -> Any:
        """逗号分隔标签列命中任意一个标签"""
        return or_(*[column.ilike(f"%{tag.strip()}%") for tag in tags if tag.strip()])

    @staticmethod
    def _days_ago(days: int):
        return beijing_now() - timedelta(days=days)

    @staticmethod
    def _percentage(part: float, total: float) -> float:
        """百分比（0-100），total 为 0 时返回 0"""
        if not total:
            return 0.0
        return round(part / total * 100, 2)

    # ============================================================
    # 写操作辅助方法
    # ============================================================

    async def _increment(self, id_value: Any, column_name: str, amount: int = 1) -> bool:
        """原子自增计数列：col = col + amount"""
        column = getattr(self.model, column_name)
        result = await self.session.execute(
            self._exclude_deleted(
                update(self.model).where(self._get_id_column() == id_value)
            ).values({column_name: column + amount})
        )

        incremented = result.rowcount > 0
        logger.debug(
            "counter_incremented",
            model=self._model_name,
            id=id_value,
            column=column_name,
            amount=amount,
            success=incremented,
        )
        return incremented

    async def _set_exclusive_flag(
        self,
        flag_name: str,
        id_value: Any,
        *scope: Any,
    ) -> T:
        """
        两步事务：先清除所有记录（或 scope 范围内记录）的标记，再设置目标记录

        Args:
            flag_name: 布尔列名（如 is_current / is_default / is_main_story）
            id_value: 目标记录 ID
            *scope: 额外的 WHERE 条件，限定清除范围

        Returns:
            设置后的目标实体

        Raises:
            NotFoundError: 目标记录不存在
            DatabaseError: 数据库执行失败
        """
        target = await self.get_or_raise(id_value)
        flag_column = getattr(self.model, flag_name)

        try:
            await self.session.execute(
                update(self.model)
                .where(flag_column.is_(True), *scope)
                .values({flag_name: False})
            )
            await self.session.execute(
                update(self.model)
                .where(self._get_id_column() == id_value)
                .values(self._with_updated_at({flag_name: True}))
            )
            await self.session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "exclusive_flag_update_failed",
                model=self._model_name,
                flag=flag_name,
                id=id_value,
                error=str(exc),
            )
            raise DatabaseError(f"failed to set {flag_name}") from exc

        await self.session.refresh(target)

        logger.info(
            "exclusive_flag_set",
            model=self._model_name,
            flag=flag_name,
            id=id_value,
        )
        return target

    def _with_updated_at(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        if hasattr(self.model, "updated_at") and "updated_at" not in fields:
            return {**fields, "updated_at": beijing_now()}
        return fields

    # ============================================================
    # 辅助方法
    # ============================================================

    def _get_id_column(self) -> Any:
        """
        获取模型的主键列

        Returns:
            主键列对象
        """
        if hasattr(self.model, 'id'):
            return self.model.id

        primary_keys = list(self.model.__table__.primary_key.columns)
        if primary_keys:
            return primary_keys[0]

        raise ValueError(f"Model {self._model_name} has no primary key defined")

    def _get_entity_id(self, entity: T) -> Any:
        """
        获取实体的主键值
        """
        if hasattr(entity, 'id'):
            return entity.id

        primary_keys = list(self.model.__table__.primary_key.columns)
        if primary_keys:
            return getattr(entity, primary_keys[0].name, None)

        return None

    def _apply_filters(self, query: Any, filters: Dict[str, Any]) -> Any:
        """
        应用过滤条件到查询

        - 列表值转换为 IN
        - None 转换为 IS NULL
        """
        for field, value in filters.items():
            if hasattr(self.model, field):
                column = getattr(self.model, field)
                if isinstance(value, list):
                    query = query.where(column.in_(value))
                elif value is None:
                    query = query.where(column.is_(None))
                else:
                    query = query.where(column == value)

        return query
