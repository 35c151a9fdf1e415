"""
分类树 Repository

文章 / 图片 / 新闻 / 视频分类共用的树形结构操作，基于物化路径（path）与层级（level）：

- 根节点：level = 0，path = "/<id>"
- 子节点：level = parent.level + 1，path = "<parent.path>/<id>"

祖先查询解析 path，后代查询使用 path 前缀匹配，移动节点时重写整棵子树的 path。
"""
from typing import Any, Dict, List, Optional, Tuple, TypeVar
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select, func
import structlog

from sitecms.core.exceptions import ConflictError, DatabaseError, InvalidOperationError
from sitecms.models.database import CategoryTreeBase, beijing_now
from sitecms.models.filters import CategoryFilter
from sitecms.models.stats import CategoryTreeNode
from sitecms.utils.text import generate_slug
from .base import BaseRepository

logger = structlog.get_logger(__name__)

C = TypeVar('C', bound=CategoryTreeBase)


class CategoryTreeRepository(BaseRepository[C]):
    """
    分类树数据访问基类

    子类通过 order_column_name 指定同级排序字段（sort_order 或 display_order）。
    """

    order_column_name = "sort_order"

    def __init__(self, session: AsyncSession, model: type):
        super().__init__(session, model)

    @property
    def _order_column(self) -> Any:
        return getattr(self.model, self.order_column_name)

    def _tree_order(self) -> List[Any]:
        return [self.model.level.asc(), self._order_column.asc(), self.model.name.asc()]

    # ============================================================
    # 创建
    # ============================================================

    async def create_category(self, category: C, *, flush: bool = True) -> C:
        """
        创建分类

        - slug 为空时由名称生成
        - slug 重复时抛出 ConflictError
        - 父分类必须存在，level / path 由父分类推导

        Raises:
            ConflictError: slug 已存在
            NotFoundError: 父分类不存在
        """
        if not category.slug:
            category.slug = generate_slug(category.name)

        if not await self.is_slug_unique(category.slug):
            raise ConflictError(
                f"{self._model_name} slug already exists: {category.slug}",
                details={"slug": category.slug},
            )

        parent = None
        if category.parent_id:
            parent = await self.get_or_raise(category.parent_id)

        self._place_under(category, parent)
        return await self.create(category, flush=flush)

    # ============================================================
    # 查询
    # ============================================================

    async def get_by_slug(self, slug: str) -> Optional[C]:
        result = await self.session.execute(self._select().where(self.model.slug == slug))
        return result.scalars().first()

    async def get_by_name(self, name: str) -> Optional[C]:
        result = await self.session.execute(self._select().where(self.model.name == name))
        return result.scalars().first()

    async def get_roots(self, active_only: bool = False) -> List[C]:
        """获取所有根分类"""
        query = self._select().where(self.model.parent_id.is_(None))
        if active_only:
            query = query.where(self.model.is_active.is_(True))
        return await self._list(query, self._tree_order())

    async def get_children(self, parent_id: str, active_only: bool = False) -> List[C]:
        """获取直接子分类"""
        query = self._select().where(self.model.parent_id == parent_id)
        if active_only:
            query = query.where(self.model.is_active.is_(True))
        return await self._list(query, self._tree_order())

    async def get_by_level(self, level: int) -> List[C]:
        return await self._list(self._select().where(self.model.level == level), self._tree_order())

    async def get_ancestors(self, category_id: str) -> List[C]:
        """
        获取所有祖先分类

        Returns:
            祖先列表（按 level 升序，不含自身）
        """
        category = await self.get_or_raise(category_id)
        ancestor_ids = [part for part in category.path.split("/") if part and part != category.id]
        if not ancestor_ids:
            return []

        return await self._list(
            self._select().where(self.model.id.in_(ancestor_ids)),
            [self.model.level.asc()],
        )

    async def get_path(self, category_id: str) -> List[C]:
        """面包屑：祖先 + 自身"""
        category = await self.get_or_raise(category_id)
        ancestors = await self.get_ancestors(category_id)
        return ancestors + [category]

    async def get_descendants(self, category_id: str, max_depth: int = 0) -> List[C]:
        """
        获取所有后代分类

        Args:
            category_id: 分类 ID
            max_depth: 最大相对深度（0 表示不限制）

        Returns:
            后代列表（按 level、排序字段、名称排序）
        """
        category = await self.get_or_raise(category_id)
        query = self._select().where(self.model.path.like(f"{category.path}/%"))
        if max_depth > 0:
            query = query.where(self.model.level <= category.level + max_depth)
        return await self._list(query, self._tree_order())

    async def get_tree(self, root_id: Optional[str] = None, max_depth: int = 0) -> List[CategoryTreeNode]:
        """
        构建分类树

        Args:
            root_id: 子树根节点 ID（为空时返回整棵森林）
            max_depth: 最大深度（0 表示不限制）

        Returns:
            根节点列表，children 按 level、排序字段、名称排序
        """
        if root_id:
            root = await self.get_or_raise(root_id)
            categories = [root] + await self.get_descendants(root_id, max_depth)
        else:
            query = self._select()
            if max_depth > 0:
                query = query.where(self.model.level <= max_depth)
            categories = await self._list(query, self._tree_order())

        nodes: Dict[str, CategoryTreeNode] = {}
        roots: List[CategoryTreeNode] = []
        for category in categories:
            node = CategoryTreeNode(category=category, depth=category.level)
            nodes[category.id] = node

            parent = nodes.get(category.parent_id) if category.parent_id else None
            if category.id == root_id or parent is None:
                roots.append(node)
            else:
                parent.children.append(node)

        logger.debug(
            "category_tree_built",
            model=self._model_name,
            root_id=root_id,
            node_count=len(nodes),
            root_count=len(roots),
        )
        return roots

    async def list_with_filter(self, category_filter: CategoryFilter) -> Tuple[List[C], int]:
        """按通用分类过滤条件分页查询"""
        query = self._select()

        if category_filter.search:
            query = query.where(
                self._search_clause(
                    category_filter.search,
                    self.model.name,
                    self.model.description,
                    self.model.slug,
                )
            )
        if category_filter.is_active is not None:
            query = query.where(self.model.is_active == category_filter.is_active)
        if category_filter.is_featured is not None and hasattr(self.model, "is_featured"):
            query = query.where(self.model.is_featured == category_filter.is_featured)
        if category_filter.root_only:
            query = query.where(self.model.parent_id.is_(None))
        elif category_filter.parent_id:
            query = query.where(self.model.parent_id == category_filter.parent_id)
        if category_filter.level is not None:
            query = query.where(self.model.level == category_filter.level)

        order_by = self._order_clause(
            category_filter.sort_by,
            category_filter.sort_order,
            {
                "name": self.model.name,
                "level": self.model.level,
                "created_at": self.model.created_at,
                self.order_column_name: self._order_column,
            },
            default=self._tree_order(),
        )
        return await self._paginate(query, category_filter, order_by)

    # ============================================================
    # 唯一性校验
    # ============================================================

    async def is_slug_unique(self, slug: str, exclude_id: Optional[str] = None) -> bool:
        query = self._exclude_deleted(
            select(func.count()).select_from(self.model).where(self.model.slug == slug)
        )
        if exclude_id:
            query = query.where(self.model.id != exclude_id)
        return (await self.session.execute(query)).scalar_one() == 0

    async def is_name_unique(
        self,
        name: str,
        parent_id: Optional[str] = None,
        exclude_id: Optional[str] = None,
    ) -> bool:
        """名称在同一父分类下唯一"""
        query = self._exclude_deleted(
            select(func.count()).select_from(self.model).where(self.model.name == name)
        )
        if parent_id:
            query = query.where(self.model.parent_id == parent_id)
        else:
            query = query.where(self.model.parent_id.is_(None))
        if exclude_id:
            query = query.where(self.model.id != exclude_id)
        return (await self.session.execute(query)).scalar_one() == 0

    # ============================================================
    # 移动
    # ============================================================

    async def move(self, category_id: str, new_parent_id: Optional[str]) -> C:
        """
        移动分类到新的父分类（new_parent_id 为空时移动为根分类）

        重新计算自身及所有后代（含软删除的后代）的 level / path。

        Raises:
            NotFoundError: 分类或新父分类不存在
            InvalidOperationError: 移动到自身或自身后代之下
            DatabaseError: 数据库执行失败
        """
        category = await self.get_or_raise(category_id)
        if new_parent_id == category.parent_id:
            return category

        parent = None
        if new_parent_id:
            if new_parent_id == category_id:
                raise InvalidOperationError(
                    "cannot move category under itself",
                    details={"category_id": category_id},
                )
            parent = await self.get_or_raise(new_parent_id)
            if parent.path.startswith(f"{category.path}/"):
                raise InvalidOperationError(
                    "cannot move category under its own descendant",
                    details={"category_id": category_id, "new_parent_id": new_parent_id},
                )

        old_path = category.path
        old_level = category.level
        # 软删除的后代也要改写，恢复后才能挂在正确的祖先下
        descendants = list(
            (await self.session.execute(
                self._select(include_deleted=True).where(self.model.path.like(f"{old_path}/%"))
            )).scalars().all()
        )

        category.parent_id = new_parent_id
        self._place_under(category, parent)
        now = beijing_now()
        category.updated_at = now

        level_delta = category.level - old_level
        for descendant in descendants:
            descendant.path = category.path + descendant.path[len(old_path):]
            descendant.level += level_delta
            descendant.updated_at = now

        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise DatabaseError(f"failed to move {self._model_name}") from exc

        logger.info(
            "category_moved",
            model=self._model_name,
            id=category_id,
            new_parent_id=new_parent_id,
            descendant_count=len(descendants),
        )
        return category

    async def bulk_move(self, category_ids: List[str], new_parent_id: Optional[str]) -> int:
        """逐个移动分类，返回移动数量"""
        moved = 0
        for category_id in category_ids:
            await self.move(category_id, new_parent_id)
            moved += 1
        return moved

    @staticmethod
    def _place_under(category: CategoryTreeBase, parent: Optional[CategoryTreeBase]) -> None:
        if parent is None:
            category.level = 0
            category.path = f"/{category.id}"
        else:
            category.level = parent.level + 1
            category.path = f"{parent.path}/{category.id}"
