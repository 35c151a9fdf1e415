"""
图片分类 Repository

在分类树通用操作之上提供：
- 多条件分页检索与类型查询
- 图片数量 / 容量统计与重新计算
- 默认分类（全局唯一）维护
- 系统内置分类初始化、删除前检查与受保护删除
"""
from typing import Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
import structlog

from sitecms.core.exceptions import InvalidOperationError
from sitecms.models.constants import ImageCategoryStatus, ImageCategoryType
from sitecms.models.database import ImageCategory, SiteImage
from sitecms.models.filters import ImageCategoryFilter
from sitecms.models.stats import ImageCategoryStats, ImageCategoryWithStats
from .tree import CategoryTreeRepository

logger = structlog.get_logger(__name__)

# (name, slug, type, color, is_default)
SYSTEM_CATEGORIES = [
    ("General", "general", ImageCategoryType.GENERAL, "#6366f1", True),
    ("Articles", "articles", ImageCategoryType.ARTICLE, "#10b981", False),
    ("Events", "events", ImageCategoryType.EVENT, "#f59e0b", False),
    ("Banners", "banners", ImageCategoryType.BANNER, "#ef4444", False),
    ("Avatars", "avatars", ImageCategoryType.AVATAR, "#8b5cf6", False),
]


class ImageCategoryRepository(CategoryTreeRepository[ImageCategory]):
    """图片分类数据访问层"""

    order_column_name = "sort_order"

    def __init__(self, session: AsyncSession):
        super().__init__(session, ImageCategory)

    # ============================================================
    # 查询方法
    # ============================================================

    async def list_with_filter(self, category_filter: ImageCategoryFilter) -> Tuple[List[ImageCategory], int]:
        """
        按条件分页查询图片分类

        默认按 sort_order、名称升序。
        """
        query = self._select()

        if category_filter.search:
            query = query.where(
                self._search_clause(
                    category_filter.search,
                    ImageCategory.name,
                    ImageCategory.description,
                    ImageCategory.slug,
                )
            )
        if category_filter.type:
            query = query.where(ImageCategory.type == category_filter.type)
        if category_filter.status:
            query = query.where(ImageCategory.status == category_filter.status)
        if category_filter.root_only:
            query = query.where(ImageCategory.parent_id.is_(None))
        elif category_filter.parent_id:
            query = query.where(ImageCategory.parent_id == category_filter.parent_id)
        if category_filter.is_visible is not None:
            query = query.where(ImageCategory.is_visible == category_filter.is_visible)
        if category_filter.is_system is not None:
            query = query.where(ImageCategory.is_system == category_filter.is_system)
        if category_filter.level is not None:
            query = query.where(ImageCategory.level == category_filter.level)

        order_by = self._order_clause(
            category_filter.sort_by,
            category_filter.sort_order,
            {
                "name": ImageCategory.name,
                "sort_order": ImageCategory.sort_order,
                "image_count": ImageCategory.image_count,
                "created_at": ImageCategory.created_at,
            },
            default=[ImageCategory.sort_order.asc(), ImageCategory.name.asc()],
        )
        return await self._paginate(query, category_filter, order_by)

    async def search(self, term: str, limit: int = 20) -> List[ImageCategory]:
        query = self._select().where(
            self._search_clause(term, ImageCategory.name, ImageCategory.description, ImageCategory.slug)
        )
        return await self._list(query, [ImageCategory.sort_order.asc(), ImageCategory.name.asc()], limit=limit)

    async def list_by_type(self, category_type: str) -> List[ImageCategory]:
        query = self._select().where(ImageCategory.type == category_type)
        return await self._list(query, [ImageCategory.sort_order.asc(), ImageCategory.name.asc()])

    async def get_default(self) -> Optional[ImageCategory]:
        result = await self.session.execute(self._select().where(ImageCategory.is_default.is_(True)))
        return result.scalars().first()

    # ============================================================
    # 统计
    # ============================================================

    async def _grouped_count(self, column) -> Dict:
        query = self._exclude_deleted(
            select(column, func.count()).select_from(ImageCategory)
        ).group_by(column)
        result = await self.session.execute(query)
        return {key: count for key, count in result.all()}

    async def get_stats(self) -> ImageCategoryStats:
        """
        图片分类总体统计

        Returns:
            分类总数、启用数、系统分类数、根分类数、最大深度、
            按类型 / 状态 / 层级分布、图片总数与总容量
        """
        query = self._exclude_deleted(
            select(
                func.count(),
                func.coalesce(func.max(ImageCategory.level), 0),
                func.coalesce(func.sum(ImageCategory.image_count), 0),
                func.coalesce(func.sum(ImageCategory.total_size), 0),
            ).select_from(ImageCategory)
        )
        total, max_level, total_images, total_size = (await self.session.execute(query)).one()

        stats = ImageCategoryStats(
            total_categories=total,
            active_categories=await self.count(status=ImageCategoryStatus.ACTIVE.value),
            system_categories=await self.count(is_system=True),
            root_categories=await self.count(parent_id=None),
            max_depth=int(max_level),
            by_type=await self._grouped_count(ImageCategory.type),
            by_status=await self._grouped_count(ImageCategory.status),
            by_level=await self._grouped_count(ImageCategory.level),
            total_images=int(total_images),
            total_size=int(total_size),
            avg_images_per_category=(int(total_images) / total) if total else 0.0,
        )

        logger.debug("image_category_stats_computed", total_categories=total)
        return stats

    async def _image_totals(self, category_ids: Optional[List[str]] = None) -> Dict[str, Tuple[int, int]]:
        """category_id -> (图片数量, 总字节数)，按图片表实时计算"""
        query = (
            select(
                SiteImage.category_id,
                func.count(),
                func.coalesce(func.sum(SiteImage.file_size), 0),
            )
            .where(SiteImage.is_deleted.is_(False), SiteImage.category_id.is_not(None))
            .group_by(SiteImage.category_id)
        )
        if category_ids is not None:
            query = query.where(SiteImage.category_id.in_(category_ids))

        result = await self.session.execute(query)
        return {category_id: (count, int(size)) for category_id, count, size in result.all()}

    async def get_category_stats(self, category_id: str) -> ImageCategoryWithStats:
        """
        单个分类的统计

        Raises:
            NotFoundError: 分类不存在
        """
        category = await self.get_or_raise(category_id)
        image_count, total_size = (await self._image_totals([category_id])).get(category_id, (0, 0))
        children = await self.get_children(category_id)
        descendants = await self.get_descendants(category_id)

        return ImageCategoryWithStats(
            category=category,
            image_count=image_count,
            total_size=total_size,
            child_count=len(children),
            descendant_count=len(descendants),
        )

    async def refresh_image_counts(self, category_id: Optional[str] = None) -> int:
        """
        按图片表重新计算 image_count / total_size

        Args:
            category_id: 只刷新指定分类（为空时刷新全部）

        Returns:
            刷新的分类数量
        """
        if category_id:
            categories = [await self.get_or_raise(category_id)]
            totals = await self._image_totals([category_id])
        else:
            categories = await self._list(self._select(), self._tree_order())
            totals = await self._image_totals()

        for category in categories:
            image_count, total_size = totals.get(category.id, (0, 0))
            category.image_count = image_count
            category.total_size = total_size
        await self.session.flush()

        logger.info("image_category_counts_refreshed", category_count=len(categories))
        return len(categories)

    # ============================================================
    # 默认分类与系统分类
    # ============================================================

    async def set_default(self, category_id: str) -> ImageCategory:
        """
        设置默认分类（全局唯一）

        Raises:
            NotFoundError: 分类不存在
            DatabaseError: 数据库执行失败
        """
        return await self._set_exclusive_flag("is_default", category_id)

    async def can_delete(self, category_id: str) -> Tuple[bool, str]:
        """
        检查分类能否删除

        Returns:
            (是否可删除, 原因)；系统分类、默认分类、有子分类或有图片的分类不可删除
        """
        category = await self.get_or_raise(category_id)

        if category.is_system:
            return False, "system category cannot be deleted"
        if category.is_default:
            return False, "default category cannot be deleted"
        if await self.count(parent_id=category_id) > 0:
            return False, "category has child categories"

        image_count = await self._count(
            select(SiteImage).where(SiteImage.category_id == category_id, SiteImage.is_deleted.is_(False))
        )
        if image_count > 0:
            return False, f"category contains {image_count} images"

        return True, ""

    async def delete_category(self, category_id: str, deleted_by: Optional[str] = None) -> bool:
        """
        删除分类（软删除），先经过 can_delete 检查

        Raises:
            NotFoundError: 分类不存在
            InvalidOperationError: 系统分类、默认分类、有子分类或有图片
        """
        allowed, reason = await self.can_delete(category_id)
        if not allowed:
            raise InvalidOperationError(reason, details={"category_id": category_id})

        return await self.soft_delete_by_id(category_id, deleted_by=deleted_by)

    async def create_system_categories(self) -> List[ImageCategory]:
        """
        创建系统内置分类（已存在的 slug 跳过）

        Returns:
            本次新建的分类列表
        """
        created = []
        for sort_order, (name, slug, category_type, color, is_default) in enumerate(SYSTEM_CATEGORIES):
            if await self.get_by_slug(slug):
                continue

            category = ImageCategory(
                name=name,
                slug=slug,
                type=category_type.value,
                color=color,
                sort_order=sort_order,
                is_system=True,
                is_default=is_default,
            )
            created.append(await self.create_category(category))

        logger.info("system_image_categories_created", count=len(created))
        return created
