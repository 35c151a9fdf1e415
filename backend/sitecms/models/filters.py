"""
列表查询过滤条件（Pydantic）

所有带分页的过滤器继承 PageParams，Repository 根据字段是否为 None 决定是否追加 WHERE 条件。
sort_by 不在允许列表中时，Repository 回退到 created_at DESC。
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from sitecms.config.settings import settings
from sitecms.models.constants import SortOrder


class PageParams(BaseModel):
    """分页参数"""

    page: int = Field(1, ge=1, description="页码（从 1 开始）")
    page_size: int = Field(
        default_factory=lambda: settings.DEFAULT_PAGE_SIZE,
        ge=1,
        description="每页数量",
    )

    @field_validator("page_size")
    @classmethod
    def clamp_page_size(cls, value: int) -> int:
        return min(value, settings.MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


class SortParams(BaseModel):
    sort_by: Optional[str] = Field(None, description="排序字段")
    sort_order: SortOrder = Field(SortOrder.DESC, description="排序方向")


# ============================================================
# 用户
# ============================================================

class UserFilter(PageParams, SortParams):
    search: Optional[str] = Field(None, description="匹配用户名 / 邮箱 / 显示名")
    role: Optional[str] = None
    status: Optional[str] = None


class WeChatUserFilter(PageParams, SortParams):
    search: Optional[str] = Field(None, description="匹配昵称 / 真实姓名 / 公司 / 邮箱")
    subscribe: Optional[bool] = None
    sex: Optional[int] = None
    city: Optional[str] = None
    province: Optional[str] = None
    country: Optional[str] = None
    subscribe_time_from: Optional[datetime] = None
    subscribe_time_to: Optional[datetime] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None


# ============================================================
# 内容
# ============================================================

class SiteArticleFilter(PageParams, SortParams):
    search: Optional[str] = Field(None, description="匹配标题 / 摘要 / 正文")
    category_id: Optional[str] = None
    author: Optional[str] = None
    is_published: Optional[bool] = None
    published_from: Optional[datetime] = None
    published_to: Optional[datetime] = None


class SiteImageFilter(PageParams, SortParams):
    search: Optional[str] = Field(None, description="匹配文件名 / 原始名 / 标题 / 替代文本")
    category_id: Optional[str] = None
    uncategorized: bool = Field(False, description="只返回未分类图片")
    tags: List[str] = Field(default_factory=list, description="命中任意一个标签即可")
    mime_type: Optional[str] = None
    is_public: Optional[bool] = None
    is_featured: Optional[bool] = None
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None


class ImageCategoryFilter(PageParams, SortParams):
    search: Optional[str] = Field(None, description="匹配名称 / 描述 / slug")
    type: Optional[str] = None
    status: Optional[str] = None
    parent_id: Optional[str] = None
    root_only: bool = False
    is_visible: Optional[bool] = None
    is_system: Optional[bool] = None
    level: Optional[int] = None


class CategoryFilter(PageParams, SortParams):
    """新闻 / 视频分类通用过滤条件"""
    search: Optional[str] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    parent_id: Optional[str] = None
    root_only: bool = False
    level: Optional[int] = None


class NewsFilter(PageParams, SortParams):
    search: Optional[str] = Field(None, description="匹配标题 / 副标题 / 摘要 / 正文")
    status: Optional[str] = None
    type: Optional[str] = None
    priority: Optional[str] = None
    category_id: Optional[str] = None
    author_id: Optional[str] = None
    is_featured: Optional[bool] = None
    is_breaking: Optional[bool] = None
    tags: List[str] = Field(default_factory=list)
    published_from: Optional[datetime] = None
    published_to: Optional[datetime] = None


class VideoFilter(PageParams, SortParams):
    search: Optional[str] = Field(None, description="匹配标题 / 摘要 / 标签")
    status: Optional[str] = None
    video_type: Optional[str] = None
    category_id: Optional[str] = None
    bound_event_id: Optional[str] = None
    is_open: Optional[bool] = None
    created_by: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None


class VideoSessionFilter(PageParams, SortParams):
    status: Optional[str] = None
    is_completed: Optional[bool] = None
    min_completion: Optional[float] = None
    max_completion: Optional[float] = None
    started_from: Optional[datetime] = None
    started_to: Optional[datetime] = None


# ============================================================
# 问卷
# ============================================================

class SurveyFilter(PageParams, SortParams):
    search: Optional[str] = Field(None, description="匹配标题 / 描述")
    status: Optional[str] = None
    created_by: Optional[str] = None
    is_public: Optional[bool] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None


class SurveyResponseFilter(PageParams, SortParams):
    survey_id: Optional[str] = None
    respondent_id: Optional[str] = None
    status: Optional[str] = None
    started_from: Optional[datetime] = None
    started_to: Optional[datetime] = None


# ============================================================
# 活动与访问统计
# ============================================================

class SiteEventFilter(PageParams, SortParams):
    search: Optional[str] = Field(None, description="匹配标题或标签")
    category_id: Optional[str] = None
    status: Optional[str] = Field(None, description="upcoming / active / completed / cancelled")
    start_date_from: Optional[datetime] = None
    start_date_to: Optional[datetime] = None
    include_deleted: bool = False


class HitAnalyticsFilter(BaseModel):
    """访问统计过滤条件（不分页）"""
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    user_id: Optional[str] = None
    hit_type: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    days: Optional[int] = Field(None, ge=1, description="从当前时间往前回溯的天数")
    country: Optional[str] = None
    city: Optional[str] = None
    device_type: Optional[str] = None
    platform: Optional[str] = None
    browser: Optional[str] = None
    promotion_code: Optional[str] = None
