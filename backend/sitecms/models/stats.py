"""
统计结果模型

- 纯数值统计使用 Pydantic BaseModel，便于上层直接序列化
- 携带 ORM 实体的组合结果使用 dataclass，避免对实体重复校验
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from sitecms.models.database import (
    ArticleCategory,
    CategoryTreeBase,
    ImageCategory,
    SiteArticle,
)


# ============================================================
# 通用
# ============================================================

class LocationCount(BaseModel):
    name: str
    count: int


class TagCount(BaseModel):
    tag: str
    count: int


@dataclass
class CategoryTreeNode:
    """分类树节点"""
    category: CategoryTreeBase
    depth: int
    children: List["CategoryTreeNode"] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.category.id


# ============================================================
# 微信
# ============================================================

class WeChatUserStatistics(BaseModel):
    """微信粉丝统计"""
    total_users: int = 0
    subscribed_users: int = 0
    unsubscribed_users: int = 0
    new_users_this_week: int = 0
    new_users_this_month: int = 0
    active_users_today: int = 0
    active_users_this_week: int = 0
    male_users: int = 0
    female_users: int = 0
    unknown_sex_users: int = 0
    top_cities: List[LocationCount] = Field(default_factory=list)
    top_provinces: List[LocationCount] = Field(default_factory=list)
    top_countries: List[LocationCount] = Field(default_factory=list)


class ResourceQrStats(BaseModel):
    """某个资源下的二维码统计"""
    resource_id: str
    resource_type: str
    total_codes: int = 0
    active_codes: int = 0
    expired_codes: int = 0
    total_scans: int = 0
    last_scanned_at: Optional[datetime] = None


# ============================================================
# 文章 / 分类 / 图片
# ============================================================

@dataclass
class CategoryWithArticleCount:
    category: ArticleCategory
    article_count: int = 0
    published_count: int = 0
    draft_count: int = 0


@dataclass
class ArticleWithAnalytics:
    article: SiteArticle
    period_days: int
    total_hits: int = 0
    views: int = 0
    reads: int = 0
    shares: int = 0
    unique_visitors: int = 0
    avg_read_time: float = 0.0


class ImageCategoryStats(BaseModel):
    """图片分类总体统计"""
    total_categories: int = 0
    active_categories: int = 0
    system_categories: int = 0
    root_categories: int = 0
    max_depth: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_level: Dict[int, int] = Field(default_factory=dict)
    total_images: int = 0
    total_size: int = 0
    avg_images_per_category: float = 0.0


@dataclass
class ImageCategoryWithStats:
    category: ImageCategory
    image_count: int = 0
    total_size: int = 0
    child_count: int = 0
    descendant_count: int = 0


# ============================================================
# 视频
# ============================================================

class VideoStatistics(BaseModel):
    total_videos: int = 0
    live_videos: int = 0
    scheduled_videos: int = 0
    ended_videos: int = 0
    total_views: int = 0
    total_likes: int = 0
    total_shares: int = 0
    total_watch_time: int = 0
    avg_engagement_score: float = 0.0


class VideoSessionStatistics(BaseModel):
    total_sessions: int = 0
    unique_viewers: int = 0
    completed_sessions: int = 0
    completion_rate: float = 0.0
    avg_watched_duration: float = 0.0
    avg_completion_percentage: float = 0.0
    total_watch_time: int = 0
    device_breakdown: Dict[str, int] = Field(default_factory=dict)


# ============================================================
# 问卷
# ============================================================

class SurveyStats(BaseModel):
    survey_id: str
    question_count: int = 0
    response_count: int = 0
    completed_count: int = 0
    completion_rate: float = 0.0
    avg_completion_seconds: float = 0.0


class ResponseStats(BaseModel):
    survey_id: str
    total_responses: int = 0
    in_progress: int = 0
    completed: int = 0
    submitted: int = 0
    abandoned: int = 0
    completion_rate: float = 0.0
    avg_completion_seconds: float = 0.0


class DropoffPoint(BaseModel):
    question_id: str
    display_order: int
    answered_count: int
    dropoff_count: int
    dropoff_rate: float


class NumericStats(BaseModel):
    count: int = 0
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    std_dev: float = 0.0


class AnswerStats(BaseModel):
    question_id: str
    total_answers: int = 0
    answered: int = 0
    skipped: int = 0
    skip_rate: float = 0.0


# ============================================================
# 活动
# ============================================================

class CheckInSummary(BaseModel):
    event_id: str
    total_attendees: int = 0
    checked_in: int = 0
    code_received: int = 0
    check_in_rate: float = 0.0


# ============================================================
# 访问统计
# ============================================================

class GeographicStats(BaseModel):
    country: Optional[str] = None
    city: Optional[str] = None
    count: int = 0


class DeviceStats(BaseModel):
    device_type: Optional[str] = None
    platform: Optional[str] = None
    count: int = 0


class BrowserStats(BaseModel):
    browser: Optional[str] = None
    count: int = 0


class HitAnalytics(BaseModel):
    total_hits: int = 0
    total_views: int = 0
    total_reads: int = 0
    total_shares: int = 0
    unique_users: int = 0
    unique_sessions: int = 0
    avg_read_time: float = 0.0
    avg_scroll_depth: float = 0.0
    completion_rate: float = 0.0
    last_activity: Optional[datetime] = None
    top_countries: List[GeographicStats] = Field(default_factory=list)
    top_devices: List[DeviceStats] = Field(default_factory=list)
    top_browsers: List[BrowserStats] = Field(default_factory=list)


class DailyHitStats(BaseModel):
    day: date
    views: int = 0
    reads: int = 0
    unique_users: int = 0
    avg_read_time: float = 0.0


class HourlyHitStats(BaseModel):
    hour: int
    count: int = 0


class ReferrerStats(BaseModel):
    referrer: str
    count: int = 0
    unique_users: int = 0


class UserEngagementStats(BaseModel):
    user_id: str
    total_hits: int = 0
    total_read_time: int = 0
    avg_read_time: float = 0.0
    last_activity: Optional[datetime] = None


class ReadTimeBucket(BaseModel):
    time_range: str
    count: int = 0
    percentage: float = 0.0


class ReadingAnalytics(BaseModel):
    total_reads: int = 0
    avg_read_time: float = 0.0
    median_read_time: float = 0.0
    avg_scroll_depth: float = 0.0
    completion_rate: float = 0.0
    read_time_distribution: List[ReadTimeBucket] = Field(default_factory=list)


class PromotionStats(BaseModel):
    promotion_code: str
    total_hits: int = 0
    unique_users: int = 0
    views: int = 0
    reads: int = 0
    shares: int = 0
