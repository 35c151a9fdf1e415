"""
常量定义模块

定义实体状态、类型等枚举值。数据库中以字符串保存，查询时统一使用 `.value`。
"""
from enum import Enum


class UserStatus(str, Enum):
    """后台用户状态"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING = "pending"


class HitType(str, Enum):
    """访问记录类型"""
    VIEW = "view"          # 浏览
    READ = "read"          # 阅读
    CLICK = "click"        # 点击
    SHARE = "share"        # 分享
    DOWNLOAD = "download"  # 下载


class ResourceType(str, Enum):
    """访问记录 / 二维码关联的资源类型"""
    ARTICLE = "article"
    NEWS = "news"
    VIDEO = "video"
    EVENT = "event"
    SURVEY = "survey"
    IMAGE = "image"


class ImageCategoryType(str, Enum):
    """图片分类类型"""
    GENERAL = "general"
    ARTICLE = "article"
    EVENT = "event"
    SURVEY = "survey"
    NEWS = "news"
    PROMOTION = "promotion"
    AVATAR = "avatar"
    BANNER = "banner"
    ICON = "icon"
    THUMBNAIL = "thumbnail"
    BACKGROUND = "background"


class ImageCategoryStatus(str, Enum):
    """图片分类状态"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class NewsStatus(str, Enum):
    """新闻状态"""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class VideoStatus(str, Enum):
    """视频状态"""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    LIVE = "live"
    ENDED = "ended"
    ARCHIVED = "archived"


class VideoSessionStatus(str, Enum):
    """视频观看会话状态"""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class SurveyStatus(str, Enum):
    """问卷状态"""
    DRAFT = "draft"
    PUBLISHED = "published"
    CLOSED = "closed"
    ARCHIVED = "archived"


class ResponseStatus(str, Enum):
    """问卷答卷状态"""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SUBMITTED = "submitted"
    ABANDONED = "abandoned"


class EventStatus(str, Enum):
    """
    活动状态（根据时间推导，不落库）

    - upcoming: 开始时间晚于当前时间
    - active: 当前时间处于开始与结束之间
    - completed: 结束时间早于当前时间
    - cancelled: 已被软删除
    """
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AttendeeStatus(str, Enum):
    """签到状态筛选"""
    CHECKED_IN = "checked_in"
    NOT_CHECKED_IN = "not_checked_in"
    CODE_RECEIVED = "code_received"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"
