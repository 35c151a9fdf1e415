"""
数据库模型（SQLModel）

时间处理说明：
- 所有时间字段统一使用北京时间 (UTC+8)
- 使用 TIMESTAMP WITHOUT TIME ZONE 存储，避免 PostgreSQL 自动转换为 UTC
- beijing_now() 返回无时区信息的北京时间

公共字段：
- EntityBase: 主键 id（UUID 字符串）与审计字段（created_at / updated_at / created_by / updated_by）
- SoftDeleteEntity: 软删除字段（is_deleted / deleted_at / deleted_by）
- CategoryTreeBase: 分类树字段（parent_id / level / path / slug）

问卷相关表与视频观看会话没有软删除字段，删除即物理删除。
"""
from datetime import datetime, timezone, timedelta
from typing import List, Optional
from sqlmodel import SQLModel, Field, Column, JSON, Relationship
from sqlalchemy import DateTime, Text
import uuid


def beijing_now() -> datetime:
    """
    获取当前北京时间（无时区信息）

    返回的 datetime 对象不包含时区信息，但值是北京时间。
    这样存入 PostgreSQL 的 TIMESTAMP WITHOUT TIME ZONE 时不会被转换。
    """
    utc_now = datetime.now(timezone.utc)
    beijing_time = utc_now + timedelta(hours=8)
    return beijing_time.replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================================
# 公共基类
# ============================================================

class EntityBase(SQLModel):
    """主键与审计字段"""

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)

    # 时间列均为 TIMESTAMP WITHOUT TIME ZONE，存北京时间
    created_at: datetime = Field(default_factory=beijing_now, sa_type=DateTime, index=True)
    updated_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    created_by: Optional[str] = Field(default=None, max_length=36, index=True)
    updated_by: Optional[str] = Field(default=None, max_length=36)


class SoftDeleteEntity(EntityBase):
    """带软删除字段的实体"""

    is_deleted: bool = Field(default=False, index=True)
    deleted_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    deleted_by: Optional[str] = Field(default=None, max_length=36)


class CategoryTreeBase(SoftDeleteEntity):
    """
    分类树公共字段

    物化路径：根节点 path 为 "/<id>"，子节点为 "<parent.path>/<id>"；
    level 从 0 开始，子节点为父节点 level + 1。
    """

    name: str = Field(max_length=100, index=True)
    slug: str = Field(default="", max_length=100, index=True)
    description: Optional[str] = Field(default=None, max_length=500)

    parent_id: Optional[str] = Field(default=None, max_length=36, index=True)
    level: int = Field(default=0, index=True)
    path: str = Field(default="", max_length=1000, index=True)

    is_active: bool = Field(default=True)


# ============================================================
# 用户
# ============================================================

class User(SoftDeleteEntity, table=True):
    """后台用户表"""
    __tablename__ = "users"

    username: str = Field(max_length=100, index=True)
    email: str = Field(max_length=255, index=True)
    password_hash: Optional[str] = Field(default=None, max_length=255)

    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    display_name: Optional[str] = Field(default=None, max_length=200)
    bio: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    role: str = Field(default="subscriber", max_length=20)  # admin, editor, author, contributor, subscriber
    status: str = Field(default="active", max_length=20, index=True)  # active, inactive, suspended, pending

    phone: Optional[str] = Field(default=None, max_length=50)
    avatar_id: Optional[str] = Field(default=None, max_length=36)
    language: str = Field(default="zh-CN", max_length=10)

    wechat_open_id: Optional[str] = Field(default=None, max_length=100, index=True)
    wechat_union_id: Optional[str] = Field(default=None, max_length=100, index=True)

    email_verified: bool = Field(default=False)
    last_login_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    last_login_ip: Optional[str] = Field(default=None, max_length=45)

    def get_display_name(self) -> str:
        """显示名：display_name > 姓名 > 名 > 用户名"""
        if self.display_name:
            return self.display_name
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        if self.first_name:
            return self.first_name
        return self.username


class WeChatUser(SoftDeleteEntity, table=True):
    """微信公众号粉丝表"""
    __tablename__ = "wechat_users"

    open_id: str = Field(max_length=100, unique=True, index=True)
    union_id: Optional[str] = Field(default=None, max_length=100, index=True)
    subscribe: bool = Field(default=False, index=True)
    subscribe_time: Optional[datetime] = Field(default=None, sa_type=DateTime)

    nickname: str = Field(default="", max_length=255)
    real_name: Optional[str] = Field(default=None, max_length=100)
    company_name: Optional[str] = Field(default=None, max_length=255)
    position: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255)
    mobile: Optional[str] = Field(default=None, max_length=50)

    sex: int = Field(default=0)  # 0 未知, 1 男, 2 女
    city: Optional[str] = Field(default=None, max_length=100)
    province: Optional[str] = Field(default=None, max_length=100)
    country: Optional[str] = Field(default=None, max_length=100)
    language: Optional[str] = Field(default=None, max_length=20)
    head_img_url: Optional[str] = Field(default=None, max_length=500)

    remark: Optional[str] = Field(default=None, max_length=500)
    is_confirmed: bool = Field(default=False)
    current_event_id: Optional[str] = Field(default=None, max_length=36)


class WeChatQrCode(SoftDeleteEntity, table=True):
    """
    微信带参数二维码表

    params_value 保存关联资源 ID，param_key 保存资源类型（article / event / survey ...）。
    expire_time 为空表示永久二维码。
    """
    __tablename__ = "wechat_qr_codes"

    params_value: str = Field(max_length=36, index=True)
    param_key: str = Field(max_length=50, index=True)
    param_url: Optional[str] = Field(default=None, max_length=1000)

    ticket: Optional[str] = Field(default=None, max_length=255, index=True)
    url: Optional[str] = Field(default=None, max_length=1000)
    scene_str: Optional[str] = Field(default=None, max_length=64, index=True)

    expire_seconds: Optional[int] = Field(default=None)
    expire_time: Optional[datetime] = Field(default=None, sa_type=DateTime, index=True)
    user_for: int = Field(default=0)
    remark: Optional[str] = Field(default=None, max_length=500)
    event_id: Optional[str] = Field(default=None, max_length=36)

    scan_count: int = Field(default=0)
    last_scanned_at: Optional[datetime] = Field(default=None, sa_type=DateTime)


# ============================================================
# 文章
# ============================================================

class ArticleCategory(CategoryTreeBase, table=True):
    """文章分类表"""
    __tablename__ = "article_categories"

    sort_order: int = Field(default=0)
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=100)
    article_count: int = Field(default=0)


class SiteArticle(SoftDeleteEntity, table=True):
    """站点文章表"""
    __tablename__ = "site_articles"

    title: str = Field(max_length=500)
    slug: str = Field(default="", max_length=500, index=True)
    summary: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    content: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    author: Optional[str] = Field(default=None, max_length=100, index=True)

    category_id: Optional[str] = Field(
        default=None, max_length=36, index=True, foreign_key="article_categories.id"
    )
    site_image_id: Optional[str] = Field(default=None, max_length=36)
    promotion_pic_id: Optional[str] = Field(default=None, max_length=36)
    jump_resource_id: Optional[str] = Field(default=None, max_length=36)
    promotion_code: Optional[str] = Field(default=None, max_length=50, index=True)
    front_cover_image_url: Optional[str] = Field(default=None, max_length=1000)

    is_published: bool = Field(default=False, index=True)
    published_at: Optional[datetime] = Field(default=None, sa_type=DateTime, index=True)

    view_count: int = Field(default=0)
    read_count: int = Field(default=0)

    category: Optional["ArticleCategory"] = Relationship()


# ============================================================
# 图片
# ============================================================

class ImageCategory(CategoryTreeBase, table=True):
    """图片分类表"""
    __tablename__ = "image_categories"

    type: str = Field(default="general", max_length=20, index=True)
    status: str = Field(default="active", max_length=20, index=True)  # active, inactive, archived
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=100)
    sort_order: int = Field(default=0)

    is_default: bool = Field(default=False)
    is_system: bool = Field(default=False)
    is_visible: bool = Field(default=True)

    image_count: int = Field(default=0)
    total_size: int = Field(default=0)


class SiteImage(SoftDeleteEntity, table=True):
    """站点图片表"""
    __tablename__ = "site_images"

    filename: str = Field(max_length=255, index=True)
    original_name: Optional[str] = Field(default=None, max_length=255)
    mime_type: Optional[str] = Field(default=None, max_length=100)
    file_size: int = Field(default=0)
    width: Optional[int] = Field(default=None)
    height: Optional[int] = Field(default=None)

    storage_path: Optional[str] = Field(default=None, max_length=1000)
    cdn_url: Optional[str] = Field(default=None, max_length=1000)

    title: Optional[str] = Field(default=None, max_length=255)
    alt_text: Optional[str] = Field(default=None, max_length=500)
    caption: Optional[str] = Field(default=None, max_length=1000)
    tags: Optional[str] = Field(default=None, max_length=1000)  # 逗号分隔

    category_id: Optional[str] = Field(default=None, max_length=36, index=True)
    media_id: Optional[str] = Field(default=None, max_length=255, index=True)  # 微信素材 ID

    is_public: bool = Field(default=True)
    is_featured: bool = Field(default=False)

    view_count: int = Field(default=0)
    download_count: int = Field(default=0)


# ============================================================
# 新闻
# ============================================================

class NewsCategory(CategoryTreeBase, table=True):
    """新闻分类表"""
    __tablename__ = "news_categories"

    display_order: int = Field(default=0)
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=100)
    is_featured: bool = Field(default=False)
    news_count: int = Field(default=0)


class News(SoftDeleteEntity, table=True):
    """新闻表"""
    __tablename__ = "news"

    title: str = Field(max_length=500)
    subtitle: Optional[str] = Field(default=None, max_length=500)
    summary: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    content: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    slug: str = Field(default="", max_length=500, index=True)

    status: str = Field(default="draft", max_length=20, index=True)  # draft, scheduled, published, archived
    type: str = Field(default="regular", max_length=20)
    priority: str = Field(default="normal", max_length=20)

    category_id: Optional[str] = Field(default=None, max_length=36, index=True)
    author_id: Optional[str] = Field(default=None, max_length=36, index=True)
    editor_id: Optional[str] = Field(default=None, max_length=36)
    tags: Optional[str] = Field(default=None, max_length=1000)  # 逗号分隔

    published_at: Optional[datetime] = Field(default=None, sa_type=DateTime, index=True)
    scheduled_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    expires_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    is_featured: bool = Field(default=False)
    is_breaking: bool = Field(default=False)
    is_sticky: bool = Field(default=False)
    allow_comments: bool = Field(default=True)
    allow_sharing: bool = Field(default=True)

    # 微信图文草稿 / 发布状态
    wechat_draft_id: Optional[str] = Field(default=None, max_length=255, index=True)
    wechat_published_id: Optional[str] = Field(default=None, max_length=255, index=True)
    wechat_url: Optional[str] = Field(default=None, max_length=1000)
    wechat_status: Optional[str] = Field(default=None, max_length=20)

    view_count: int = Field(default=0)
    share_count: int = Field(default=0)
    like_count: int = Field(default=0)
    comment_count: int = Field(default=0)
    read_time: int = Field(default=0)  # 预计阅读时长（分钟）


class NewsArticle(SoftDeleteEntity, table=True):
    """新闻与文章的关联表（一条新闻下的多篇图文）"""
    __tablename__ = "news_articles"

    news_id: str = Field(max_length=36, index=True)
    article_id: str = Field(max_length=36, index=True, foreign_key="site_articles.id")
    display_order: int = Field(default=0)
    is_main_story: bool = Field(default=False)
    is_featured: bool = Field(default=False)

    article: Optional["SiteArticle"] = Relationship()


# ============================================================
# 视频
# ============================================================

class VideoCategory(CategoryTreeBase, table=True):
    """视频分类表"""
    __tablename__ = "video_categories"

    display_order: int = Field(default=0)
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=100)
    is_visible: bool = Field(default=True)
    is_featured: bool = Field(default=False)
    video_count: int = Field(default=0)


class Video(SoftDeleteEntity, table=True):
    """视频表（点播与直播）"""
    __tablename__ = "videos"

    title: str = Field(max_length=500)
    slug: str = Field(default="", max_length=500, index=True)
    summary: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    video_type: str = Field(default="on_demand", max_length=20)  # live, on_demand, recorded, streaming
    status: str = Field(default="draft", max_length=20, index=True)  # draft, scheduled, live, ended, archived

    cloud_url: Optional[str] = Field(default=None, max_length=1000)
    playback_url: Optional[str] = Field(default=None, max_length=1000)
    quality: str = Field(default="auto", max_length=10)
    duration: Optional[int] = Field(default=None)  # 秒

    is_open: bool = Field(default=True)
    require_auth: bool = Field(default=False)

    category_id: Optional[str] = Field(
        default=None, max_length=36, index=True, foreign_key="video_categories.id"
    )
    bound_event_id: Optional[str] = Field(default=None, max_length=36, index=True)
    survey_id: Optional[str] = Field(default=None, max_length=36)
    cover_image_id: Optional[str] = Field(default=None, max_length=36)

    start_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    end_time: Optional[datetime] = Field(default=None, sa_type=DateTime)

    view_count: int = Field(default=0)
    like_count: int = Field(default=0)
    share_count: int = Field(default=0)
    comment_count: int = Field(default=0)
    watch_time: int = Field(default=0)  # 累计观看时长（秒）

    average_watch_time: float = Field(default=0.0)
    completion_rate: float = Field(default=0.0)
    engagement_score: float = Field(default=0.0)

    tags: Optional[str] = Field(default=None, max_length=1000)  # 逗号分隔

    category: Optional["VideoCategory"] = Relationship()


class VideoSession(EntityBase, table=True):
    """视频观看会话表"""
    __tablename__ = "video_sessions"

    video_id: str = Field(max_length=36, index=True)
    user_id: Optional[str] = Field(default=None, max_length=36, index=True)  # 匿名用户为空
    session_id: str = Field(max_length=255, index=True)

    status: str = Field(default="active", max_length=20, index=True)  # active, paused, completed, abandoned
    start_time: datetime = Field(default_factory=beijing_now, sa_type=DateTime)
    end_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    last_activity: datetime = Field(default_factory=beijing_now, sa_type=DateTime)

    current_position: int = Field(default=0)
    watched_duration: int = Field(default=0)
    completion_percentage: float = Field(default=0.0)
    is_completed: bool = Field(default=False)
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    device_type: Optional[str] = Field(default=None, max_length=50)
    browser: Optional[str] = Field(default=None, max_length=100)
    country: Optional[str] = Field(default=None, max_length=100)
    city: Optional[str] = Field(default=None, max_length=100)


# ============================================================
# 问卷
# ============================================================

class Survey(EntityBase, table=True):
    """问卷表"""
    __tablename__ = "surveys"

    title: str = Field(max_length=500)
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    status: str = Field(default="draft", max_length=20, index=True)  # draft, published, closed, archived

    is_public: bool = Field(default=True)
    is_anonymous: bool = Field(default=False)
    allow_multiple: bool = Field(default=False)
    max_responses: Optional[int] = Field(default=None)

    published_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    closed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    questions: List["SurveyQuestion"] = Relationship(
        back_populates="survey",
        sa_relationship_kwargs={"order_by": "SurveyQuestion.display_order"},
    )


class SurveyQuestion(EntityBase, table=True):
    """问卷题目表"""
    __tablename__ = "survey_questions"

    survey_id: str = Field(max_length=36, index=True, foreign_key="surveys.id")
    question_text: str = Field(sa_column=Column(Text, nullable=False))
    question_type: str = Field(default="text", max_length=20)
    is_required: bool = Field(default=False)
    display_order: int = Field(default=0)
    options: Optional[list] = Field(default=None, sa_column=Column(JSON, nullable=True))  # 选择题选项

    survey: Optional["Survey"] = Relationship(back_populates="questions")


class SurveyResponse(EntityBase, table=True):
    """问卷答卷表"""
    __tablename__ = "survey_responses"

    survey_id: str = Field(max_length=36, index=True)
    respondent_id: Optional[str] = Field(default=None, max_length=36, index=True)
    session_id: Optional[str] = Field(default=None, max_length=255, index=True)

    status: str = Field(default="in_progress", max_length=20, index=True)
    started_at: datetime = Field(default_factory=beijing_now, sa_type=DateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    submitted_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    ip_address: Optional[str] = Field(default=None, max_length=45)
    user_agent: Optional[str] = Field(default=None, max_length=500)

    answers: List["SurveyAnswer"] = Relationship(back_populates="response")


class SurveyAnswer(EntityBase, table=True):
    """问卷答案表"""
    __tablename__ = "survey_answers"

    response_id: str = Field(max_length=36, index=True, foreign_key="survey_responses.id")
    question_id: str = Field(max_length=36, index=True)

    answer_text: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    answer_number: Optional[float] = Field(default=None)
    answer_array: Optional[list] = Field(default=None, sa_column=Column(JSON, nullable=True))  # 多选
    is_skipped: bool = Field(default=False)

    response: Optional["SurveyResponse"] = Relationship(back_populates="answers")


# ============================================================
# 活动
# ============================================================

class SiteEvent(SoftDeleteEntity, table=True):
    """
    站点活动表

    同一时间只有一个活动 is_current=True（由 SiteEventRepository.set_current 维护）。
    """
    __tablename__ = "site_events"

    title: str = Field(max_length=500)
    start_date: datetime = Field(sa_type=DateTime, index=True)
    end_date: datetime = Field(sa_type=DateTime, index=True)
    is_current: bool = Field(default=False)

    interaction_code: Optional[str] = Field(default=None, max_length=50, index=True)
    scan_message: Optional[str] = Field(default=None, max_length=1000)
    tags: Optional[str] = Field(default=None, max_length=1000)

    category_id: Optional[str] = Field(default=None, max_length=36, index=True)
    survey_id: Optional[str] = Field(default=None, max_length=36)
    video_id: Optional[str] = Field(default=None, max_length=36)


class EventAttendee(SoftDeleteEntity, table=True):
    """活动参会人表（现场签到）"""
    __tablename__ = "event_attendees"

    event_id: str = Field(max_length=36, index=True, foreign_key="site_events.id")
    mobile: str = Field(max_length=50, index=True)
    on_site_scanned: bool = Field(default=False)
    scanned_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    interaction_code_received: bool = Field(default=False)

    event: Optional["SiteEvent"] = Relationship()


# ============================================================
# 访问统计
# ============================================================

class Hit(SoftDeleteEntity, table=True):
    """资源访问记录表"""
    __tablename__ = "hits"

    resource_id: str = Field(max_length=36, index=True)
    resource_type: str = Field(max_length=20, index=True)
    user_id: Optional[str] = Field(default=None, max_length=36, index=True)
    session_id: Optional[str] = Field(default=None, max_length=255, index=True)
    hit_type: str = Field(default="view", max_length=20)  # view, read, click, share, download

    ip_address: Optional[str] = Field(default=None, max_length=45)
    user_agent: Optional[str] = Field(default=None, max_length=500)
    referrer: Optional[str] = Field(default=None, max_length=1000)
    promotion_code: Optional[str] = Field(default=None, max_length=50, index=True)

    read_duration: int = Field(default=0)  # 秒
    read_percentage: float = Field(default=0.0)
    scroll_depth: float = Field(default=0.0)

    country: Optional[str] = Field(default=None, max_length=100)
    city: Optional[str] = Field(default=None, max_length=100)
    device_type: Optional[str] = Field(default=None, max_length=50)
    platform: Optional[str] = Field(default=None, max_length=50)
    browser: Optional[str] = Field(default=None, max_length=100)
    wechat_open_id: Optional[str] = Field(default=None, max_length=100)
