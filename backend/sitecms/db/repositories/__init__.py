"""
Repository 层

职责：数据访问层，负责与数据库交互

模块说明：
- base.py: 基础 Repository，提供通用 CRUD、软删除、分页、计数器与互斥标记操作
- tree.py: 分类树 Repository（物化路径），文章 / 图片 / 新闻 / 视频分类共用
- user_repo.py / wechat_user_repo.py / wechat_qr_code_repo.py: 用户与微信数据访问
- site_article_repo.py / article_category_repo.py: 文章与文章分类
- site_image_repo.py / image_category_repo.py: 图片与图片分类
- news_repo.py / news_category_repo.py / news_article_repo.py: 新闻、新闻分类与新闻图文关联
- video_repo.py / video_category_repo.py / video_session_repo.py: 视频、视频分类与观看会话
- survey_repo.py / survey_question_repo.py / survey_response_repo.py / survey_answer_repo.py: 问卷
- site_event_repo.py / event_attendee_repo.py: 活动与参会人
- hit_repo.py: 访问记录与访问统计

Factory:
- repository_factory.py: Repository 工厂，统一创建 Repository 实例
"""

from .base import BaseRepository
from .tree import CategoryTreeRepository
from .user_repo import UserRepository
from .wechat_user_repo import WeChatUserRepository
from .wechat_qr_code_repo import WeChatQrCodeRepository
from .site_article_repo import SiteArticleRepository
from .article_category_repo import ArticleCategoryRepository
from .site_image_repo import SiteImageRepository
from .image_category_repo import ImageCategoryRepository
from .news_repo import NewsRepository
from .news_category_repo import NewsCategoryRepository
from .news_article_repo import NewsArticleRepository
from .video_repo import VideoRepository
from .video_category_repo import VideoCategoryRepository
from .video_session_repo import VideoSessionRepository
from .survey_repo import SurveyRepository
from .survey_question_repo import SurveyQuestionRepository
from .survey_response_repo import SurveyResponseRepository
from .survey_answer_repo import SurveyAnswerRepository
from .site_event_repo import SiteEventRepository
from .event_attendee_repo import EventAttendeeRepository
from .hit_repo import HitRepository

__all__ = [
    # Base
    "BaseRepository",
    "CategoryTreeRepository",
    # Users & WeChat
    "UserRepository",
    "WeChatUserRepository",
    "WeChatQrCodeRepository",
    # Content
    "SiteArticleRepository",
    "ArticleCategoryRepository",
    "SiteImageRepository",
    "ImageCategoryRepository",
    "NewsRepository",
    "NewsCategoryRepository",
    "NewsArticleRepository",
    # Video
    "VideoRepository",
    "VideoCategoryRepository",
    "VideoSessionRepository",
    # Surveys
    "SurveyRepository",
    "SurveyQuestionRepository",
    "SurveyResponseRepository",
    "SurveyAnswerRepository",
    # Events & analytics
    "SiteEventRepository",
    "EventAttendeeRepository",
    "HitRepository",
]
