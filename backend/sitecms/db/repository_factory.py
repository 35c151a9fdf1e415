"""
Repository Factory

统一创建和管理所有 Repository 实例。

设计模式：工厂模式
- 封装 Repository 的创建逻辑
- 确保同一个业务操作中的所有 Repository 使用同一个数据库会话
- create_session 负责事务边界：正常结束 commit，异常时 rollback
"""
from typing import AsyncIterator, Callable, Dict, Optional
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from sitecms.db.session import AsyncSessionLocal
from sitecms.db.repositories.base import BaseRepository
from sitecms.db.repositories.user_repo import UserRepository
from sitecms.db.repositories.wechat_user_repo import WeChatUserRepository
from sitecms.db.repositories.wechat_qr_code_repo import WeChatQrCodeRepository
from sitecms.db.repositories.site_article_repo import SiteArticleRepository
from sitecms.db.repositories.article_category_repo import ArticleCategoryRepository
from sitecms.db.repositories.site_image_repo import SiteImageRepository
from sitecms.db.repositories.image_category_repo import ImageCategoryRepository
from sitecms.db.repositories.news_repo import NewsRepository
from sitecms.db.repositories.news_category_repo import NewsCategoryRepository
from sitecms.db.repositories.news_article_repo import NewsArticleRepository
from sitecms.db.repositories.video_repo import VideoRepository
from sitecms.db.repositories.video_category_repo import VideoCategoryRepository
from sitecms.db.repositories.video_session_repo import VideoSessionRepository
from sitecms.db.repositories.survey_repo import SurveyRepository
from sitecms.db.repositories.survey_question_repo import SurveyQuestionRepository
from sitecms.db.repositories.survey_response_repo import SurveyResponseRepository
from sitecms.db.repositories.survey_answer_repo import SurveyAnswerRepository
from sitecms.db.repositories.site_event_repo import SiteEventRepository
from sitecms.db.repositories.event_attendee_repo import EventAttendeeRepository
from sitecms.db.repositories.hit_repo import HitRepository

logger = structlog.get_logger(__name__)


class RepositoryFactory:
    """
    Repository 工厂类

    使用示例：
    ```python
    async with repo_factory.create_session() as session:
        event_repo = repo_factory.create_site_event_repo(session)
        await event_repo.set_current(event_id)
    # 离开上下文时自动 commit；抛出异常时自动 rollback
    ```
    """

    def __init__(self, session_factory: Optional[Callable[[], AsyncSession]] = None):
        """
        初始化 Repository 工厂

        Args:
            session_factory: 会话工厂（默认使用事件循环感知的 AsyncSessionLocal，测试时可注入）
        """
        self._session_factory = session_factory or AsyncSessionLocal

    # ============================================================
    # 会话管理
    # ============================================================

    @asynccontextmanager
    async def create_session(self) -> AsyncIterator[AsyncSession]:
        """
        创建数据库会话（上下文管理器）

        Yields:
            AsyncSession: 数据库会话
        """
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(
                "repository_session_rollback",
                error=str(e),
                error_type=type(e).__name__,
            )
            await session.rollback()
            raise
        finally:
            await session.close()

    # ============================================================
    # Repository 创建方法
    # ============================================================

    def create_user_repo(self, session: AsyncSession) -> UserRepository:
        return UserRepository(session)

    def create_wechat_user_repo(self, session: AsyncSession) -> WeChatUserRepository:
        return WeChatUserRepository(session)

    def create_wechat_qr_code_repo(self, session: AsyncSession) -> WeChatQrCodeRepository:
        return WeChatQrCodeRepository(session)

    def create_site_article_repo(self, session: AsyncSession) -> SiteArticleRepository:
        return SiteArticleRepository(session)

    def create_article_category_repo(self, session: AsyncSession) -> ArticleCategoryRepository:
        return ArticleCategoryRepository(session)

    def create_site_image_repo(self, session: AsyncSession) -> SiteImageRepository:
        return SiteImageRepository(session)

    def create_image_category_repo(self, session: AsyncSession) -> ImageCategoryRepository:
        return ImageCategoryRepository(session)

    def create_news_repo(self, session: AsyncSession) -> NewsRepository:
        return NewsRepository(session)

    def create_news_category_repo(self, session: AsyncSession) -> NewsCategoryRepository:
        return NewsCategoryRepository(session)

    def create_news_article_repo(self, session: AsyncSession) -> NewsArticleRepository:
        return NewsArticleRepository(session)

    def create_video_repo(self, session: AsyncSession) -> VideoRepository:
        return VideoRepository(session)

    def create_video_category_repo(self, session: AsyncSession) -> VideoCategoryRepository:
        return VideoCategoryRepository(session)

    def create_video_session_repo(self, session: AsyncSession) -> VideoSessionRepository:
        return VideoSessionRepository(session)

    def create_survey_repo(self, session: AsyncSession) -> SurveyRepository:
        return SurveyRepository(session)

    def create_survey_question_repo(self, session: AsyncSession) -> SurveyQuestionRepository:
        return SurveyQuestionRepository(session)

    def create_survey_response_repo(self, session: AsyncSession) -> SurveyResponseRepository:
        return SurveyResponseRepository(session)

    def create_survey_answer_repo(self, session: AsyncSession) -> SurveyAnswerRepository:
        return SurveyAnswerRepository(session)

    def create_site_event_repo(self, session: AsyncSession) -> SiteEventRepository:
        return SiteEventRepository(session)

    def create_event_attendee_repo(self, session: AsyncSession) -> EventAttendeeRepository:
        return EventAttendeeRepository(session)

    def create_hit_repo(self, session: AsyncSession) -> HitRepository:
        return HitRepository(session)

    # ============================================================
    # 批量创建
    # ============================================================

    def create_all_repos(self, session: AsyncSession) -> Dict[str, BaseRepository]:
        """
        创建所有 Repository（共享同一会话）

        Returns:
            名称 -> Repository 实例
        """
        return {
            "user": self.create_user_repo(session),
            "wechat_user": self.create_wechat_user_repo(session),
            "wechat_qr_code": self.create_wechat_qr_code_repo(session),
            "site_article": self.create_site_article_repo(session),
            "article_category": self.create_article_category_repo(session),
            "site_image": self.create_site_image_repo(session),
            "image_category": self.create_image_category_repo(session),
            "news": self.create_news_repo(session),
            "news_category": self.create_news_category_repo(session),
            "news_article": self.create_news_article_repo(session),
            "video": self.create_video_repo(session),
            "video_category": self.create_video_category_repo(session),
            "video_session": self.create_video_session_repo(session),
            "survey": self.create_survey_repo(session),
            "survey_question": self.create_survey_question_repo(session),
            "survey_response": self.create_survey_response_repo(session),
            "survey_answer": self.create_survey_answer_repo(session),
            "site_event": self.create_site_event_repo(session),
            "event_attendee": self.create_event_attendee_repo(session),
            "hit": self.create_hit_repo(session),
        }


# 全局单例实例
_repository_factory: RepositoryFactory | None = None


def get_repository_factory() -> RepositoryFactory:
    """
    获取 Repository 工厂单例

    Returns:
        RepositoryFactory 实例
    """
    global _repository_factory

    if _repository_factory is None:
        _repository_factory = RepositoryFactory()
        logger.info("repository_factory_created")

    return _repository_factory
