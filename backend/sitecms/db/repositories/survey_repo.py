"""
问卷 Repository

负责 surveys 表的数据访问操作。

问卷、题目、答卷、答案均没有软删除字段；批量删除问卷时按
答案 -> 答卷 -> 题目 -> 问卷 的顺序物理删除。
"""
from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from sqlalchemy.orm import selectinload
import structlog

from sitecms.models.constants import ResponseStatus, SurveyStatus
from sitecms.models.database import (
    Survey,
    SurveyAnswer,
    SurveyQuestion,
    SurveyResponse,
    beijing_now,
)
from sitecms.models.filters import SurveyFilter
from sitecms.models.stats import SurveyStats
from .base import BaseRepository

logger = structlog.get_logger(__name__)

FINISHED_STATUSES = [ResponseStatus.COMPLETED.value, ResponseStatus.SUBMITTED.value]


class SurveyRepository(BaseRepository[Survey]):
    """问卷数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Survey)

    # ============================================================
    # 查询方法
    # ============================================================

    async def get_with_questions(self, survey_id: str) -> Optional[Survey]:
        """
        查询问卷并预加载题目（按 display_order 升序）

        Returns:
            问卷记录，如果不存在则返回 None
        """
        return await self.get_by_id(survey_id, options=[selectinload(Survey.questions)])

    async def list_with_filter(self, survey_filter: SurveyFilter) -> Tuple[List[Survey], int]:
        """
        按条件分页查询问卷

        Returns:
            (问卷列表, 总数)
        """
        query = self._select()

        if survey_filter.search:
            query = query.where(self._search_clause(survey_filter.search, Survey.title, Survey.description))
        if survey_filter.status:
            query = query.where(Survey.status == survey_filter.status)
        if survey_filter.created_by:
            query = query.where(Survey.created_by == survey_filter.created_by)
        if survey_filter.is_public is not None:
            query = query.where(Survey.is_public == survey_filter.is_public)
        if survey_filter.created_from:
            query = query.where(Survey.created_at >= survey_filter.created_from)
        if survey_filter.created_to:
            query = query.where(Survey.created_at <= survey_filter.created_to)

        order_by = self._order_clause(
            survey_filter.sort_by,
            survey_filter.sort_order,
            {
                "title": Survey.title,
                "status": Survey.status,
                "published_at": Survey.published_at,
                "created_at": Survey.created_at,
            },
        )
        return await self._paginate(query, survey_filter, order_by)

    async def list_by_creator(self, created_by: str, limit: int = 50, offset: int = 0) -> List[Survey]:
        query = self._select().where(Survey.created_by == created_by)
        return await self._list(query, [Survey.created_at.desc()], limit=limit, offset=offset)

    async def list_public(self, limit: int = 50, offset: int = 0) -> List[Survey]:
        query = self._select().where(Survey.is_public.is_(True))
        return await self._list(query, [Survey.created_at.desc()], limit=limit, offset=offset)

    async def list_active(self, limit: int = 50, offset: int = 0) -> List[Survey]:
        """已发布且公开的问卷"""
        query = self._select().where(
            Survey.status == SurveyStatus.PUBLISHED.value,
            Survey.is_public.is_(True),
        )
        return await self._list(query, [Survey.published_at.desc()], limit=limit, offset=offset)

    async def list_popular(self, limit: int = 10) -> List[Survey]:
        """按答卷数量降序"""
        response_counts = (
            select(SurveyResponse.survey_id, func.count().label("response_count"))
            .group_by(SurveyResponse.survey_id)
            .subquery()
        )
        query = (
            self._select()
            .outerjoin(response_counts, response_counts.c.survey_id == Survey.id)
        )
        return await self._list(
            query,
            [func.coalesce(response_counts.c.response_count, 0).desc(), Survey.created_at.desc()],
            limit=limit,
        )

    async def list_recent(self, limit: int = 10) -> List[Survey]:
        return await self._list(self._select(), [Survey.created_at.desc()], limit=limit)

    # ============================================================
    # 状态流转
    # ============================================================

    async def update_status(self, survey_id: str, status: str) -> bool:
        return await self.update_by_id(survey_id, status=status)

    async def publish(self, survey_id: str) -> bool:
        updated = await self.update_by_id(
            survey_id,
            status=SurveyStatus.PUBLISHED.value,
            published_at=beijing_now(),
        )
        logger.info("survey_published", survey_id=survey_id, updated=updated)
        return updated

    async def close(self, survey_id: str) -> bool:
        updated = await self.update_by_id(
            survey_id,
            status=SurveyStatus.CLOSED.value,
            closed_at=beijing_now(),
        )
        logger.info("survey_closed", survey_id=survey_id, updated=updated)
        return updated

    async def archive(self, survey_id: str) -> bool:
        return await self.update_by_id(survey_id, status=SurveyStatus.ARCHIVED.value)

    async def bulk_update_status(self, survey_ids: List[str], status: str) -> int:
        return await self.bulk_update(survey_ids, status=status)

    async def bulk_delete(self, survey_ids: List[str]) -> int:
        """
        批量物理删除问卷及其题目、答卷、答案

        Returns:
            删除的问卷数量
        """
        if not survey_ids:
            return 0

        response_ids = select(SurveyResponse.id).where(SurveyResponse.survey_id.in_(survey_ids))
        await self.session.execute(delete(SurveyAnswer).where(SurveyAnswer.response_id.in_(response_ids)))
        await self.session.execute(delete(SurveyResponse).where(SurveyResponse.survey_id.in_(survey_ids)))
        await self.session.execute(delete(SurveyQuestion).where(SurveyQuestion.survey_id.in_(survey_ids)))
        result = await self.session.execute(delete(Survey).where(Survey.id.in_(survey_ids)))

        logger.info("surveys_deleted", requested_count=len(survey_ids), deleted_count=result.rowcount)
        return result.rowcount

    # ============================================================
    # 统计
    # ============================================================

    async def get_stats(self, survey_id: str) -> SurveyStats:
        """
        问卷统计

        completed 指状态为 completed / submitted 的答卷，完成率为百分比。

        Raises:
            NotFoundError: 问卷不存在
        """
        await self.get_or_raise(survey_id)

        question_count = await self._count(select(SurveyQuestion).where(SurveyQuestion.survey_id == survey_id))
        response_count = await self._count(select(SurveyResponse).where(SurveyResponse.survey_id == survey_id))

        finished = await self.session.execute(
            select(SurveyResponse.started_at, SurveyResponse.completed_at).where(
                SurveyResponse.survey_id == survey_id,
                SurveyResponse.status.in_(FINISHED_STATUSES),
            )
        )
        rows = finished.all()
        durations = [
            (completed_at - started_at).total_seconds()
            for started_at, completed_at in rows
            if started_at and completed_at
        ]

        return SurveyStats(
            survey_id=survey_id,
            question_count=question_count,
            response_count=response_count,
            completed_count=len(rows),
            completion_rate=self._percentage(len(rows), response_count),
            avg_completion_seconds=(sum(durations) / len(durations)) if durations else 0.0,
        )
