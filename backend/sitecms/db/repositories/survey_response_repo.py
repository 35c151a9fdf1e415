"""
问卷答卷 Repository

负责 survey_responses 表的数据访问操作：答卷状态流转、完成率 / 用时统计与流失分析。
"""
from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, and_
from sqlalchemy.orm import selectinload
import structlog

from sitecms.models.constants import ResponseStatus
from sitecms.models.database import SurveyAnswer, SurveyQuestion, SurveyResponse, beijing_now
from sitecms.models.filters import SurveyResponseFilter
from sitecms.models.stats import DropoffPoint, ResponseStats
from .base import BaseRepository

logger = structlog.get_logger(__name__)

FINISHED_STATUSES = [ResponseStatus.COMPLETED.value, ResponseStatus.SUBMITTED.value]


class SurveyResponseRepository(BaseRepository[SurveyResponse]):
    """问卷答卷数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, SurveyResponse)

    # ============================================================
    # 查询方法
    # ============================================================

    async def list_by_survey(self, survey_id: str, limit: int = 100, offset: int = 0) -> List[SurveyResponse]:
        query = self._select().where(SurveyResponse.survey_id == survey_id)
        return await self._list(query, [SurveyResponse.started_at.desc()], limit=limit, offset=offset)

    async def list_by_respondent(self, respondent_id: str) -> List[SurveyResponse]:
        query = self._select().where(SurveyResponse.respondent_id == respondent_id)
        return await self._list(query, [SurveyResponse.started_at.desc()])

    async def get_by_session_id(self, session_id: str, survey_id: Optional[str] = None) -> Optional[SurveyResponse]:
        query = self._select().where(SurveyResponse.session_id == session_id)
        if survey_id:
            query = query.where(SurveyResponse.survey_id == survey_id)
        result = await self.session.execute(query.order_by(SurveyResponse.started_at.desc()))
        return result.scalars().first()

    async def get_with_answers(self, response_id: str) -> Optional[SurveyResponse]:
        return await self.get_by_id(response_id, options=[selectinload(SurveyResponse.answers)])

    async def list_with_filter(self, response_filter: SurveyResponseFilter) -> Tuple[List[SurveyResponse], int]:
        """
        按条件分页查询答卷

        Returns:
            (答卷列表, 总数)
        """
        query = self._select()

        if response_filter.survey_id:
            query = query.where(SurveyResponse.survey_id == response_filter.survey_id)
        if response_filter.respondent_id:
            query = query.where(SurveyResponse.respondent_id == response_filter.respondent_id)
        if response_filter.status:
            query = query.where(SurveyResponse.status == response_filter.status)
        if response_filter.started_from:
            query = query.where(SurveyResponse.started_at >= response_filter.started_from)
        if response_filter.started_to:
            query = query.where(SurveyResponse.started_at <= response_filter.started_to)

        order_by = self._order_clause(
            response_filter.sort_by,
            response_filter.sort_order,
            {
                "started_at": SurveyResponse.started_at,
                "completed_at": SurveyResponse.completed_at,
                "status": SurveyResponse.status,
                "created_at": SurveyResponse.created_at,
            },
        )
        return await self._paginate(query, response_filter, order_by)

    # ============================================================
    # 状态流转
    # ============================================================

    async def update_status(self, response_id: str, status: str) -> bool:
        return await self.update_by_id(response_id, status=status)

    async def bulk_update_status(self, response_ids: List[str], status: str) -> int:
        return await self.bulk_update(response_ids, status=status)

    async def mark_completed(self, response_id: str) -> bool:
        return await self.update_by_id(
            response_id,
            status=ResponseStatus.COMPLETED.value,
            completed_at=beijing_now(),
        )

    async def mark_submitted(self, response_id: str) -> SurveyResponse:
        """
        提交答卷（未完成的答卷同时补记完成时间）

        Raises:
            NotFoundError: 答卷不存在
        """
        response = await self.get_or_raise(response_id)
        now = beijing_now()
        response.status = ResponseStatus.SUBMITTED.value
        response.submitted_at = now
        if response.completed_at is None:
            response.completed_at = now
        response.updated_at = now
        await self.session.flush()
        return response

    async def mark_abandoned(self, response_id: str) -> bool:
        return await self.update_by_id(response_id, status=ResponseStatus.ABANDONED.value)

    # ============================================================
    # 删除
    # ============================================================

    async def bulk_delete(self, response_ids: List[str]) -> int:
        """物理删除答卷及其答案"""
        if not response_ids:
            return 0
        await self.session.execute(delete(SurveyAnswer).where(SurveyAnswer.response_id.in_(response_ids)))
        result = await self.session.execute(delete(SurveyResponse).where(SurveyResponse.id.in_(response_ids)))
        logger.info("survey_responses_deleted", deleted_count=result.rowcount)
        return result.rowcount

    async def delete_by_survey(self, survey_id: str) -> int:
        response_ids = select(SurveyResponse.id).where(SurveyResponse.survey_id == survey_id)
        await self.session.execute(delete(SurveyAnswer).where(SurveyAnswer.response_id.in_(response_ids)))
        result = await self.session.execute(delete(SurveyResponse).where(SurveyResponse.survey_id == survey_id))
        logger.info("survey_responses_deleted_by_survey", survey_id=survey_id, deleted_count=result.rowcount)
        return result.rowcount

    # ============================================================
    # 统计
    # ============================================================

    async def _finished_durations(self, survey_id: str) -> List[float]:
        result = await self.session.execute(
            select(SurveyResponse.started_at, SurveyResponse.completed_at).where(
                SurveyResponse.survey_id == survey_id,
                SurveyResponse.status.in_(FINISHED_STATUSES),
                SurveyResponse.completed_at.is_not(None),
            )
        )
        return [
            (completed_at - started_at).total_seconds()
            for started_at, completed_at in result.all()
        ]

    async def get_response_stats(self, survey_id: str) -> ResponseStats:
        """
        答卷统计

        Returns:
            总数、各状态数量、完成率（completed + submitted 占比，百分比）、平均完成用时（秒）
        """
        result = await self.session.execute(
            select(SurveyResponse.status, func.count())
            .where(SurveyResponse.survey_id == survey_id)
            .group_by(SurveyResponse.status)
        )
        by_status = {status: count for status, count in result.all()}
        total = sum(by_status.values())
        completed = by_status.get(ResponseStatus.COMPLETED.value, 0)
        submitted = by_status.get(ResponseStatus.SUBMITTED.value, 0)
        durations = await self._finished_durations(survey_id)

        return ResponseStats(
            survey_id=survey_id,
            total_responses=total,
            in_progress=by_status.get(ResponseStatus.IN_PROGRESS.value, 0),
            completed=completed,
            submitted=submitted,
            abandoned=by_status.get(ResponseStatus.ABANDONED.value, 0),
            completion_rate=self._percentage(completed + submitted, total),
            avg_completion_seconds=(sum(durations) / len(durations)) if durations else 0.0,
        )

    async def get_completion_rate(self, survey_id: str) -> float:
        return (await self.get_response_stats(survey_id)).completion_rate

    async def get_average_time(self, survey_id: str) -> float:
        """平均完成用时（秒）"""
        durations = await self._finished_durations(survey_id)
        return (sum(durations) / len(durations)) if durations else 0.0

    async def get_dropoff_points(self, survey_id: str) -> List[DropoffPoint]:
        """
        题目流失分析

        按题目顺序统计作答（未跳过）的答卷数，dropoff_count 为相对上一题
        （第一题相对答卷总数）减少的答卷数，dropoff_rate 为其百分比。
        """
        total_responses = await self.count(survey_id=survey_id)

        answered = (
            select(
                SurveyQuestion.id,
                SurveyQuestion.display_order,
                func.count(func.distinct(SurveyAnswer.response_id)),
            )
            .select_from(SurveyQuestion)
            .outerjoin(
                SurveyAnswer,
                and_(SurveyAnswer.question_id == SurveyQuestion.id, SurveyAnswer.is_skipped.is_(False)),
            )
            .where(SurveyQuestion.survey_id == survey_id)
            .group_by(SurveyQuestion.id, SurveyQuestion.display_order)
            .order_by(SurveyQuestion.display_order.asc())
        )
        result = await self.session.execute(answered)

        points = []
        previous = total_responses
        for question_id, display_order, answered_count in result.all():
            dropoff = max(previous - answered_count, 0)
            points.append(
                DropoffPoint(
                    question_id=question_id,
                    display_order=display_order,
                    answered_count=answered_count,
                    dropoff_count=dropoff,
                    dropoff_rate=self._percentage(dropoff, previous),
                )
            )
            previous = answered_count

        return points
