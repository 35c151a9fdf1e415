"""
问卷题目 Repository
"""
from typing import Dict, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func
import structlog

from sitecms.models.database import SurveyQuestion, beijing_now
from .base import BaseRepository

logger = structlog.get_logger(__name__)


class SurveyQuestionRepository(BaseRepository[SurveyQuestion]):
    """问卷题目数据访问层（题目顺序字段为 display_order，从 1 开始）"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, SurveyQuestion)

    async def list_by_survey(self, survey_id: str) -> List[SurveyQuestion]:
        query = self._select().where(SurveyQuestion.survey_id == survey_id)
        return await self._list(query, [SurveyQuestion.display_order.asc(), SurveyQuestion.created_at.asc()])

    async def count_by_survey(self, survey_id: str) -> int:
        return await self.count(survey_id=survey_id)

    async def list_by_type(self, survey_id: str, question_type: str) -> List[SurveyQuestion]:
        query = self._select().where(
            SurveyQuestion.survey_id == survey_id,
            SurveyQuestion.question_type == question_type,
        )
        return await self._list(query, [SurveyQuestion.display_order.asc()])

    async def list_required(self, survey_id: str) -> List[SurveyQuestion]:
        query = self._select().where(SurveyQuestion.survey_id == survey_id, SurveyQuestion.is_required.is_(True))
        return await self._list(query, [SurveyQuestion.display_order.asc()])

    async def list_optional(self, survey_id: str) -> List[SurveyQuestion]:
        query = self._select().where(SurveyQuestion.survey_id == survey_id, SurveyQuestion.is_required.is_(False))
        return await self._list(query, [SurveyQuestion.display_order.asc()])

    async def get_next_order(self, survey_id: str) -> int:
        """下一个题目顺序号（已有最大值 + 1，空问卷为 1）"""
        result = await self.session.execute(
            select(func.max(SurveyQuestion.display_order)).where(SurveyQuestion.survey_id == survey_id)
        )
        current = result.scalar_one_or_none()
        return (current or 0) + 1

    async def get_type_stats(self, survey_id: str) -> Dict[str, int]:
        """题型 -> 题目数量"""
        result = await self.session.execute(
            select(SurveyQuestion.question_type, func.count())
            .where(SurveyQuestion.survey_id == survey_id)
            .group_by(SurveyQuestion.question_type)
        )
        return {question_type: count for question_type, count in result.all()}

    # ============================================================
    # 写入方法
    # ============================================================

    async def update_order(self, question_id: str, display_order: int) -> bool:
        return await self.update_by_id(question_id, display_order=display_order)

    async def reorder(self, survey_id: str, orders: Dict[str, int]) -> int:
        """
        批量调整题目顺序

        Args:
            orders: question_id -> display_order（只更新属于该问卷的题目）
        """
        updated = 0
        for question_id, display_order in orders.items():
            result = await self.session.execute(
                update(SurveyQuestion)
                .where(SurveyQuestion.id == question_id, SurveyQuestion.survey_id == survey_id)
                .values(display_order=display_order, updated_at=beijing_now())
            )
            updated += result.rowcount

        logger.info("survey_questions_reordered", survey_id=survey_id, updated_count=updated)
        return updated

    async def bulk_create(self, questions: List[SurveyQuestion]) -> List[SurveyQuestion]:
        """
        批量创建题目

        display_order 未设置（<= 0）的题目按列表顺序接在该问卷现有题目之后。
        """
        next_orders: Dict[str, int] = {}
        for question in questions:
            if question.display_order and question.display_order > 0:
                continue
            if question.survey_id not in next_orders:
                next_orders[question.survey_id] = await self.get_next_order(question.survey_id)
            question.display_order = next_orders[question.survey_id]
            next_orders[question.survey_id] += 1

        return await self.create_batch(questions, flush=True)

    async def bulk_delete(self, question_ids: List[str]) -> int:
        return await self.soft_delete_batch(question_ids)

    async def delete_by_survey(self, survey_id: str) -> int:
        result = await self.session.execute(delete(SurveyQuestion).where(SurveyQuestion.survey_id == survey_id))
        logger.info("survey_questions_deleted", survey_id=survey_id, deleted_count=result.rowcount)
        return result.rowcount
