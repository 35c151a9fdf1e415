"""
问卷答案 Repository

负责 survey_answers 表的数据访问操作与单题统计（选项分布、数值统计、跳过率）。
"""
import statistics
from collections import Counter
from typing import Dict, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, case
import structlog

from sitecms.models.database import SurveyAnswer
from sitecms.models.stats import AnswerStats, NumericStats
from .base import BaseRepository

logger = structlog.get_logger(__name__)


class SurveyAnswerRepository(BaseRepository[SurveyAnswer]):
    """问卷答案数据访问层"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, SurveyAnswer)

    # ============================================================
    # 查询方法
    # ============================================================

    async def list_by_response(self, response_id: str) -> List[SurveyAnswer]:
        query = self._select().where(SurveyAnswer.response_id == response_id)
        return await self._list(query, [SurveyAnswer.created_at.asc()])

    async def list_by_question(self, question_id: str) -> List[SurveyAnswer]:
        query = self._select().where(SurveyAnswer.question_id == question_id)
        return await self._list(query, [SurveyAnswer.created_at.asc()])

    async def list_text_answers(self, question_id: str) -> List[SurveyAnswer]:
        query = self._select().where(
            SurveyAnswer.question_id == question_id,
            SurveyAnswer.is_skipped.is_(False),
            SurveyAnswer.answer_text.is_not(None),
            SurveyAnswer.answer_text != "",
        )
        return await self._list(query, [SurveyAnswer.created_at.asc()])

    async def list_numeric_answers(self, question_id: str) -> List[SurveyAnswer]:
        query = self._select().where(
            SurveyAnswer.question_id == question_id,
            SurveyAnswer.is_skipped.is_(False),
            SurveyAnswer.answer_number.is_not(None),
        )
        return await self._list(query, [SurveyAnswer.answer_number.asc()])

    # ============================================================
    # 统计
    # ============================================================

    async def get_choice_distribution(self, question_id: str) -> Dict[str, int]:
        """
        选项分布

        单选题取 answer_text，多选题展开 answer_array 中的每个选项。
        """
        result = await self.session.execute(
            select(SurveyAnswer.answer_text, SurveyAnswer.answer_array).where(
                SurveyAnswer.question_id == question_id,
                SurveyAnswer.is_skipped.is_(False),
            )
        )

        distribution: Counter = Counter()
        for answer_text, answer_array in result.all():
            if answer_array:
                distribution.update(str(choice) for choice in answer_array)
            elif answer_text:
                distribution[answer_text] += 1

        return dict(distribution)

    async def get_numeric_stats(self, question_id: str) -> NumericStats:
        """数值题统计：数量、最小、最大、平均、中位数、总体标准差"""
        result = await self.session.execute(
            select(SurveyAnswer.answer_number).where(
                SurveyAnswer.question_id == question_id,
                SurveyAnswer.is_skipped.is_(False),
                SurveyAnswer.answer_number.is_not(None),
            )
        )
        values = [float(value) for value in result.scalars().all()]
        if not values:
            return NumericStats()

        return NumericStats(
            count=len(values),
            min=min(values),
            max=max(values),
            mean=statistics.fmean(values),
            median=statistics.median(values),
            std_dev=statistics.pstdev(values),
        )

    async def _answer_counts(self, question_id: str):
        result = await self.session.execute(
            select(
                func.count(),
                func.coalesce(func.sum(case((SurveyAnswer.is_skipped.is_(True), 1), else_=0)), 0),
            ).where(SurveyAnswer.question_id == question_id)
        )
        total, skipped = result.one()
        return total, int(skipped)

    async def get_skip_rate(self, question_id: str) -> float:
        """跳过率（百分比）"""
        total, skipped = await self._answer_counts(question_id)
        return self._percentage(skipped, total)

    async def get_answer_stats(self, question_id: str) -> AnswerStats:
        total, skipped = await self._answer_counts(question_id)
        return AnswerStats(
            question_id=question_id,
            total_answers=total,
            answered=total - skipped,
            skipped=skipped,
            skip_rate=self._percentage(skipped, total),
        )

    # ============================================================
    # 写入方法
    # ============================================================

    async def bulk_create(self, answers: List[SurveyAnswer]) -> List[SurveyAnswer]:
        return await self.create_batch(answers, flush=True)

    async def delete_by_response(self, response_id: str) -> int:
        result = await self.session.execute(delete(SurveyAnswer).where(SurveyAnswer.response_id == response_id))
        return result.rowcount

    async def delete_by_question(self, question_id: str) -> int:
        result = await self.session.execute(delete(SurveyAnswer).where(SurveyAnswer.question_id == question_id))
        logger.info("survey_answers_deleted_by_question", question_id=question_id, deleted_count=result.rowcount)
        return result.rowcount
