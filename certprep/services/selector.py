"""
Question selection policies used to populate tests.

Policies:
    random    uniform random draw, optional category/tag/exclude filters
    weighted  per-category quotas proportional to weights, shuffled together
    new       questions with no submitted answer in any practice session
    wrong     questions answered incorrectly at least once, most-missed first
    flagged   questions flagged for review at least once
"""
import logging
import math
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlalchemy import Select, and_, exists, func, select
from sqlalchemy.orm import Session, selectinload

from certprep.core.errors import ValidationError
from certprep.models.orm import Category, Question, SessionAnswer, question_tags
from certprep.services.questions import usable_question

logger = logging.getLogger(__name__)

SMART_MODES = ("new", "wrong", "flagged")
SELECTION_MODES = ("random", "weighted") + SMART_MODES

# flag-only rows carry no selection and do not count as attempts
_submitted = SessionAnswer.selected_answer_ids.is_not(None)


@dataclass
class CategoryWeight:
    category_id: int
    weight: float


@dataclass
class PoolStats:
    total: int
    by_category: List[Dict] = field(default_factory=list)
    new_count: int = 0
    wrong_count: int = 0
    flagged_count: int = 0


def round_half_up(x: float) -> int:
    return math.floor(x + 0.5)


def _filtered(stmt: Select, category_ids: Optional[Sequence[int]], tag_ids: Optional[Sequence[int]],
              exclude_ids: Optional[Sequence[int]] = None) -> Select:
    if category_ids:
        stmt = stmt.where(Question.category_id.in_(list(category_ids)))
    if tag_ids:
        tagged = select(question_tags.c.question_id).where(question_tags.c.tag_id.in_(list(tag_ids)))
        stmt = stmt.where(Question.id.in_(tagged))
    if exclude_ids:
        stmt = stmt.where(Question.id.not_in(list(exclude_ids)))
    return stmt


class QuestionSelector:
    def __init__(self, db: Session):
        self.db = db

    def _fetch(self, stmt: Select) -> List[Question]:
        stmt = stmt.options(selectinload(Question.category))
        return list(self.db.scalars(stmt).unique().all())

    def select_random(self, count: int, category_ids: Optional[Sequence[int]] = None,
                      tag_ids: Optional[Sequence[int]] = None,
                      exclude_ids: Optional[Sequence[int]] = None) -> List[Question]:
        if count <= 0:
            return []
        stmt = _filtered(select(Question).where(usable_question()), category_ids, tag_ids, exclude_ids)
        return self._fetch(stmt.order_by(func.random()).limit(count))

    def select_weighted(self, count: int, weights: Sequence[CategoryWeight]) -> List[Question]:
        if not weights:
            return self.select_random(count)
        total_weight = sum(w.weight for w in weights)
        if total_weight <= 0:
            raise ValidationError("Category weights must sum to a positive number")
        picked: List[Question] = []
        seen: set[int] = set()
        for w in weights:
            quota = round_half_up(w.weight / total_weight * count)
            if quota <= 0:
                continue
            stmt = select(Question).where(Question.category_id == w.category_id, usable_question())
            if seen:
                stmt = stmt.where(Question.id.not_in(list(seen)))
            drawn = self._fetch(stmt.order_by(func.random()).limit(quota))
            seen.update(q.id for q in drawn)
            picked.extend(drawn)
        random.shuffle(picked)
        return picked[:count]

    def select_smart(self, count: int, mode: str) -> List[Question]:
        if mode not in SMART_MODES:
            raise ValidationError(f"Unknown smart selection mode: {mode!r}")
        if count <= 0:
            return []
        if mode == "new":
            answered = exists().where(SessionAnswer.question_id == Question.id, _submitted)
            stmt = select(Question).where(~answered, usable_question()).order_by(func.random())
        elif mode == "wrong":
            stmt = (
                select(Question)
                .join(SessionAnswer, SessionAnswer.question_id == Question.id)
                .where(_submitted, SessionAnswer.is_correct.is_(False), usable_question())
                .group_by(Question.id)
                .order_by(func.count(SessionAnswer.id).desc(), func.random())
            )
        else:
            stmt = (
                select(Question)
                .join(SessionAnswer, (SessionAnswer.question_id == Question.id) & (SessionAnswer.flagged.is_(True)))
                .where(usable_question())
                .group_by(Question.id)
                .order_by(func.random())
            )
        return self._fetch(stmt.limit(count))

    def select(self, count: int, mode: str = "random", category_ids: Optional[Sequence[int]] = None,
               tag_ids: Optional[Sequence[int]] = None,
               weights: Optional[Sequence[CategoryWeight]] = None) -> List[Question]:
        """Dispatch on selection mode. Unknown modes are rejected, never defaulted."""
        if mode == "random":
            questions = self.select_random(count, category_ids, tag_ids)
        elif mode == "weighted":
            questions = self.select_weighted(count, weights or [])
        elif mode in SMART_MODES:
            questions = self.select_smart(count, mode)
        else:
            raise ValidationError(f"Unknown selection mode: {mode!r}. Use one of: {', '.join(SELECTION_MODES)}")
        logger.debug("Selected %d/%d questions with mode=%s", len(questions), count, mode)
        return questions

    def pool_stats(self, category_ids: Optional[Sequence[int]] = None,
                   tag_ids: Optional[Sequence[int]] = None) -> PoolStats:
        total = self.db.scalar(
            _filtered(select(func.count(Question.id)).where(usable_question()), category_ids, tag_ids)
        ) or 0
        rows = self.db.execute(
            select(Category.id, Category.name, func.count(Question.id))
            .outerjoin(Question, and_(Question.category_id == Category.id, usable_question()))
            .group_by(Category.id, Category.name)
            .order_by(Category.name)
        ).all()
        answered = exists().where(SessionAnswer.question_id == Question.id, _submitted)
        new_count = self.db.scalar(select(func.count(Question.id)).where(~answered, usable_question())) or 0
        wrong_count = self.db.scalar(
            select(func.count(func.distinct(SessionAnswer.question_id))).where(_submitted, SessionAnswer.is_correct.is_(False))
        ) or 0
        flagged_count = self.db.scalar(
            select(func.count(func.distinct(SessionAnswer.question_id))).where(SessionAnswer.flagged.is_(True))
        ) or 0
        return PoolStats(
            total=total,
            by_category=[{"id": r[0], "name": r[1], "count": r[2]} for r in rows],
            new_count=new_count,
            wrong_count=wrong_count,
            flagged_count=flagged_count,
        )
