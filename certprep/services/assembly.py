import logging
import math
from datetime import date
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from certprep.core.errors import NotFoundError, ValidationError
from certprep.models.orm import PracticeSession, Question, Test, TestQuestion
from certprep.services.questions import usable_question
from certprep.services.selector import CategoryWeight, QuestionSelector

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 65
MINUTES_PER_QUESTION = 1.5


def _dedupe(ids: Sequence[int]) -> List[int]:
    seen: set[int] = set()
    out: List[int] = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


class TestAssembly:
    """Binds ordered question selections to named tests. order_index is 0-based."""

    __test__ = False

    def __init__(self, db: Session, selector: Optional[QuestionSelector] = None):
        self.db = db
        self.selector = selector or QuestionSelector(db)

    def _validate(self, name: str, duration_minutes: int, question_ids: Sequence[int]) -> List[int]:
        if not name or not name.strip():
            raise ValidationError("Test name is required")
        if not question_ids:
            raise ValidationError("At least one question is required")
        if duration_minutes is not None and duration_minutes <= 0:
            raise ValidationError("duration_minutes must be positive")
        ids = _dedupe(question_ids)
        found = set(self.db.scalars(select(Question.id).where(Question.id.in_(ids))).all())
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError(f"Questions not found: {missing}")
        usable = set(self.db.scalars(select(Question.id).where(Question.id.in_(ids), usable_question())).all())
        unusable = [i for i in ids if i not in usable]
        if unusable:
            raise ValidationError(f"Questions need at least 2 answers and a correct one: {unusable}")
        return ids

    def _add_members(self, test_id: int, question_ids: Sequence[int]) -> None:
        for index, qid in enumerate(question_ids):
            self.db.add(TestQuestion(test_id=test_id, question_id=qid, order_index=index))

    def _get(self, test_id: int) -> Test:
        test = self.db.get(Test, test_id)
        if test is None:
            raise NotFoundError("Test not found")
        return test

    def create_test(self, name: str, duration_minutes: Optional[int], question_ids: Sequence[int]) -> Test:
        ids = self._validate(name, duration_minutes, question_ids)
        test = Test(name=name.strip(), duration_minutes=duration_minutes or DEFAULT_DURATION_MINUTES)
        self.db.add(test)
        self.db.flush()
        self._add_members(test.id, ids)
        self.db.commit()
        logger.info("Created test %s %r with %d questions", test.id, test.name, len(ids))
        return test

    def update_test(self, test_id: int, name: str, duration_minutes: Optional[int], question_ids: Sequence[int]) -> Test:
        test = self._get(test_id)
        ids = self._validate(name, duration_minutes, question_ids)
        test.name = name.strip()
        test.duration_minutes = duration_minutes or test.duration_minutes
        self.db.execute(delete(TestQuestion).where(TestQuestion.test_id == test_id))
        self._add_members(test_id, ids)
        self.db.commit()
        self.db.expire_all()
        logger.info("Replaced membership of test %s (%d questions)", test_id, len(ids))
        return self._get(test_id)

    def delete_test(self, test_id: int) -> None:
        self._get(test_id)
        # past sessions keep their history without the test
        self.db.execute(update(PracticeSession).where(PracticeSession.test_id == test_id).values(test_id=None))
        self.db.execute(delete(TestQuestion).where(TestQuestion.test_id == test_id))
        self.db.execute(delete(Test).where(Test.id == test_id))
        self.db.commit()

    def preview(self, count: int, mode: str = "random", category_ids: Optional[Sequence[int]] = None,
                tag_ids: Optional[Sequence[int]] = None,
                weights: Optional[Sequence[CategoryWeight]] = None) -> List[Question]:
        return self.selector.select(count, mode, category_ids, tag_ids, weights)

    def create_from_selection(self, name: str, duration_minutes: Optional[int], count: int, mode: str = "random",
                              category_ids: Optional[Sequence[int]] = None, tag_ids: Optional[Sequence[int]] = None,
                              weights: Optional[Sequence[CategoryWeight]] = None) -> Test:
        if not name or not name.strip():
            raise ValidationError("Test name is required")
        questions = self.selector.select(count, mode, category_ids, tag_ids, weights)
        if not questions:
            raise ValidationError("No questions available for selection")
        return self.create_test(name, duration_minutes or 60, [q.id for q in questions])

    def generate_test(self, count: int = 20, category_id: Optional[int] = None,
                      tag_ids: Optional[Sequence[int]] = None, name: Optional[str] = None) -> Test:
        questions = self.selector.select_random(count, [category_id] if category_id else None, tag_ids)
        if not questions:
            raise ValidationError("No questions available for selection")
        name = name or f"Practice Test - {date.today().isoformat()}"
        return self.create_test(name, math.ceil(count * MINUTES_PER_QUESTION), [q.id for q in questions])

    def list_tests(self) -> List[Dict]:
        counts = (
            select(TestQuestion.test_id, func.count().label("n"))
            .group_by(TestQuestion.test_id)
            .subquery()
        )
        rows = self.db.execute(
            select(Test, func.coalesce(counts.c.n, 0))
            .outerjoin(counts, counts.c.test_id == Test.id)
            .order_by(Test.created_at.desc(), Test.id.desc())
        ).all()
        return [{"test": t, "question_count": n} for t, n in rows]

    def ordered_questions(self, test_id: int) -> List[Question]:
        return list(self.db.scalars(
            select(Question)
            .join(TestQuestion, TestQuestion.question_id == Question.id)
            .where(TestQuestion.test_id == test_id)
            .options(selectinload(Question.answers), selectinload(Question.tags), selectinload(Question.category))
            .order_by(TestQuestion.order_index, TestQuestion.question_id)
        ).all())

    def get_test(self, test_id: int) -> tuple[Test, List[Question]]:
        test = self._get(test_id)
        return test, self.ordered_questions(test_id)

    def test_questions(self, test_id: int) -> List[Question]:
        self._get(test_id)
        return self.ordered_questions(test_id)
