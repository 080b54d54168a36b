import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from certprep.core.errors import NotFoundError, ValidationError
from certprep.models.orm import MIN_ANSWERS, Answer, Category, Question, SessionAnswer, Tag, TestQuestion, question_tags
from certprep.services.catalog import get_or_create_tag

logger = logging.getLogger(__name__)

MAX_TAGS_PER_QUESTION = 10


@dataclass
class AnswerInput:
    text: str
    is_correct: bool = False


def preview(text: Optional[str], length: int = 100) -> str:
    return (text or "")[:length] + "..."


def validate_answers(answers: Sequence[AnswerInput]) -> None:
    if len(answers) < MIN_ANSWERS:
        raise ValidationError("Question text and at least 2 answers required")
    if not any(a.is_correct for a in answers):
        raise ValidationError("At least one answer must be marked as correct")


def usable_question():
    """SQL condition for questions a session can grade: at least two answers, one of them correct."""
    usable_ids = (
        select(Answer.question_id)
        .group_by(Answer.question_id)
        .having(
            func.count(Answer.id) >= MIN_ANSWERS,
            func.sum(case((Answer.is_correct.is_(True), 1), else_=0)) >= 1,
        )
    )
    return Question.id.in_(usable_ids)


def add_answers(db: Session, question: Question, answers: Sequence[AnswerInput]) -> None:
    for i, a in enumerate(answers):
        db.add(Answer(question_id=question.id, text=a.text, is_correct=bool(a.is_correct), order_index=i))


def link_tags(db: Session, question_id: int, tags: Sequence[Union[str, int]], limit: int = MAX_TAGS_PER_QUESTION) -> List[int]:
    """Link tags by name (created on demand) or by id. Existing links are kept."""
    linked = set(db.scalars(select(question_tags.c.tag_id).where(question_tags.c.question_id == question_id)).all())
    tag_ids: List[int] = []
    for item in list(tags)[:limit]:
        if isinstance(item, str):
            if not item.strip():
                continue
            tag_id = get_or_create_tag(db, item).id
        else:
            if db.get(Tag, item) is None:
                continue
            tag_id = item
        tag_ids.append(tag_id)
        if tag_id not in linked:
            db.execute(question_tags.insert().values(question_id=question_id, tag_id=tag_id))
            linked.add(tag_id)
    return tag_ids


class QuestionService:
    def __init__(self, db: Session):
        self.db = db

    def _load(self, question_id: int) -> Question:
        q = self.db.scalar(
            select(Question)
            .where(Question.id == question_id)
            .options(selectinload(Question.answers), selectinload(Question.tags), selectinload(Question.category))
        )
        if q is None:
            raise NotFoundError("Question not found")
        return q

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is not None and self.db.get(Category, category_id) is None:
            raise ValidationError(f"Unknown category {category_id}")

    def get_question(self, question_id: int) -> Question:
        return self._load(question_id)

    def create_question(self, text: str, answers: Sequence[AnswerInput], explanation: Optional[str] = None,
                        is_multiple_choice: bool = False, category_id: Optional[int] = None,
                        tags: Sequence[Union[str, int]] = (), source_file: str = "manual_entry") -> Question:
        if not text or not text.strip():
            raise ValidationError("Question text and at least 2 answers required")
        validate_answers(answers)
        self._check_category(category_id)
        q = Question(text=text, explanation=explanation or None, is_multiple_choice=is_multiple_choice,
                     category_id=category_id, source_file=source_file)
        self.db.add(q)
        self.db.flush()
        add_answers(self.db, q, answers)
        if tags:
            link_tags(self.db, q.id, tags)
        self.db.commit()
        logger.info("Created question %s (%d answers)", q.id, len(answers))
        return self._load(q.id)

    def update_question(self, question_id: int, text: str, answers: Optional[Sequence[AnswerInput]] = None,
                        explanation: Optional[str] = None, is_multiple_choice: bool = False,
                        category_id: Optional[int] = None,
                        tags: Optional[Sequence[Union[str, int]]] = None) -> Question:
        q = self._load(question_id)
        if not text or not text.strip():
            raise ValidationError("Question text is required")
        if answers is not None:
            validate_answers(answers)
        self._check_category(category_id)
        q.text = text
        q.explanation = explanation or None
        q.category_id = category_id
        q.is_multiple_choice = is_multiple_choice
        q.updated_at = func.now()
        if answers is not None:
            self.db.execute(delete(Answer).where(Answer.question_id == question_id))
            add_answers(self.db, q, answers)
        if tags is not None:
            self.db.execute(delete(question_tags).where(question_tags.c.question_id == question_id))
            if tags:
                link_tags(self.db, question_id, tags)
        self.db.commit()
        self.db.expire_all()
        return self._load(question_id)

    def delete_question(self, question_id: int) -> None:
        if self.db.get(Question, question_id) is None:
            raise NotFoundError("Question not found")
        # explicit cascade so the outcome does not depend on FK enforcement
        self.db.execute(delete(Answer).where(Answer.question_id == question_id))
        self.db.execute(delete(question_tags).where(question_tags.c.question_id == question_id))
        self.db.execute(delete(SessionAnswer).where(SessionAnswer.question_id == question_id))
        self.db.execute(delete(TestQuestion).where(TestQuestion.question_id == question_id))
        self.db.execute(delete(Question).where(Question.id == question_id))
        self.db.commit()
        logger.info("Deleted question %s", question_id)

    def list_questions(self, page: int = 1, limit: int = 20, category_id: Optional[int] = None,
                       tag: Optional[str] = None, search: Optional[str] = None,
                       unclassified: bool = False) -> Dict:
        filters = []
        if category_id:
            filters.append(Question.category_id == category_id)
        if unclassified:
            filters.append(Question.category_id.is_(None))
        if tag:
            tagged = (
                select(question_tags.c.question_id)
                .join(Tag, Tag.id == question_tags.c.tag_id)
                .where(Tag.name.ilike(f"%{tag}%"))
            )
            filters.append(Question.id.in_(tagged))
        if search:
            filters.append(Question.text.ilike(f"%{search}%"))

        total = self.db.scalar(select(func.count(Question.id)).where(*filters)) or 0
        rows = self.db.scalars(
            select(Question)
            .where(*filters)
            .options(selectinload(Question.answers), selectinload(Question.tags), selectinload(Question.category))
            .order_by(Question.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).all()
        return {
            "questions": list(rows),
            "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if limit else 0},
        }

    def question_stats(self, question_id: int) -> Dict:
        q = self.db.get(Question, question_id)
        if q is None:
            raise NotFoundError("Question not found")
        submitted = SessionAnswer.selected_answer_ids.is_not(None)
        row = self.db.execute(
            select(
                func.count(case((submitted, 1))),
                func.count(case((submitted & SessionAnswer.is_correct.is_(True), 1))),
                func.count(case((SessionAnswer.flagged.is_(True), 1))),
            ).where(SessionAnswer.question_id == question_id)
        ).one()
        attempts, correct, flagged = row
        return {
            "question_id": question_id,
            "question_text": preview(q.text),
            "total_attempts": attempts,
            "correct_count": correct,
            "success_rate": round(100.0 * correct / attempts, 1) if attempts else 0,
            "flagged_count": flagged,
        }

    def set_diagram(self, question_id: int, filename: str) -> None:
        result = self.db.execute(update(Question).where(Question.id == question_id).values(diagram_path=filename))
        if result.rowcount == 0:
            raise NotFoundError("Question not found")
        self.db.commit()
