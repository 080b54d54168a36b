"""
Practice session engine.

A session moves Active -> Completed exactly once. While active it accepts
answer submissions (upserted per question); completion scores the recorded
submissions against the question count snapshotted at start.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import case, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, selectinload

from certprep.core.errors import CertPrepError, InvalidStateError, NotFoundError, ValidationError
from certprep.models.orm import PracticeSession, Question, SessionAnswer, Test
from certprep.services.assembly import TestAssembly
from certprep.services.questions import preview
from certprep.services.selector import round_half_up

logger = logging.getLogger(__name__)

SESSION_MODES = ("timed", "non-timed")

_UPSERT_INSERTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


@dataclass
class SessionStart:
    session_id: int
    test_name: str
    mode: str
    duration_minutes: int
    questions: List[Question]


@dataclass
class SessionState:
    session: PracticeSession
    test_name: Optional[str]
    duration_minutes: Optional[int]
    questions: List[Question]
    answers_given: Dict[int, Dict]


@dataclass
class BreakdownItem:
    question_id: int
    question_text: str
    is_correct: bool
    flagged: bool


@dataclass
class SessionResult:
    score: int
    total: int
    correct_count: int
    time_taken_seconds: int
    time_taken_minutes: int
    breakdown: List[BreakdownItem] = field(default_factory=list)


def is_exact_match(selected: Sequence[int], correct: set[int]) -> bool:
    """All correct answers picked and nothing else; order is irrelevant, no partial credit."""
    if not correct:
        return False
    return len(selected) == len(correct) and correct.issubset(selected)


def compute_score(correct_count: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(100 * correct_count / total)


class SessionEngine:
    def __init__(self, db: Session, assembly: Optional[TestAssembly] = None):
        self.db = db
        self.assembly = assembly or TestAssembly(db)

    # --- helpers ---
    def _upsert_insert(self):
        dialect = self.db.get_bind().dialect.name
        try:
            return _UPSERT_INSERTS[dialect]
        except KeyError:
            raise CertPrepError(f"Session answer upsert is not supported on {dialect}")

    def _get(self, session_id: int) -> PracticeSession:
        session = self.db.get(PracticeSession, session_id)
        if session is None:
            raise NotFoundError("Session not found")
        return session

    def _require_active(self, session: PracticeSession) -> None:
        if not session.is_active:
            raise InvalidStateError("Session already completed")

    def _require_member(self, session: PracticeSession, question_id: int) -> None:
        if question_id not in (session.question_ids or []):
            raise ValidationError(f"Question {question_id} is not part of session {session.id}")

    def _hydrate(self, question_ids: Sequence[int]) -> List[Question]:
        if not question_ids:
            return []
        rows = self.db.scalars(
            select(Question)
            .where(Question.id.in_(list(question_ids)))
            .options(selectinload(Question.answers), selectinload(Question.category), selectinload(Question.tags))
        ).all()
        by_id = {q.id: q for q in rows}
        return [by_id[i] for i in question_ids if i in by_id]

    def _db_now(self) -> datetime:
        return self.db.scalar(select(func.now()))

    # --- lifecycle ---
    def start_session(self, test_id: int, mode: str) -> SessionStart:
        if mode not in SESSION_MODES:
            raise ValidationError('mode must be "timed" or "non-timed"')
        test = self.db.get(Test, test_id)
        if test is None:
            raise NotFoundError("Test not found")
        questions = self.assembly.ordered_questions(test_id)
        unusable = [q.id for q in questions if not q.is_usable()]
        if unusable:
            logger.warning("Test %s: leaving out ungradable questions %s", test_id, unusable)
            questions = [q for q in questions if q.is_usable()]
        if not questions:
            raise NotFoundError("Test has no questions")
        session = PracticeSession(
            test_id=test_id, mode=mode, total_questions=len(questions), question_ids=[q.id for q in questions]
        )
        self.db.add(session)
        self.db.commit()
        logger.info("Started %s session %s for test %s (%d questions)", mode, session.id, test_id, len(questions))
        return SessionStart(
            session_id=session.id, test_name=test.name, mode=mode,
            duration_minutes=test.duration_minutes, questions=questions,
        )

    def get_session(self, session_id: int) -> SessionState:
        session = self._get(session_id)
        rows = self.db.scalars(select(SessionAnswer).where(SessionAnswer.session_id == session_id)).all()
        answers_given = {
            r.question_id: {
                "selected_answer_ids": r.selected_answer_ids or [],
                "is_correct": r.is_correct,
                "flagged": r.flagged,
            }
            for r in rows
        }
        test = session.test
        return SessionState(
            session=session,
            test_name=test.name if test else None,
            duration_minutes=test.duration_minutes if test else None,
            questions=self._hydrate(session.question_ids or []),
            answers_given=answers_given,
        )

    def submit_answer(self, session_id: int, question_id: int, selected_answer_ids: Sequence[int]) -> Dict:
        session = self._get(session_id)
        self._require_active(session)
        self._require_member(session, question_id)
        question = self.db.scalar(
            select(Question).where(Question.id == question_id).options(selectinload(Question.answers))
        )
        if question is None:
            raise NotFoundError("Question not found")

        selected = list(selected_answer_ids)
        is_correct = is_exact_match(selected, question.correct_answer_ids())

        insert = self._upsert_insert()
        stmt = insert(SessionAnswer).values(
            session_id=session_id, question_id=question_id, selected_answer_ids=selected, is_correct=is_correct,
            flagged=False,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SessionAnswer.session_id, SessionAnswer.question_id],
            set_={
                "selected_answer_ids": stmt.excluded.selected_answer_ids,
                "is_correct": stmt.excluded.is_correct,
                "answered_at": func.now(),
            },
        )
        self.db.execute(stmt)
        self.db.commit()
        return {"question_id": question_id, "is_correct": is_correct}

    def toggle_flag(self, session_id: int, question_id: int, flagged: bool) -> Dict:
        # completed sessions may still be flagged for later review
        session = self._get(session_id)
        self._require_member(session, question_id)
        if self.db.get(Question, question_id) is None:
            raise NotFoundError("Question not found")

        insert = self._upsert_insert()
        stmt = insert(SessionAnswer).values(
            session_id=session_id, question_id=question_id, is_correct=False, flagged=bool(flagged),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SessionAnswer.session_id, SessionAnswer.question_id],
            set_={"flagged": stmt.excluded.flagged},
        )
        self.db.execute(stmt)
        self.db.commit()
        return {"question_id": question_id, "flagged": bool(flagged)}

    def complete_session(self, session_id: int) -> SessionResult:
        session = self._get(session_id)
        self._require_active(session)

        rows = self.db.scalars(
            select(SessionAnswer)
            .where(SessionAnswer.session_id == session_id)
            .options(selectinload(SessionAnswer.question))
            .order_by(SessionAnswer.id)
        ).all()
        total = session.total_questions
        correct_count = sum(1 for r in rows if r.is_correct)
        score = compute_score(correct_count, total)

        now = self._db_now()
        elapsed = max(0, int((now - session.started_at).total_seconds()))

        result = self.db.execute(
            update(PracticeSession)
            .where(PracticeSession.id == session_id, PracticeSession.completed_at.is_(None))
            .values(completed_at=now, score=score, correct_count=correct_count)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise InvalidStateError("Session already completed")
        self.db.commit()
        logger.info("Completed session %s: %d/%d correct, score %d", session_id, correct_count, total, score)

        return SessionResult(
            score=score,
            total=total,
            correct_count=correct_count,
            time_taken_seconds=elapsed,
            time_taken_minutes=elapsed // 60,
            breakdown=[
                BreakdownItem(
                    question_id=r.question_id,
                    question_text=preview(r.question.text if r.question else ""),
                    is_correct=bool(r.is_correct),
                    flagged=bool(r.flagged),
                )
                for r in rows
            ],
        )

    # --- listings ---
    def active_sessions(self) -> List[Dict]:
        answered = (
            select(SessionAnswer.session_id, func.count().label("n"))
            .group_by(SessionAnswer.session_id)
            .subquery()
        )
        rows = self.db.execute(
            select(PracticeSession, Test.name, Test.duration_minutes, func.coalesce(answered.c.n, 0))
            .outerjoin(Test, Test.id == PracticeSession.test_id)
            .outerjoin(answered, answered.c.session_id == PracticeSession.id)
            .where(PracticeSession.completed_at.is_(None))
            .order_by(PracticeSession.started_at.desc(), PracticeSession.id.desc())
        ).all()
        return [
            {"session": s, "test_name": name, "duration_minutes": duration, "answered_count": n}
            for s, name, duration, n in rows
        ]

    def session_history(self, limit: int = 10, offset: int = 0) -> Dict:
        stats = (
            select(
                SessionAnswer.session_id,
                func.count(SessionAnswer.id).label("answered"),
                func.count(case((SessionAnswer.flagged.is_(True), 1))).label("flagged"),
            )
            .group_by(SessionAnswer.session_id)
            .subquery()
        )
        rows = self.db.execute(
            select(
                PracticeSession, Test.name, Test.duration_minutes,
                func.coalesce(stats.c.answered, 0), func.coalesce(stats.c.flagged, 0),
            )
            .outerjoin(Test, Test.id == PracticeSession.test_id)
            .outerjoin(stats, stats.c.session_id == PracticeSession.id)
            .where(PracticeSession.completed_at.is_not(None))
            .order_by(PracticeSession.completed_at.desc(), PracticeSession.id.desc())
            .limit(limit)
            .offset(offset)
        ).all()
        total = self.db.scalar(
            select(func.count(PracticeSession.id)).where(PracticeSession.completed_at.is_not(None))
        ) or 0
        return {
            "sessions": [
                {"session": s, "test_name": name, "duration_minutes": duration,
                 "questions_answered": answered, "flagged_count": flagged}
                for s, name, duration, answered, flagged in rows
            ],
            "pagination": {"limit": limit, "offset": offset, "total": total},
        }
