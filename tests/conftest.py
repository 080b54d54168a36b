from typing import Callable, Dict, List, Optional, Sequence

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from certprep.api.deps import get_diagram_enqueuer, get_llm
from certprep.core.auth import create_token
from certprep.core.config import settings
from certprep.core.database import Database, get_db
from certprep.main import create_app
from certprep.models.orm import Answer, Category, LLMConfig, Question
from certprep.services.assembly import TestAssembly
from certprep.services.catalog import seed_defaults
from certprep.services.llm import LLMService
from certprep.services.questions import AnswerInput, QuestionService
from certprep.services.sessions import SessionEngine


class FakeCompleter:
    """Stands in for the provider SDKs. Replies are keyed by role; an exception instance is raised."""

    def __init__(self):
        self.replies: Dict[str, object] = {}
        self.calls: List[tuple] = []

    def __call__(self, config: LLMConfig, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((config.role, system_prompt, user_prompt))
        reply = self.replies.get(config.role, "")
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(user_prompt)
        return reply


@pytest.fixture
def database():
    database = Database("sqlite://", poolclass=StaticPool)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def db(database) -> Session:
    session = database.session()
    seed_defaults(session)
    yield session
    session.close()


@pytest.fixture
def fake_llm() -> FakeCompleter:
    return FakeCompleter()


@pytest.fixture
def llm(db, fake_llm) -> LLMService:
    for config in db.scalars(select(LLMConfig)).all():
        config.api_key = "sk-test-key-1234"
    db.commit()
    return LLMService(db, completer=fake_llm)


@pytest.fixture
def categories(db) -> List[Category]:
    return list(db.scalars(select(Category).order_by(Category.id)).all())


@pytest.fixture
def make_question(db) -> Callable[..., Question]:
    counter = {"n": 0}

    def _make(text: Optional[str] = None, answers: int = 4, correct: Sequence[int] = (0,),
              category_id: Optional[int] = None, tags: Sequence[str] = ()) -> Question:
        counter["n"] += 1
        text = text or f"Question {counter['n']}: which AWS service fits?"
        options = [AnswerInput(f"Option {i}", i in correct) for i in range(answers)]
        return QuestionService(db).create_question(
            text, options, is_multiple_choice=len(correct) > 1, category_id=category_id, tags=list(tags)
        )

    return _make


@pytest.fixture
def make_session(db):
    """Build a test from the given questions and start a session on it."""

    def _make(questions: Sequence[Question], mode: str = "non-timed") -> int:
        test = TestAssembly(db).create_test("Fixture test", 30, [q.id for q in questions])
        return SessionEngine(db).start_session(test.id, mode).session_id

    return _make


def correct_ids(question: Question) -> List[int]:
    return sorted(question.correct_answer_ids())


def wrong_ids(question: Question) -> List[int]:
    return [a.id for a in question.answers if not a.is_correct][:1]


@pytest.fixture
def client(database, fake_llm, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DIAGRAM_DIR", str(tmp_path / "diagrams"))
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    app = create_app(database)

    def _llm(db: Session = Depends(get_db)) -> LLMService:
        return LLMService(db, completer=fake_llm)

    app.dependency_overrides[get_llm] = _llm
    app.dependency_overrides[get_diagram_enqueuer] = lambda: None
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_token('admin-1', ['admin'])}"}


@pytest.fixture
def student_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_token('student-1', ['student'])}"}


def ungradable_question(db: Session, correct_flags: Sequence[bool] = (False, False)) -> Question:
    """Insert a question straight through the ORM, bypassing answer validation (as an import would)."""
    q = Question(text="Stored without a usable answer set")
    db.add(q)
    db.flush()
    for i, flag in enumerate(correct_flags):
        db.add(Answer(question_id=q.id, text=f"Choice {i}", is_correct=flag, order_index=i))
    db.commit()
    db.refresh(q)
    return q
