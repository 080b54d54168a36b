import pytest
from sqlalchemy import func, select

from certprep.core.errors import ValidationError
from certprep.models.orm import PracticeSession, Question, Tag, Test
from certprep.services.assembly import TestAssembly
from certprep.services.transfer import TransferService


def test_export_omits_api_keys(db, llm, make_question):
    make_question(tags=["S3"])
    data = TransferService(db).export_all()
    assert set(data) == {"questions", "answers", "categories", "tags", "question_tags", "tests",
                         "test_questions", "llm_configs"}
    assert len(data["questions"]) == 1
    assert all("api_key" not in c for c in data["llm_configs"])


def test_import_replaces_content(db, make_question, make_session):
    original = make_question(tags=["EC2"])
    make_session([original])
    exported = TransferService(db).export_all()
    make_question(text="added after export")

    counts = TransferService(db).import_all(exported)

    assert counts == {"questions_imported": 1, "tags_imported": 1, "tests_imported": 1}
    assert db.scalars(select(Question.text)).all() == [exported["questions"][0]["text"]]
    assert db.scalar(select(func.count(PracticeSession.id))) == 0
    assert len(TestAssembly(db).ordered_questions(exported["tests"][0]["id"])) == 1


def test_failed_import_rolls_back(db, make_question):
    make_question(text="survivor", tags=["IAM"])
    bad = {
        "tags": [{"id": 1, "name": "New", "color": "#000000"}],
        "questions": [{"id": 1, "text": "replacement"}],
        "tests": [{"id": 1}],
    }
    with pytest.raises(ValidationError):
        TransferService(db).import_all(bad)

    assert db.scalars(select(Question.text)).all() == ["survivor"]
    assert db.scalars(select(Tag.name)).all() == ["IAM"]
    assert db.scalar(select(func.count(Test.id))) == 0
