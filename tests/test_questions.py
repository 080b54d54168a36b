import pytest
from sqlalchemy import func, select

from certprep.core.errors import NotFoundError, ValidationError
from certprep.models.orm import Answer, SessionAnswer, TestQuestion, question_tags
from certprep.services.questions import AnswerInput, QuestionService, preview
from certprep.services.sessions import SessionEngine

from conftest import correct_ids, wrong_ids


def _count(db, stmt):
    return db.scalar(select(func.count()).select_from(stmt.subquery()))


def test_preview_appends_ellipsis():
    assert preview("x" * 150) == "x" * 100 + "..."
    assert preview("short") == "short..."


def test_create_requires_two_answers_and_one_correct(db):
    service = QuestionService(db)
    with pytest.raises(ValidationError):
        service.create_question("Q?", [AnswerInput("only", True)])
    with pytest.raises(ValidationError, match="correct"):
        service.create_question("Q?", [AnswerInput("a"), AnswerInput("b")])
    with pytest.raises(ValidationError):
        service.create_question("", [AnswerInput("a", True), AnswerInput("b")])


def test_create_stores_answers_tags_and_source(db, categories):
    q = QuestionService(db).create_question(
        "Which service stores objects?",
        [AnswerInput("S3", True), AnswerInput("EBS"), AnswerInput("EFS")],
        explanation="S3 is object storage",
        category_id=categories[0].id,
        tags=["S3", "Storage"],
    )
    assert q.source_file == "manual_entry"
    assert [a.order_index for a in q.answers] == [0, 1, 2]
    assert [t.name for t in q.tags] == ["S3", "Storage"]
    assert q.category.name == categories[0].name


def test_create_rejects_unknown_category(db):
    with pytest.raises(ValidationError):
        QuestionService(db).create_question("Q?", [AnswerInput("a", True), AnswerInput("b")], category_id=999)


def test_update_tag_semantics(db, make_question):
    q = make_question(tags=["IAM", "KMS"])
    service = QuestionService(db)

    kept = service.update_question(q.id, "Edited", tags=None)
    assert [t.name for t in kept.tags] == ["IAM", "KMS"]
    assert kept.text == "Edited"

    replaced = service.update_question(q.id, "Edited", tags=["WAF"])
    assert [t.name for t in replaced.tags] == ["WAF"]

    by_id = service.update_question(q.id, "Edited", tags=[replaced.tags[0].id, "Shield"])
    assert [t.name for t in by_id.tags] == ["Shield", "WAF"]

    cleared = service.update_question(q.id, "Edited", tags=[])
    assert cleared.tags == []


def test_update_replaces_answers(db, make_question):
    q = make_question(answers=4)
    updated = QuestionService(db).update_question(
        q.id, q.text, answers=[AnswerInput("yes", True), AnswerInput("no")]
    )
    assert [(a.text, a.is_correct) for a in updated.answers] == [("yes", True), ("no", False)]
    with pytest.raises(ValidationError):
        QuestionService(db).update_question(q.id, q.text, answers=[AnswerInput("no")])


def test_delete_cascades_everything(db, make_question, make_session):
    q = make_question(tags=["Route 53"])
    other = make_question()
    qid = q.id
    sid = make_session([q, other])
    SessionEngine(db).submit_answer(sid, qid, correct_ids(q))

    QuestionService(db).delete_question(qid)

    assert _count(db, select(Answer.id).where(Answer.question_id == qid)) == 0
    assert _count(db, select(question_tags.c.tag_id).where(question_tags.c.question_id == qid)) == 0
    assert _count(db, select(SessionAnswer.id).where(SessionAnswer.question_id == qid)) == 0
    assert _count(db, select(TestQuestion.test_id).where(TestQuestion.question_id == qid)) == 0
    with pytest.raises(NotFoundError):
        QuestionService(db).get_question(qid)
    with pytest.raises(NotFoundError):
        QuestionService(db).delete_question(qid)


def test_list_filters_and_pagination(db, make_question, categories):
    for i in range(5):
        make_question(text=f"Lambda cold start {i}", category_id=categories[0].id, tags=["Lambda"])
    make_question(text="Unsorted one")

    service = QuestionService(db)
    page = service.list_questions(page=2, limit=2)
    assert page["pagination"] == {"page": 2, "limit": 2, "total": 6, "pages": 3}
    assert len(page["questions"]) == 2

    assert service.list_questions(search="cold")["pagination"]["total"] == 5
    assert service.list_questions(tag="lamb")["pagination"]["total"] == 5
    assert service.list_questions(category_id=categories[0].id)["pagination"]["total"] == 5
    unclassified = service.list_questions(unclassified=True)["questions"]
    assert [q.text for q in unclassified] == ["Unsorted one"]


def test_question_stats_counts_submissions_only(db, make_question, make_session):
    q = make_question()
    engine = SessionEngine(db)
    for selected in (correct_ids(q), wrong_ids(q), correct_ids(q)):
        sid = make_session([q])
        engine.submit_answer(sid, q.id, selected)
    flag_sid = make_session([q])
    engine.toggle_flag(flag_sid, q.id, True)

    stats = QuestionService(db).question_stats(q.id)
    assert stats["total_attempts"] == 3
    assert stats["correct_count"] == 2
    assert stats["success_rate"] == 66.7
    assert stats["flagged_count"] == 1


def test_set_diagram(db, make_question):
    q = make_question()
    QuestionService(db).set_diagram(q.id, "diagram_1.drawio")
    assert QuestionService(db).get_question(q.id).diagram_path == "diagram_1.drawio"
    with pytest.raises(NotFoundError):
        QuestionService(db).set_diagram(999, "x.png")
