import pytest

from certprep.core.errors import ValidationError
from certprep.services.selector import CategoryWeight, QuestionSelector, round_half_up
from certprep.services.sessions import SessionEngine

from conftest import correct_ids, ungradable_question, wrong_ids


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_half_up(12.5) == 13
    assert round_half_up(2.4999) == 2


def test_random_caps_at_pool_size_without_duplicates(db, make_question):
    for _ in range(5):
        make_question()
    picked = QuestionSelector(db).select_random(20)
    assert len(picked) == 5
    assert len({q.id for q in picked}) == 5


def test_selection_and_pool_skip_ungradable_questions(db, make_question, categories):
    good = make_question(category_id=categories[0].id)
    ungradable_question(db, (False, False))
    ungradable_question(db, (True,))
    selector = QuestionSelector(db)

    assert [q.id for q in selector.select_random(10)] == [good.id]
    assert [q.id for q in selector.select_smart(10, "new")] == [good.id]
    stats = selector.pool_stats()
    assert stats.total == 1
    assert stats.new_count == 1


def test_random_zero_count_is_empty(db, make_question):
    make_question()
    assert QuestionSelector(db).select_random(0) == []


def test_random_filters_are_conjunctive(db, make_question, categories):
    secure, resilient = categories[0].id, categories[1].id
    a = make_question(category_id=secure, tags=["S3"])
    make_question(category_id=secure, tags=["EC2"])
    make_question(category_id=resilient, tags=["S3"])
    tag_id = next(t.id for t in a.tags if t.name == "S3")

    picked = QuestionSelector(db).select_random(10, category_ids=[secure], tag_ids=[tag_id])
    assert [q.id for q in picked] == [a.id]


def test_random_excludes_ids(db, make_question):
    qs = [make_question() for _ in range(3)]
    picked = QuestionSelector(db).select_random(10, exclude_ids=[qs[0].id])
    assert {q.id for q in picked} == {qs[1].id, qs[2].id}


def test_weighted_quotas_follow_weight_fractions(db, make_question, categories):
    a, b = categories[0].id, categories[1].id
    for _ in range(10):
        make_question(category_id=a)
        make_question(category_id=b)
    picked = QuestionSelector(db).select_weighted(8, [CategoryWeight(a, 3), CategoryWeight(b, 1)])
    assert len(picked) == 8
    assert sum(1 for q in picked if q.category_id == a) == 6
    assert sum(1 for q in picked if q.category_id == b) == 2


def test_weighted_rounding_can_overshoot_then_truncates(db, make_question, categories):
    a, b = categories[0].id, categories[1].id
    for _ in range(5):
        make_question(category_id=a)
        make_question(category_id=b)
    # 0.5 * 3 = 1.5 rounds up to 2 for each category, then truncated to 3
    picked = QuestionSelector(db).select_weighted(3, [CategoryWeight(a, 1), CategoryWeight(b, 1)])
    assert len(picked) == 3


def test_weighted_short_category_returns_fewer(db, make_question, categories):
    a, b = categories[0].id, categories[1].id
    make_question(category_id=a)
    for _ in range(5):
        make_question(category_id=b)
    picked = QuestionSelector(db).select_weighted(6, [CategoryWeight(a, 1), CategoryWeight(b, 1)])
    assert len(picked) == 4


def test_weighted_without_weights_is_random(db, make_question):
    for _ in range(3):
        make_question()
    assert len(QuestionSelector(db).select_weighted(2, [])) == 2


def test_weighted_rejects_non_positive_total(db, categories):
    with pytest.raises(ValidationError):
        QuestionSelector(db).select_weighted(5, [CategoryWeight(categories[0].id, 0)])


def test_smart_new_ignores_flag_only_rows(db, make_question, make_session):
    answered, flagged_only, untouched = make_question(), make_question(), make_question()
    sid = make_session([answered, flagged_only, untouched])
    engine = SessionEngine(db)
    engine.submit_answer(sid, answered.id, correct_ids(answered))
    engine.toggle_flag(sid, flagged_only.id, True)

    picked = QuestionSelector(db).select_smart(10, "new")
    assert {q.id for q in picked} == {flagged_only.id, untouched.id}


def test_smart_wrong_orders_by_miss_count(db, make_question, make_session):
    often, once, right = make_question(), make_question(), make_question()
    engine = SessionEngine(db)
    for _ in range(2):
        sid = make_session([often, once, right])
        engine.submit_answer(sid, often.id, wrong_ids(often))
        engine.submit_answer(sid, right.id, correct_ids(right))
    sid = make_session([once])
    engine.submit_answer(sid, once.id, [])

    picked = QuestionSelector(db).select_smart(10, "wrong")
    assert [q.id for q in picked] == [often.id, once.id]


def test_smart_flagged(db, make_question, make_session):
    a, b = make_question(), make_question()
    sid = make_session([a, b])
    SessionEngine(db).toggle_flag(sid, b.id, True)
    assert [q.id for q in QuestionSelector(db).select_smart(5, "flagged")] == [b.id]


@pytest.mark.parametrize("mode", ["", "easy", "RANDOM", "wrong "])
def test_unknown_modes_are_rejected(db, make_question, mode):
    make_question()
    with pytest.raises(ValidationError):
        QuestionSelector(db).select(5, mode)


def test_select_smart_rejects_non_smart_mode(db):
    with pytest.raises(ValidationError):
        QuestionSelector(db).select_smart(5, "random")


def test_pool_stats(db, make_question, make_session, categories):
    a = make_question(category_id=categories[0].id)
    b = make_question(category_id=categories[0].id)
    make_question()
    sid = make_session([a, b])
    engine = SessionEngine(db)
    engine.submit_answer(sid, a.id, wrong_ids(a))
    engine.toggle_flag(sid, b.id, True)

    stats = QuestionSelector(db).pool_stats()
    assert stats.total == 3
    assert stats.new_count == 2
    assert stats.wrong_count == 1
    assert stats.flagged_count == 1
    by_name = {c["name"]: c["count"] for c in stats.by_category}
    assert by_name[categories[0].name] == 2
