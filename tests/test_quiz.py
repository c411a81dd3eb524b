# tests/test_quiz.py
from datetime import datetime

from conftest import make_question

from knowledge_trainer.models import QuestionRecord
from knowledge_trainer.quiz import (
    cache_questions, check_multiple_choice, count_question_records, get_asked_question_texts,
    get_cached_questions, get_question_records, record_question,
)


def record_for(topic, question, correct=True, when=None):
    return QuestionRecord(
        topic_id=topic.id,
        subtopic=question.subtopic,
        difficulty=question.difficulty,
        question_text=question.question_text,
        user_response=question.correct_answer if correct else "wrong",
        correct_answer=question.correct_answer,
        was_correct=correct,
        date=when or datetime.now(),
    )


def test_check_multiple_choice_trims_and_folds_case():
    assert check_multiple_choice("  Augustus ", "augustus")
    assert not check_multiple_choice("Nero", "Augustus")


def test_record_and_get_question_records(db, topic):
    q1, q2 = make_question(1), make_question(2, subtopic="Expansion")
    record_question(db, record_for(topic, q1, when=datetime(2025, 1, 1)))
    record_question(db, record_for(topic, q2, correct=False, when=datetime(2025, 1, 2)))
    records = get_question_records(db, topic.id)
    assert [r.question_text for r in records] == [q1.question_text, q2.question_text]
    assert records[1].was_correct is False
    assert len(get_question_records(db, topic.id, "Expansion")) == 1
    assert count_question_records(db) == 2


def test_asked_question_texts_are_distinct(db, topic):
    q = make_question(1)
    record_question(db, record_for(topic, q))
    record_question(db, record_for(topic, q, correct=False))
    assert get_asked_question_texts(db, topic.id) == [q.question_text]


def test_cache_questions_ignores_duplicates(db, topic):
    questions = [make_question(1), make_question(2, choices=["answer2", "x", "y", "z"])]
    assert cache_questions(db, topic.id, questions) == 2
    assert cache_questions(db, topic.id, questions) == 0
    cached = get_cached_questions(db, topic.id)
    assert len(cached) == 2
    assert cached[1].choices == ["answer2", "x", "y", "z"]
    assert cached[0].to_question().question_text == questions[0].question_text


def test_cached_questions_skip_answered(db, topic):
    q1, q2 = make_question(1), make_question(2)
    cache_questions(db, topic.id, [q1, q2])
    record_question(db, record_for(topic, q1))
    remaining = get_cached_questions(db, topic.id)
    assert [c.question_text for c in remaining] == [q2.question_text]
    assert len(get_cached_questions(db, topic.id, unanswered_only=False)) == 2


def test_cached_questions_filter_by_subtopic(db, topic):
    cache_questions(db, topic.id, [make_question(1), make_question(2, subtopic="Legacy")])
    assert [c.subtopic for c in get_cached_questions(db, topic.id, "Legacy")] == ["Legacy"]
