import asyncio
import sqlite3
from datetime import datetime, timedelta

import pytest

from conftest import FakeGenerator, make_question

from knowledge_trainer import session as session_module
from knowledge_trainer.achievements import get_unlocked_ids
from knowledge_trainer.db import get_connection
from knowledge_trainer.gamification import GamificationEngine
from knowledge_trainer.generator import GenerationError
from knowledge_trainer.models import GeneratedQuestion, LessonPayload, QuestionFormat
from knowledge_trainer.profile import get_profile
from knowledge_trainer.quiz import cache_questions, get_question_records
from knowledge_trainer.review import create_review_item, get_review_items
from knowledge_trainer.session import (
    EventKind, SessionOrchestrator, SessionState, SessionStateError,
)
from knowledge_trainer.topics import (
    first_unmastered_subtopic, get_progress_for_subtopic, get_subtopic_progress,
)

NOW = datetime(2025, 3, 10, 12, 0)


def make_session(db, settings, generator=None, **overrides):
    for key, value in overrides.items():
        setattr(settings, key, value)
    engine = GamificationEngine(db, clock=lambda: NOW)
    return SessionOrchestrator(db, generator or FakeGenerator(), engine, settings, clock=lambda: NOW)


def kinds(events):
    return [e.kind for e in events]


async def answer_all_correct(session, count):
    results = []
    for i in range(count):
        results.append(await session.submit_answer(session.current_question.correct_answer))
        if i < count - 1:
            await session.serve_next_question()
    return results


@pytest.mark.asyncio
async def test_mastering_first_subtopic_end_to_end(db, topic, settings):
    session = make_session(db, settings)
    await session.start(topic, [make_question(n) for n in range(10)])
    assert session.focus_subtopic == "Origins"
    assert session.state is SessionState.SERVING_QUESTION

    results = await answer_all_correct(session, 10)

    assert all(r.correct for r in results)
    assert all(r.mastery is None for r in results[:-1])
    mastery = results[-1].mastery
    assert mastery.subtopic == "Origins"
    assert mastery.next_subtopic == "Expansion"
    assert get_profile(db).total_xp == 175
    assert get_unlocked_ids(db) == {"first_subtopic"}
    events = session.drain_events()
    assert kinds(events).count(EventKind.MASTERY) == 1
    assert [e.payload.amount for e in events if e.kind is EventKind.XP] == [50, 100, 25]

    session.dismiss_mastery_celebration()
    assert session.focus_subtopic == "Expansion"

    await session.serve_next_question()
    assert session.ended
    assert get_profile(db).total_xp == 225

    progress = get_subtopic_progress(db, topic.id)
    assert first_unmastered_subtopic(progress, topic.id) == "Expansion"
    assert len(get_question_records(db, topic.id)) == 10

    follow_up = make_session(db, settings)
    await follow_up.start(topic, [make_question(50, "Expansion")])
    assert follow_up.focus_subtopic == "Expansion"


@pytest.mark.asyncio
async def test_due_reviews_are_served_first(db, topic, settings):
    create_review_item(db, make_question(1), topic.id, NOW - timedelta(days=2))
    session = make_session(db, settings)
    await session.start(topic, [make_question(2)])
    assert session.current_review is not None
    assert session.current_question.question_text == make_question(1).question_text

    result = await session.submit_answer("answer1")
    assert result.was_review
    item = get_review_items(db)[0]
    assert item.review_count == 1
    assert item.next_review_date == NOW + timedelta(days=1)
    assert "review_clear" in get_unlocked_ids(db)
    assert get_profile(db).total_xp == 60

    await session.serve_next_question()
    assert session.current_review is None
    assert session.current_question.question_text == make_question(2).question_text


@pytest.mark.asyncio
async def test_wrong_answer_creates_review_item(db, topic, settings):
    session = make_session(db, settings)
    await session.start(topic, [make_question(1)])
    result = await session.submit_answer("completely unrelated")
    assert not result.correct
    items = get_review_items(db, topic.id)
    assert len(items) == 1
    assert items[0].next_review_date == NOW + timedelta(days=1)
    assert session.wrong_answers[0][1] == "completely unrelated"
    assert get_progress_for_subtopic(db, topic.id, "Origins").questions_answered == 1


@pytest.mark.asyncio
async def test_uncertain_answer_is_escalated(db, topic, settings):
    generator = FakeGenerator(verdict=True)
    session = make_session(db, settings, generator)
    question = GeneratedQuestion(
        question_text="Where was Napoleon finally defeated?",
        correct_answer="battle of waterloo",
        subtopic="Origins",
    )
    await session.start(topic, [question])
    result = await session.submit_answer("battle of hastings field")
    assert result.correct
    assert generator.judge_calls == [("battle of hastings field", "battle of waterloo")]


@pytest.mark.asyncio
async def test_failed_judgment_counts_as_incorrect(db, topic, settings):
    generator = FakeGenerator(verdict=GenerationError("timeout"))
    session = make_session(db, settings, generator)
    question = GeneratedQuestion(
        question_text="Where was Napoleon finally defeated?",
        correct_answer="battle of waterloo",
        subtopic="Origins",
    )
    await session.start(topic, [question])
    result = await session.submit_answer("battle of hastings field")
    assert not result.correct


@pytest.mark.asyncio
async def test_multiple_choice_ignores_case_and_whitespace(db, topic, settings):
    question = make_question(1, choices=["answer1", "Nero", "Caligula", "Tiberius"])
    session = make_session(db, settings)
    await session.start(topic, [question])
    result = await session.submit_answer("  ANSWER1 ")
    assert result.correct
    assert result.match is None


@pytest.mark.asyncio
async def test_adaptive_difficulty(db, topic, settings):
    session = make_session(db, settings)
    await session.start(topic, [make_question(n) for n in range(8)])
    await answer_all_correct(session, 3)
    assert session.current_difficulty == 2
    for _ in range(2):
        await session.serve_next_question()
        await session.submit_answer("wrong wrong")
    assert session.current_difficulty == 1
    assert session.max_difficulty == 2


@pytest.mark.asyncio
async def test_difficulty_is_capped(db, topic, settings):
    session = make_session(db, settings, max_questions=20)
    await session.start(topic, [make_question(n) for n in range(15)])
    await answer_all_correct(session, 15)
    assert session.current_difficulty == 5


@pytest.mark.asyncio
async def test_empty_queue_fetches_a_batch(db, topic, settings):
    generator = FakeGenerator()
    session = make_session(db, settings, generator, prefetch_threshold=0)
    await session.start(topic)
    assert session.state is SessionState.SERVING_QUESTION
    assert len(generator.batch_calls) == 1
    call = generator.batch_calls[0]
    assert call["focus"] == "Origins"
    assert call["next"] == "Expansion"
    assert call["subtopics"] == ["Origins"]
    assert len(session.queue) == 9
    await session.end_session()


@pytest.mark.asyncio
async def test_generation_failure_emits_error_and_ends(db, topic, settings):
    session = make_session(db, settings, FakeGenerator(fail=True), prefetch_threshold=0)
    await session.start(topic)
    assert session.ended
    events = kinds(session.drain_events())
    assert EventKind.ERROR in events
    assert events[-1] is EventKind.SESSION_ENDED


@pytest.mark.asyncio
async def test_session_cap_ends_session(db, topic, settings):
    session = make_session(db, settings, max_questions=3)
    await session.start(topic, [make_question(n) for n in range(6)])
    await answer_all_correct(session, 3)
    assert await session.serve_next_question() is None
    assert session.ended
    assert session.questions_answered == 3


@pytest.mark.asyncio
async def test_end_session_is_idempotent(db, topic, settings):
    session = make_session(db, settings)
    await session.start(topic, [make_question(n) for n in range(6)])
    await answer_all_correct(session, 5)
    await session.end_session()
    await session.end_session()
    events = session.drain_events()
    assert kinds(events).count(EventKind.SESSION_ENDED) == 1
    assert get_profile(db).total_xp == 50
    assert len(session.queue) == 0


@pytest.mark.asyncio
async def test_submit_without_question_raises(db, topic, settings):
    session = make_session(db, settings)
    await session.start(topic, [make_question(1)])
    await session.submit_answer("answer1")
    with pytest.raises(SessionStateError):
        await session.submit_answer("answer1")


@pytest.mark.asyncio
async def test_unviewed_lesson_is_shown_first(db, topic, settings):
    lesson = LessonPayload(subtopic="Origins", overview="Founded in 753 BC.", key_facts=["Romulus"])
    session = make_session(db, settings)
    await session.start(topic, [make_question(1)], lesson)
    assert session.state is SessionState.LESSON
    assert EventKind.LESSON_READY in kinds(session.drain_events())

    question = await session.dismiss_lesson()
    assert question is not None
    assert session.state is SessionState.SERVING_QUESTION
    progress = get_progress_for_subtopic(db, topic.id, "Origins")
    assert progress.lesson_viewed
    assert progress.lesson_overview == "Founded in 753 BC."

    again = make_session(db, settings)
    await again.start(topic, [make_question(2)])
    assert again.state is SessionState.SERVING_QUESTION


@pytest.mark.asyncio
async def test_pending_lesson_shown_after_mastery(db, topic, settings):
    next_lesson = LessonPayload(subtopic="Expansion", overview="Legions march north.")
    batch = [make_question(n) for n in range(10)]
    generator = FakeGenerator(batches=[(batch, next_lesson)])
    session = make_session(db, settings, generator, prefetch_threshold=0)
    await session.start(topic)
    results = await answer_all_correct(session, 10)
    assert results[-1].mastery is not None
    assert session.current_lesson is next_lesson

    session.dismiss_mastery_celebration()
    assert session.state is SessionState.LESSON
    assert session.focus_subtopic == "Expansion"
    await session.end_session()


@pytest.mark.asyncio
async def test_cached_questions_are_reused(db, topic, settings):
    cache_questions(db, topic.id, [make_question(1), make_question(2)])
    generator = FakeGenerator()
    session = make_session(db, settings, generator, prefetch_threshold=0)
    await session.start(topic)
    assert session.current_question.question_text == make_question(1).question_text
    assert generator.batch_calls == []
    await session.end_session()


@pytest.mark.asyncio
async def test_question_format_filter(db, topic, settings):
    mc = make_question(2, choices=["answer2", "b", "c", "d"])
    session = make_session(db, settings)
    await session.start(topic, [make_question(1), mc], question_format=QuestionFormat.MULTIPLE_CHOICE)
    assert session.current_question is mc
    await session.end_session()


@pytest.mark.asyncio
async def test_review_only_session(db, topic, settings):
    create_review_item(db, make_question(1), topic.id, NOW - timedelta(days=2))
    create_review_item(db, make_question(2), topic.id, NOW + timedelta(days=5))
    session = make_session(db, settings, FakeGenerator())
    await session.start_review_only()
    assert session.topic is None
    await session.submit_answer("answer1")
    assert await session.serve_next_question() is None
    assert session.ended
    assert get_question_records(db) == []


@pytest.mark.asyncio
async def test_review_only_with_nothing_due_ends(db, settings):
    session = make_session(db, settings, None)
    await session.start_review_only()
    assert session.ended


@pytest.mark.asyncio
async def test_streak_milestone_on_first_answer_of_day(db, topic, settings):
    conn = get_connection(db)
    for offset in range(1, 7):
        conn.execute(
            "INSERT INTO daily_streaks (date, questions_completed) VALUES (?, 5)",
            ((NOW.date() - timedelta(days=offset)).isoformat(),),
        )
    conn.commit()
    conn.close()
    session = make_session(db, settings)
    await session.start(topic, [make_question(1), make_question(2)])
    await answer_all_correct(session, 2)
    assert "streak_7" in get_unlocked_ids(db)
    assert get_profile(db).total_xp == 150


@pytest.mark.asyncio
async def test_persistence_errors_are_ignored(db, topic, settings, monkeypatch):
    def broken(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(session_module, "record_question", broken)
    session = make_session(db, settings)
    await session.start(topic, [make_question(1)])
    result = await session.submit_answer("answer1")
    assert result.correct
    assert get_question_records(db) == []
    assert get_progress_for_subtopic(db, topic.id, "Origins").questions_answered == 1


@pytest.mark.asyncio
async def test_summary_reports_subtopics(db, topic, settings):
    session = make_session(db, settings)
    await session.start(topic, [make_question(1)])
    session.queue.push([make_question(2, "Legacy")])
    await session.submit_answer("answer1")
    await session.serve_next_question()
    await session.submit_answer("nope nope")
    summary = session.summary()
    assert summary["questions_answered"] == 2
    assert summary["accuracy"] == 50.0
    assert summary["subtopics"] == {"Origins": (1, 1), "Legacy": (1, 0)}
    await session.end_session()


class CrashingGenerator(FakeGenerator):
    async def generate_question_batch(self, *args, **kwargs):
        self.batch_calls.append(kwargs)
        raise ValueError("invalid literal for int() with base 10: 'hard'")


@pytest.mark.asyncio
async def test_crashed_prefetch_still_ends_session(db, topic, settings):
    generator = CrashingGenerator()
    session = make_session(db, settings, generator, prefetch_max_failures=1)
    await session.start(topic, [make_question(n) for n in range(5)])
    for _ in range(10):
        await asyncio.sleep(0)
    assert len(generator.batch_calls) == 1

    await answer_all_correct(session, 5)
    await session.end_session()
    assert session.ended
    assert kinds(session.drain_events())[-1] is EventKind.SESSION_ENDED
    assert get_profile(db).total_xp == 50
    assert "perfect_session" in get_unlocked_ids(db)


@pytest.mark.asyncio
async def test_unexpected_batch_error_emits_error_and_ends(db, topic, settings):
    session = make_session(db, settings, CrashingGenerator(), prefetch_threshold=0)
    await session.start(topic)
    assert session.ended
    events = kinds(session.drain_events())
    assert EventKind.ERROR in events
    assert events[-1] is EventKind.SESSION_ENDED
