from datetime import datetime

from conftest import SUBTOPICS

from knowledge_trainer.gamification import GamificationEngine
from knowledge_trainer.mastery import MasteryTracker
from knowledge_trainer.profile import get_profile
from knowledge_trainer.topics import get_progress_for_subtopic

NOW = datetime(2025, 3, 10, 12, 0)


def answer(tracker, topic, subtopic, results):
    events = []
    for correct in results:
        events.append(tracker.record_answer(topic.id, subtopic, correct, NOW))
    return events


def test_nine_correct_is_not_mastered(db, topic):
    tracker = MasteryTracker(db)
    events = answer(tracker, topic, "Origins", [True] * 9)
    assert events == [None] * 9
    p = get_progress_for_subtopic(db, topic.id, "Origins")
    assert p.questions_answered == 9
    assert not p.is_mastered


def test_ten_with_eighty_percent_masters(db, topic):
    tracker = MasteryTracker(db)
    events = answer(tracker, topic, "Origins", [False, False] + [True] * 8)
    assert events[:-1] == [None] * 9
    event = events[-1]
    assert event.subtopic == "Origins"
    assert event.next_subtopic == "Expansion"
    assert not event.topic_mastered
    p = get_progress_for_subtopic(db, topic.id, "Origins")
    assert p.is_mastered
    assert p.mastered_date == NOW


def test_ten_with_seventy_percent_does_not_master(db, topic):
    tracker = MasteryTracker(db)
    answer(tracker, topic, "Origins", [False] * 3 + [True] * 7)
    assert not get_progress_for_subtopic(db, topic.id, "Origins").is_mastered


def test_mastery_fires_once(db, topic):
    engine = GamificationEngine(db, clock=lambda: NOW)
    tracker = MasteryTracker(db, engine)
    events = answer(tracker, topic, "Origins", [True] * 15)
    assert sum(1 for e in events if e is not None) == 1
    assert get_profile(db).total_xp == 175


def test_mastery_is_monotonic(db, topic):
    tracker = MasteryTracker(db)
    answer(tracker, topic, "Origins", [True] * 10)
    answer(tracker, topic, "Origins", [False] * 20)
    p = get_progress_for_subtopic(db, topic.id, "Origins")
    assert p.is_mastered
    assert p.accuracy < 80


def test_unknown_subtopic_is_skipped(db, topic):
    assert MasteryTracker(db).record_answer(topic.id, "Not a subtopic", True) is None


def test_topic_mastered_on_last_subtopic(db, topic):
    tracker = MasteryTracker(db)
    for name in SUBTOPICS[:-1]:
        answer(tracker, topic, name, [True] * 10)
    assert not tracker.is_topic_mastered(topic.id)
    event = answer(tracker, topic, "Legacy", [True] * 10)[-1]
    assert event.topic_mastered
    assert event.next_subtopic is None
    assert tracker.is_topic_mastered(topic.id)
