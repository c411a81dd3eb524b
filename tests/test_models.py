"""Tests for data model classes."""
from datetime import date

from knowledge_trainer.models import (
    GeneratedQuestion, LearningDepth, LessonPayload, Rank, ReviewItem, ScholarProfile,
    SubtopicProgress, TopicStructure, normalize_category,
)


def progress(answered, correct, mastered=False):
    return SubtopicProgress(
        topic_id="t1", subtopic_name="s1", sort_order=0,
        questions_answered=answered, questions_correct=correct, is_mastered=mastered,
    )


def test_mastery_threshold_needs_ten_answers():
    assert not progress(9, 9).has_mastery_threshold


def test_mastery_threshold_at_eighty_percent():
    assert progress(10, 8).has_mastery_threshold


def test_mastery_threshold_below_eighty_percent():
    assert not progress(10, 7).has_mastery_threshold


def test_accuracy_empty_is_zero():
    assert progress(0, 0).accuracy == 0.0
    assert progress(4, 3).accuracy == 75.0


def test_rank_for_xp_thresholds():
    assert Rank.for_xp(0) is Rank.NOVICE
    assert Rank.for_xp(299) is Rank.NOVICE
    assert Rank.for_xp(300) is Rank.APPRENTICE
    assert Rank.for_xp(1000) is Rank.SCHOLAR
    assert Rank.for_xp(2500) is Rank.ADEPT
    assert Rank.for_xp(5000) is Rank.SAGE
    assert Rank.for_xp(10000) is Rank.MASTER
    assert Rank.for_xp(20000) is Rank.GRANDMASTER
    assert Rank.for_xp(999999) is Rank.GRANDMASTER


def test_rank_next_and_progress():
    assert Rank.NOVICE.next_rank is Rank.APPRENTICE
    assert Rank.GRANDMASTER.next_rank is None
    assert Rank.APPRENTICE.progress_to_next(650) == 0.5
    assert Rank.GRANDMASTER.progress_to_next(50000) == 1.0
    assert Rank.SCHOLAR.title == "Scholar"


def test_profile_rank_follows_xp():
    assert ScholarProfile(total_xp=1200).rank is Rank.SCHOLAR


def test_streak_freeze_purchase_rules():
    profile = ScholarProfile(total_xp=199)
    assert not profile.purchase_streak_freeze()
    profile.total_xp = 700
    assert profile.purchase_streak_freeze()
    assert profile.purchase_streak_freeze()
    assert profile.purchase_streak_freeze()
    assert not profile.purchase_streak_freeze()
    assert profile.streak_freezes == 3
    assert profile.total_xp == 100


def test_use_streak_freeze_consumes_one():
    profile = ScholarProfile(streak_freezes=1)
    assert profile.use_streak_freeze(date(2025, 1, 2))
    assert not profile.use_streak_freeze(date(2025, 1, 3))
    assert profile.streak_freeze_dates_used == [date(2025, 1, 2)]


def test_daily_goal_resets_on_new_day():
    profile = ScholarProfile(daily_goal_completed=True, daily_goal_date=date(2025, 1, 1))
    profile.reset_daily_goal_if_needed(date(2025, 1, 1))
    assert profile.daily_goal_completed
    profile.reset_daily_goal_if_needed(date(2025, 1, 2))
    assert not profile.daily_goal_completed
    assert profile.daily_goal_date == date(2025, 1, 2)


def test_learning_depth_difficulty():
    assert LearningDepth.CASUAL.difficulty == 2
    assert LearningDepth.STANDARD.difficulty == 3
    assert LearningDepth.DEEP.difficulty == 5
    assert LearningDepth("deep") is LearningDepth.DEEP


def test_generated_question_from_dict():
    q = GeneratedQuestion.from_dict({
        "questionText": "Who founded Rome?",
        "correctAnswer": "Romulus",
        "acceptableAnswers": ["Romulus and Remus"],
        "choices": None,
        "explanation": "Legend says so.",
        "subtopic": "Origins",
        "difficulty": 2,
    })
    assert q.question_text == "Who founded Rome?"
    assert q.acceptable_answers == ["Romulus and Remus"]
    assert not q.is_multiple_choice
    assert q.difficulty == 2


def test_lesson_payload_from_dict_defaults():
    lesson = LessonPayload.from_dict({"subtopic": "Origins", "overview": "Text", "keyFacts": ["f"]})
    assert lesson.key_facts == ["f"]
    assert lesson.misconceptions == []
    assert lesson.connections == []


def test_topic_structure_normalizes_category():
    structure = TopicStructure.from_dict({"topicName": "Jazz", "category": "Music", "subtopics": ["Bebop"]})
    assert structure.category == "Other"
    assert normalize_category("Science") == "Science"


def test_review_item_to_question_keeps_choices():
    item = ReviewItem(
        question_text="Q?", correct_answer="A", topic_id="t", subtopic="s",
        choices=["A", "B", "C", "D"],
    )
    q = item.to_question()
    assert q.choices == ["A", "B", "C", "D"]
    assert q.is_multiple_choice
