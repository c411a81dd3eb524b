"""Static achievement catalog and unlocked-achievement records."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from knowledge_trainer.db import get_connection
from knowledge_trainer.models import Achievement


class AchievementCategory(Enum):
    LEARNING = "Learning"
    STREAK = "Streak"
    MASTERY = "Mastery"
    DEDICATION = "Dedication"


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    name: str
    description: str
    xp_reward: int
    category: AchievementCategory


_DEFINITIONS = [
    # Learning
    AchievementDefinition("first_subtopic", "First Steps", "Master your first subtopic", 25, AchievementCategory.LEARNING),
    AchievementDefinition("first_topic", "Completionist", "Master every subtopic in a topic", 100, AchievementCategory.LEARNING),
    AchievementDefinition("five_topics", "Knowledge Collector", "Master 5 complete topics", 250, AchievementCategory.LEARNING),
    AchievementDefinition("ten_topics", "Walking Encyclopedia", "Master 10 complete topics", 500, AchievementCategory.LEARNING),
    # Streak
    AchievementDefinition("streak_7", "Weekly Regular", "Maintain a 7-day streak", 75, AchievementCategory.STREAK),
    AchievementDefinition("streak_14", "Two-Week Warrior", "Maintain a 14-day streak", 150, AchievementCategory.STREAK),
    AchievementDefinition("streak_30", "Monthly Scholar", "Maintain a 30-day streak", 300, AchievementCategory.STREAK),
    # Mastery
    AchievementDefinition("perfect_session", "Flawless", "100% accuracy with 5+ questions", 25, AchievementCategory.MASTERY),
    AchievementDefinition("difficulty_max", "Pinnacle", "Answer correctly at the highest difficulty", 50, AchievementCategory.MASTERY),
    AchievementDefinition("ninety_accuracy", "Sharp Mind", "90%+ accuracy across 100+ questions", 100, AchievementCategory.MASTERY),
    AchievementDefinition("three_subtopics_one_day", "Speed Scholar", "Master 3 subtopics in one day", 75, AchievementCategory.MASTERY),
    # Dedication
    AchievementDefinition("hundred_questions", "Century", "Answer 100 questions", 50, AchievementCategory.DEDICATION),
    AchievementDefinition("five_hundred_questions", "Dedicated Learner", "Answer 500 questions", 150, AchievementCategory.DEDICATION),
    AchievementDefinition("review_clear", "Clean Slate", "Clear all due reviews in a session", 30, AchievementCategory.DEDICATION),
]

ACHIEVEMENTS: dict[str, AchievementDefinition] = {d.id: d for d in _DEFINITIONS}

SESSION_IDS = frozenset({"perfect_session", "difficulty_max"})
PROGRESS_IDS = frozenset({"first_subtopic", "first_topic", "five_topics", "ten_topics", "three_subtopics_one_day"})
RECORD_IDS = frozenset({"hundred_questions", "five_hundred_questions", "ninety_accuracy"})
STREAK_IDS = frozenset({"streak_7", "streak_14", "streak_30"})
REVIEW_IDS = frozenset({"review_clear"})


def find(achievement_id: str) -> Optional[AchievementDefinition]:
    return ACHIEVEMENTS.get(achievement_id)


def get_unlocked_ids(db_path: str) -> set[str]:
    conn = get_connection(db_path)
    rows = conn.execute("SELECT id FROM achievements").fetchall()
    conn.close()
    return {r["id"] for r in rows}


def get_unlocked(db_path: str) -> list[Achievement]:
    conn = get_connection(db_path)
    rows = conn.execute("SELECT * FROM achievements ORDER BY unlocked_date").fetchall()
    conn.close()
    return [
        Achievement(
            id=r["id"],
            unlocked_date=datetime.fromisoformat(r["unlocked_date"]),
            xp_awarded=r["xp_awarded"],
        )
        for r in rows
    ]


def insert_achievement(db_path: str, achievement: Achievement) -> bool:
    """Record an unlock. Returns False if the id was already unlocked."""
    conn = get_connection(db_path)
    cur = conn.execute(
        "INSERT OR IGNORE INTO achievements (id, unlocked_date, xp_awarded) VALUES (?, ?, ?)",
        (achievement.id, achievement.unlocked_date.isoformat(), achievement.xp_awarded),
    )
    conn.commit()
    conn.close()
    return cur.rowcount == 1
