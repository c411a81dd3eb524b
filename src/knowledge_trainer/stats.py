"""Accuracy, activity and streak statistics."""
from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable, Optional

from knowledge_trainer.db import get_connection
from knowledge_trainer.models import DailyStreak, QuestionRecord


def get_accuracy_color(score: float) -> str:
    if score >= 80:
        return "green"
    elif score >= 65:
        return "yellow"
    elif score >= 50:
        return "dark_orange"
    return "red"


def overall_accuracy(records: list[QuestionRecord]) -> float:
    if not records:
        return 0.0
    correct = sum(1 for r in records if r.was_correct)
    return correct / len(records) * 100


def topic_accuracy(records: list[QuestionRecord], topic_id: str) -> float:
    return overall_accuracy([r for r in records if r.topic_id == topic_id])


def subtopic_accuracy(records: list[QuestionRecord], topic_id: str, subtopic: str) -> float:
    return overall_accuracy(
        [r for r in records if r.topic_id == topic_id and r.subtopic == subtopic]
    )


def questions_for_topic(records: list[QuestionRecord], topic_id: str) -> int:
    return sum(1 for r in records if r.topic_id == topic_id)


def max_difficulty_reached(records: list[QuestionRecord], topic_id: str) -> int:
    return max((r.difficulty for r in records if r.topic_id == topic_id), default=1)


def accuracy_over_time(
    records: list[QuestionRecord],
    days: int = 30,
    today: Optional[date] = None,
) -> list[tuple[date, float]]:
    """Daily accuracy for the last `days` days, only days with answers."""
    start = (today or date.today()) - timedelta(days=days)
    grouped = defaultdict(list)
    for r in records:
        day = r.date.date()
        if day >= start:
            grouped[day].append(r)
    return sorted((day, overall_accuracy(rs)) for day, rs in grouped.items())


def daily_activity(
    records: list[QuestionRecord],
    days: int = 14,
    today: Optional[date] = None,
) -> list[tuple[date, int]]:
    """Answer counts per day for the `days` days ending yesterday."""
    start = (today or date.today()) - timedelta(days=days)
    counts = defaultdict(int)
    for r in records:
        counts[r.date.date()] += 1
    return [(start + timedelta(days=i), counts[start + timedelta(days=i)]) for i in range(days)]


def record_daily_activity(db_path: str, today: Optional[date] = None) -> int:
    """Bump today's completed-question count. Returns the new count."""
    day = (today or date.today()).isoformat()
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO daily_streaks (date, questions_completed) VALUES (?, 1)
        ON CONFLICT(date) DO UPDATE SET questions_completed = questions_completed + 1""",
        (day,),
    )
    conn.commit()
    count = conn.execute(
        "SELECT questions_completed FROM daily_streaks WHERE date = ?", (day,)
    ).fetchone()[0]
    conn.close()
    return count


def get_daily_streaks(db_path: str) -> list[DailyStreak]:
    conn = get_connection(db_path)
    rows = conn.execute("SELECT * FROM daily_streaks ORDER BY date").fetchall()
    conn.close()
    return [DailyStreak(date=date.fromisoformat(r["date"]), questions_completed=r["questions_completed"]) for r in rows]


def _active_days(daily_streaks: Iterable[DailyStreak]) -> list[date]:
    return sorted({s.date for s in daily_streaks if s.questions_completed > 0}, reverse=True)


def current_streak(daily_streaks: list[DailyStreak], today: Optional[date] = None) -> int:
    """Consecutive active days ending today or yesterday."""
    days = _active_days(daily_streaks)
    if not days:
        return 0
    today = today or date.today()
    if days[0] < today - timedelta(days=1):
        return 0
    streak = 1
    check = days[0] - timedelta(days=1)
    for day in days[1:]:
        if day == check:
            streak += 1
            check -= timedelta(days=1)
        elif day < check:
            break
    return streak


def current_streak_with_freezes(
    daily_streaks: list[DailyStreak],
    freeze_dates: Iterable[date],
    today: Optional[date] = None,
) -> int:
    """Like current_streak, but freeze-covered days count as active."""
    days = _active_days(daily_streaks)
    if not days:
        return 0
    today = today or date.today()
    covered = set(days) | {d for d in freeze_dates if d <= today}
    latest = max(covered)
    if latest < today - timedelta(days=1):
        return 0
    streak = 1
    check = latest - timedelta(days=1)
    while check in covered:
        streak += 1
        check -= timedelta(days=1)
    return streak


def get_study_stats(db_path: str) -> dict:
    conn = get_connection(db_path)
    topics = conn.execute("SELECT COUNT(*) FROM topics").fetchone()[0]
    answered = conn.execute("SELECT COUNT(*) FROM question_records").fetchone()[0]
    mastered = conn.execute("SELECT COUNT(*) FROM subtopic_progress WHERE is_mastered = 1").fetchone()[0]
    avg_row = conn.execute("SELECT AVG(was_correct) * 100 as avg FROM question_records").fetchone()
    accuracy = round(avg_row["avg"], 1) if avg_row["avg"] else 0.0
    conn.close()
    streak = current_streak(get_daily_streaks(db_path))
    return {
        "topics": topics,
        "questions_answered": answered,
        "subtopics_mastered": mastered,
        "accuracy": accuracy,
        "streak": streak,
    }
