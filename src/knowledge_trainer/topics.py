"""Topics, their learning path, and per-subtopic progress."""
import json
from datetime import datetime
from typing import Optional

from knowledge_trainer.db import get_connection
from knowledge_trainer.models import (
    LessonPayload, SubtopicProgress, Topic, TopicStructure, new_id, normalize_category,
)


def create_topic(
    db_path: str,
    structure: TopicStructure,
    lesson: Optional[LessonPayload] = None,
    now: Optional[datetime] = None,
) -> Topic:
    """Insert a topic and one progress row per subtopic in declared order.

    Lesson content for the first subtopic is stored when provided.
    """
    now = now or datetime.now()
    topic = Topic(
        id=new_id(),
        name=structure.name,
        subtopics=list(structure.subtopics),
        category=normalize_category(structure.category),
        related_topics=list(structure.related_topics),
        subtopics_ordered=True,
        date_created=now,
        last_practiced=now,
    )
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO topics
        (id, name, subtopics, category, related_topics, subtopics_ordered, date_created, last_practiced)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            topic.id, topic.name, json.dumps(topic.subtopics), topic.category,
            json.dumps(topic.related_topics), int(topic.subtopics_ordered),
            now.isoformat(), now.isoformat(),
        ),
    )
    for index, name in enumerate(topic.subtopics):
        conn.execute(
            "INSERT OR IGNORE INTO subtopic_progress (topic_id, subtopic_name, sort_order) VALUES (?, ?, ?)",
            (topic.id, name, index),
        )
    if lesson is not None and topic.subtopics:
        _store_lesson(conn, topic.id, topic.subtopics[0], lesson, viewed=False)
    conn.commit()
    conn.close()
    return topic


def get_topic(db_path: str, topic_id: str) -> Optional[Topic]:
    conn = get_connection(db_path)
    row = conn.execute("SELECT * FROM topics WHERE id = ?", (topic_id,)).fetchone()
    conn.close()
    return Topic.from_row(row) if row else None


def list_topics(db_path: str) -> list[Topic]:
    """All topics, most recently practiced first."""
    conn = get_connection(db_path)
    rows = conn.execute("SELECT * FROM topics ORDER BY last_practiced DESC").fetchall()
    conn.close()
    return [Topic.from_row(r) for r in rows]


def touch_topic(db_path: str, topic_id: str, now: Optional[datetime] = None) -> None:
    conn = get_connection(db_path)
    conn.execute(
        "UPDATE topics SET last_practiced = ? WHERE id = ?",
        ((now or datetime.now()).isoformat(), topic_id),
    )
    conn.commit()
    conn.close()


def delete_topic(db_path: str, topic_id: str) -> None:
    """Delete a topic and everything hanging off it."""
    conn = get_connection(db_path)
    conn.execute("DELETE FROM topics WHERE id = ?", (topic_id,))
    conn.commit()
    conn.close()


def get_subtopic_progress(db_path: str, topic_id: Optional[str] = None) -> list[SubtopicProgress]:
    conn = get_connection(db_path)
    if topic_id is None:
        rows = conn.execute(
            "SELECT * FROM subtopic_progress ORDER BY topic_id, sort_order"
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM subtopic_progress WHERE topic_id = ? ORDER BY sort_order",
            (topic_id,),
        ).fetchall()
    conn.close()
    return [SubtopicProgress.from_row(r) for r in rows]


def get_progress_for_subtopic(db_path: str, topic_id: str, subtopic: str) -> Optional[SubtopicProgress]:
    conn = get_connection(db_path)
    row = conn.execute(
        "SELECT * FROM subtopic_progress WHERE topic_id = ? AND subtopic_name = ?",
        (topic_id, subtopic),
    ).fetchone()
    conn.close()
    return SubtopicProgress.from_row(row) if row else None


def save_progress(db_path: str, progress: SubtopicProgress) -> None:
    """Write back counters and mastery state for one subtopic."""
    conn = get_connection(db_path)
    conn.execute(
        """UPDATE subtopic_progress
        SET questions_answered=?, questions_correct=?, is_mastered=?, mastered_date=?
        WHERE topic_id=? AND subtopic_name=?""",
        (
            progress.questions_answered,
            progress.questions_correct,
            int(progress.is_mastered),
            progress.mastered_date.isoformat() if progress.mastered_date else None,
            progress.topic_id,
            progress.subtopic_name,
        ),
    )
    conn.commit()
    conn.close()


def _store_lesson(conn, topic_id: str, subtopic: str, lesson: LessonPayload, viewed: bool) -> None:
    conn.execute(
        """UPDATE subtopic_progress
        SET lesson_overview=?, lesson_key_facts=?, lesson_misconceptions=?, lesson_connections=?,
            lesson_viewed = MAX(lesson_viewed, ?)
        WHERE topic_id=? AND subtopic_name=?""",
        (
            lesson.overview,
            json.dumps(lesson.key_facts),
            json.dumps(lesson.misconceptions),
            json.dumps(lesson.connections),
            int(viewed),
            topic_id,
            subtopic,
        ),
    )


def save_lesson(db_path: str, topic_id: str, lesson: LessonPayload, viewed: bool = False) -> None:
    conn = get_connection(db_path)
    _store_lesson(conn, topic_id, lesson.subtopic, lesson, viewed)
    conn.commit()
    conn.close()


def get_lesson(db_path: str, topic_id: str, subtopic: str) -> Optional[LessonPayload]:
    """Stored lesson for a subtopic, or None when it hasn't been generated yet."""
    progress = get_progress_for_subtopic(db_path, topic_id, subtopic)
    if progress is None or not progress.lesson_overview:
        return None
    return LessonPayload(
        subtopic=subtopic,
        overview=progress.lesson_overview,
        key_facts=progress.lesson_key_facts,
        misconceptions=progress.lesson_misconceptions,
        connections=progress.lesson_connections,
    )


def first_unmastered_subtopic(progress_items: list[SubtopicProgress], topic_id: str) -> Optional[str]:
    ordered = sorted(
        (p for p in progress_items if p.topic_id == topic_id),
        key=lambda p: p.sort_order,
    )
    for p in ordered:
        if not p.is_mastered:
            return p.subtopic_name
    return None


def next_subtopic(subtopics: list[str], current: str) -> Optional[str]:
    if current not in subtopics:
        return None
    idx = subtopics.index(current)
    return subtopics[idx + 1] if idx + 1 < len(subtopics) else None


def is_topic_mastered(topic: Topic, progress_items: list[SubtopicProgress]) -> bool:
    """Every declared subtopic mastered; an empty path never counts."""
    if not topic.subtopics:
        return False
    mastered = {
        p.subtopic_name for p in progress_items
        if p.topic_id == topic.id and p.is_mastered
    }
    return all(name in mastered for name in topic.subtopics)


def count_fully_mastered_topics(db_path: str) -> int:
    progress = get_subtopic_progress(db_path)
    return sum(1 for t in list_topics(db_path) if is_topic_mastered(t, progress))


def mastered_count(progress_items: list[SubtopicProgress], topic_id: str) -> int:
    return sum(1 for p in progress_items if p.topic_id == topic_id and p.is_mastered)
